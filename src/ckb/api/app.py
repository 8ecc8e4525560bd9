"""FastAPI HTTP server for the classified knowledge base."""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from ..config import load_config
from ..errors import CKBError, ValidationError
from ..models import ArticleRef, GraphFilters, Identity, SOURCE_TYPES, SecretRequest
from ..services.container import Services, build_services
from .auth import IdentityResolver, client_info, header_identity
from .schemas import (
    ArticleClusterResponse,
    ArticleResponse,
    BacklinkModel,
    BrokenLinkModel,
    ClusterModel,
    CreateSecretsRequest,
    CreateSecretsResponse,
    GetClustersResponse,
    GraphResponse,
    GraphStatsModel,
    HealthResponse,
    RecomputeStrengthsResponse,
    RunClusteringRequest,
    RunClusteringResponse,
)

VERSION = "0.1.0"

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def _ref(source_type: str, article_id: str) -> ArticleRef:
    if source_type not in SOURCE_TYPES:
        raise ValidationError(f"Unknown source_type '{source_type}'")
    return ArticleRef(source_type, article_id)


def create_app(
    config: dict[str, Any] | None = None,
    services: Services | None = None,
    identity_resolver: IdentityResolver = header_identity,
) -> FastAPI:
    """Build the application.

    Args:
        config: Loaded configuration; read from the usual locations when omitted.
        services: Pre-built services (tests pass an in-memory set).
        identity_resolver: Turns a request into an Identity or raises
            AuthenticationRequired.
    """
    config = config or load_config()
    configure_logging(config.get("log_level", "INFO"))
    services = services or build_services(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting CKB server (storage: {config.get('storage_backend')})")
        yield
        services.close()
        logger.info("Server stopped")

    app = FastAPI(
        title="Classified Knowledge Base",
        description="Classification-gated articles and link-graph analytics",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.services = services

    def identity(request: Request) -> Identity:
        return identity_resolver(request)

    @app.exception_handler(CKBError)
    async def ckb_error_handler(request: Request, exc: CKBError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
        else:
            logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc}")
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"Unexpected error on {request.method} {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    # ========================================================================
    # Health
    # ========================================================================

    @app.get("/api/health", response_model=HealthResponse)
    def health_check():
        """Health check endpoint."""
        return HealthResponse(
            status="ok",
            version=VERSION,
            storage_backend=config.get("storage_backend", "memory"),
        )

    # ========================================================================
    # Graph
    # ========================================================================

    @app.get("/api/graph", response_model=GraphResponse)
    def get_graph(
        min_classification: int | None = None,
        max_classification: int | None = None,
        source_types: str | None = None,
        only_hubs: bool = False,
        only_authorities: bool = False,
        only_orphans: bool = False,
        exclude_orphans: bool = False,
        who: Identity = Depends(identity),
    ):
        """Visible link graph, optionally filtered."""
        filters = GraphFilters(
            min_classification=min_classification,
            max_classification=max_classification,
            source_types=[s.strip() for s in (source_types or "").split(",") if s.strip()],
            only_hubs=only_hubs,
            only_authorities=only_authorities,
            only_orphans=only_orphans,
            exclude_orphans=exclude_orphans,
        )
        return GraphResponse.from_graph(services.links.graph(who, filters))

    @app.get("/api/graph/stats", response_model=GraphStatsModel)
    def get_graph_stats(who: Identity = Depends(identity)):
        return GraphStatsModel.from_stats(services.links.stats(who))

    @app.get("/api/graph/article/{source_type}/{article_id}", response_model=GraphResponse)
    def get_article_neighborhood(
        source_type: str,
        article_id: str,
        depth: int | None = None,
        who: Identity = Depends(identity),
    ):
        """Neighbourhood of one article, ``depth`` hops (clamped to 1-5)."""
        ref = _ref(source_type, article_id)
        return GraphResponse.from_graph(services.links.article_neighborhood(ref, who, depth))

    @app.get("/api/graph/clusters", response_model=GetClustersResponse)
    def get_clusters(algorithm: str | None = None, who: Identity = Depends(identity)):
        algorithm = algorithm or services.analytics.default_algorithm
        clusters = services.analytics.clusters(who, algorithm)
        return GetClustersResponse(
            clusters=[ClusterModel.from_cluster(c) for c in clusters],
            total=len(clusters),
            algorithm=algorithm,
        )

    @app.post("/api/graph/clusters/run", response_model=RunClusteringResponse)
    def run_clustering(body: RunClusteringRequest | None = None, who: Identity = Depends(identity)):
        """Run community detection and replace stored clusters (clearance 4+)."""
        algorithm = (body.algorithm if body else None) or services.analytics.default_algorithm
        clusters = services.analytics.run_clustering(who, algorithm)
        return RunClusteringResponse(
            success=True,
            message=f"Clustering completed with {algorithm}",
            cluster_count=len(clusters),
            algorithm=algorithm,
        )

    @app.post("/api/graph/strengths/recompute", response_model=RecomputeStrengthsResponse)
    def recompute_strengths(who: Identity = Depends(identity)):
        strengths = services.analytics.recompute_strengths(who)
        return RecomputeStrengthsResponse(success=True, edge_count=len(strengths))

    # ========================================================================
    # Articles
    # ========================================================================

    @app.get("/api/articles/{source_type}/{article_id}", response_model=ArticleResponse)
    def get_article(source_type: str, article_id: str, request: Request, who: Identity = Depends(identity)):
        """Article content with one secret mapping per placeholder."""
        processed = services.gate.read(_ref(source_type, article_id), who, client_info(request))
        return ArticleResponse.from_processed(processed)

    @app.post("/api/articles/{source_type}/{article_id}/secrets", response_model=CreateSecretsResponse)
    def create_secrets(
        source_type: str,
        article_id: str,
        body: CreateSecretsRequest,
        who: Identity = Depends(identity),
    ):
        requests = [
            SecretRequest(
                key=s.secret_key,
                classification_level=s.classification_level,
                content=s.content,
                description=s.description,
            )
            for s in body.secrets
        ]
        created = services.gate.create_secrets(_ref(source_type, article_id), requests, who)
        return CreateSecretsResponse(created=[s.key for s in created])

    @app.get("/api/articles/{source_type}/{article_id}/cluster", response_model=ArticleClusterResponse)
    def get_article_cluster(
        source_type: str,
        article_id: str,
        algorithm: str | None = None,
        who: Identity = Depends(identity),
    ):
        assignment, cluster = services.analytics.article_cluster(_ref(source_type, article_id), who, algorithm)
        return ArticleClusterResponse.from_domain(assignment, cluster)

    @app.get("/api/articles/{source_type}/{article_id}/backlinks", response_model=list[BacklinkModel])
    def get_backlinks(source_type: str, article_id: str, who: Identity = Depends(identity)):
        summaries = services.links.backlinks(_ref(source_type, article_id), who)
        return [BacklinkModel.from_summary(s) for s in summaries]

    @app.get("/api/articles/{source_type}/{article_id}/broken-links", response_model=list[BrokenLinkModel])
    def get_broken_links(source_type: str, article_id: str, who: Identity = Depends(identity)):
        broken = services.links.broken_links(_ref(source_type, article_id), who)
        return [BrokenLinkModel.from_broken(b) for b in broken]

    return app
