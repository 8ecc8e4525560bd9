"""Request/response models for the HTTP API."""

from dataclasses import asdict
from datetime import datetime

from pydantic import BaseModel, Field

from ..models import (
    Article,
    ArticleRef,
    BacklinkSummary,
    BrokenLink,
    ClusterAssignment,
    ClusterResult,
    GraphData,
    GraphStats,
    ProcessedArticle,
)


class ArticleRefModel(BaseModel):
    source_type: str
    id: str

    @classmethod
    def from_ref(cls, ref: ArticleRef) -> "ArticleRefModel":
        return cls(source_type=ref.source_type, id=ref.id)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    storage_backend: str


# ============================================================================
# Graph
# ============================================================================

class GraphNodeModel(BaseModel):
    index: int
    source_type: str
    id: str
    title: str
    full_path: str
    classification_level: int
    status: str
    inbound_count: int
    outbound_count: int
    total_degree: int
    is_orphan: bool
    is_hub: bool
    is_authority: bool


class GraphEdgeModel(BaseModel):
    id: str
    source: int = Field(..., description="Index of the source node")
    target: int = Field(..., description="Index of the target node")
    link_type: str
    link_text: str | None = None
    context_snippet: str | None = None
    created_at: datetime


class GraphStatsModel(BaseModel):
    total_nodes: int
    total_edges: int
    orphans_count: int
    hubs_count: int
    authorities_count: int
    average_degree: float
    max_degree: int
    nodes_by_classification: dict[int, int]

    @classmethod
    def from_stats(cls, stats: GraphStats) -> "GraphStatsModel":
        return cls(**asdict(stats))


class GraphResponse(BaseModel):
    nodes: list[GraphNodeModel]
    edges: list[GraphEdgeModel]
    stats: GraphStatsModel

    @classmethod
    def from_graph(cls, graph: GraphData) -> "GraphResponse":
        nodes = [
            GraphNodeModel(
                index=n.index,
                source_type=n.article.source_type,
                id=n.article.id,
                title=n.title,
                full_path=n.full_path,
                classification_level=n.classification_level,
                status=n.status,
                inbound_count=n.inbound_count,
                outbound_count=n.outbound_count,
                total_degree=n.total_degree,
                is_orphan=n.is_orphan,
                is_hub=n.is_hub,
                is_authority=n.is_authority,
            )
            for n in graph.nodes
        ]
        edges = [
            GraphEdgeModel(
                id=e.id,
                source=e.source,
                target=e.target,
                link_type=e.link_type,
                link_text=e.link_text,
                context_snippet=e.context_snippet,
                created_at=e.created_at,
            )
            for e in graph.edges
        ]
        return cls(nodes=nodes, edges=edges, stats=GraphStatsModel.from_stats(graph.stats))


# ============================================================================
# Clusters and strengths
# ============================================================================

class ClusterMemberModel(BaseModel):
    source_type: str
    id: str
    centrality: float


class ClusterModel(BaseModel):
    cluster_id: int
    algorithm: str
    label: str
    size: int
    density: float
    avg_centrality: float
    representative: ArticleRefModel | None = None
    members: list[ClusterMemberModel]

    @classmethod
    def from_cluster(cls, cluster: ClusterResult) -> "ClusterModel":
        return cls(
            cluster_id=cluster.cluster_id,
            algorithm=cluster.algorithm,
            label=cluster.label,
            size=cluster.size,
            density=cluster.density,
            avg_centrality=cluster.avg_centrality,
            representative=ArticleRefModel.from_ref(cluster.representative) if cluster.representative else None,
            members=[
                ClusterMemberModel(source_type=ref.source_type, id=ref.id, centrality=cluster.centrality[ref])
                for ref in cluster.members
            ],
        )


class GetClustersResponse(BaseModel):
    clusters: list[ClusterModel]
    total: int
    algorithm: str


class RunClusteringRequest(BaseModel):
    algorithm: str | None = Field(None, description="Clustering algorithm; server default when omitted")


class RunClusteringResponse(BaseModel):
    success: bool
    message: str
    cluster_count: int
    algorithm: str


class RecomputeStrengthsResponse(BaseModel):
    success: bool
    edge_count: int


class ArticleClusterResponse(BaseModel):
    article: ArticleRefModel
    algorithm: str
    cluster_id: int
    cluster_label: str
    centrality_score: float
    calculated_at: datetime
    cluster: ClusterModel

    @classmethod
    def from_domain(cls, assignment: ClusterAssignment, cluster: ClusterResult) -> "ArticleClusterResponse":
        return cls(
            article=ArticleRefModel.from_ref(assignment.article),
            algorithm=assignment.algorithm,
            cluster_id=assignment.cluster_id,
            cluster_label=assignment.cluster_label,
            centrality_score=assignment.centrality_score,
            calculated_at=assignment.calculated_at,
            cluster=ClusterModel.from_cluster(cluster),
        )


# ============================================================================
# Articles and secrets
# ============================================================================

class SecretMappingModel(BaseModel):
    secret_key: str
    classification_level: int
    has_access: bool
    revealed_content: str | None = None
    denied_message: str
    description: str | None = None


class ArticleResponse(BaseModel):
    source_type: str
    id: str
    title: str
    full_path: str
    classification_level: int
    status: str
    tags: list[str]
    metadata: dict
    content: str
    secret_mappings: list[SecretMappingModel]
    user_classification: int

    @classmethod
    def from_processed(cls, processed: ProcessedArticle) -> "ArticleResponse":
        article: Article = processed.article
        return cls(
            source_type=article.source_type,
            id=article.id,
            title=article.title,
            full_path=article.full_path,
            classification_level=article.classification_level,
            status=article.status,
            tags=sorted(article.tags),
            metadata=asdict(article.metadata),
            content=processed.content,
            secret_mappings=[
                SecretMappingModel(
                    secret_key=m.secret_key,
                    classification_level=m.classification_level,
                    has_access=m.granted_access,
                    revealed_content=m.revealed_content,
                    denied_message=m.denied_message,
                    description=m.description,
                )
                for m in processed.secret_mappings
            ],
            user_classification=processed.user_classification,
        )


class CreateSecretModel(BaseModel):
    secret_key: str = Field(..., description="Key referenced as {{SECRET:key}} in content")
    classification_level: int = Field(..., description="Level 1-5, at most the creator's clearance")
    content: str
    description: str | None = None


class CreateSecretsRequest(BaseModel):
    secrets: list[CreateSecretModel]


class CreateSecretsResponse(BaseModel):
    created: list[str]


class BacklinkModel(BaseModel):
    source: ArticleRefModel
    source_title: str
    source_path: str
    source_classification: int
    link_text: str | None = None
    context_snippet: str | None = None
    created_at: datetime

    @classmethod
    def from_summary(cls, summary: BacklinkSummary) -> "BacklinkModel":
        return cls(
            source=ArticleRefModel.from_ref(summary.source),
            source_title=summary.source_title,
            source_path=summary.source_path,
            source_classification=summary.source_classification,
            link_text=summary.link_text,
            context_snippet=summary.context_snippet,
            created_at=summary.created_at,
        )


class BrokenLinkModel(BaseModel):
    link_text: str
    target_path: str
    start: int
    end: int
    reason: str

    @classmethod
    def from_broken(cls, broken: BrokenLink) -> "BrokenLinkModel":
        return cls(**asdict(broken))
