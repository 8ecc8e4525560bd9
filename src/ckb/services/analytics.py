"""Strength recompute and clustering runs over the whole knowledge base."""

import logging
import threading
import time
from dataclasses import replace
from typing import Any

from ..errors import ClusteringCancelled, InsufficientClearance, NotFound
from ..classification.gate import check_article_clearance
from ..graph.builder import GraphBuilder
from ..graph.community import (
    DEFAULT_ALGORITHM,
    CommunityDetector,
    to_assignments,
    visible_clusters,
)
from ..graph.strength import LinkStrengthScorer
from ..models import (
    MAX_LEVEL,
    ArticleRef,
    ClusterAssignment,
    ClusterResult,
    Identity,
    LinkStrength,
)
from ..storage import GraphStoreBase

logger = logging.getLogger(__name__)

# Final normalization and persistence of strengths happen one run at a time.
_recompute_lock = threading.Lock()


def require_clearance(identity: Identity, level: int, action: str) -> None:
    if identity.clearance_level < level:
        raise InsufficientClearance(level, identity.clearance_level, action)


class AnalyticsService:
    """Computes link strengths and communities and serves the stored results."""

    def __init__(
        self,
        store: GraphStoreBase,
        builder: GraphBuilder | None = None,
        detector: CommunityDetector | None = None,
        default_algorithm: str = DEFAULT_ALGORITHM,
        timeout_seconds: float | None = 60,
        run_min_clearance: int = 4,
    ):
        self.store = store
        self.builder = builder or GraphBuilder()
        self.detector = detector or CommunityDetector()
        self.default_algorithm = default_algorithm
        self.timeout_seconds = timeout_seconds
        self.run_min_clearance = run_min_clearance

    @classmethod
    def from_config(cls, store: GraphStoreBase, config: dict[str, Any]) -> "AnalyticsService":
        cluster_cfg = config.get("clustering", {})
        return cls(
            store,
            builder=GraphBuilder.from_config(config),
            detector=CommunityDetector.from_config(config),
            default_algorithm=cluster_cfg.get("default_algorithm", DEFAULT_ALGORITHM),
            timeout_seconds=cluster_cfg.get("timeout_seconds", 60),
            run_min_clearance=cluster_cfg.get("run_min_clearance", 4),
        )

    # Strengths

    def recompute_strengths(self, identity: Identity | None = None, now=None) -> list[LinkStrength]:
        """Score every link between active articles and replace the strength table.

        ``identity`` of None means a trusted local caller (CLI, scheduler).
        """
        if identity is not None:
            require_clearance(identity, self.run_min_clearance, "recompute link strengths")

        with _recompute_lock:
            articles = {a.ref: a for a in self.store.list_articles() if a.is_active}
            links = [
                link for link in self.store.list_links()
                if link.source in articles and link.target in articles
            ]
            tags = {ref: a.tags for ref, a in articles.items()}
            strengths = LinkStrengthScorer(now=now).score_all(links, tags)
            self.store.replace_strengths(strengths)

        logger.info(f"Recomputed strengths for {len(strengths)} link(s)")
        return strengths

    # Clusters

    def run_clustering(
        self,
        identity: Identity | None = None,
        algorithm: str | None = None,
        cancel: threading.Event | None = None,
    ) -> list[ClusterResult]:
        """Detect communities over the active articles the caller can see and persist them.

        A trusted local caller (``identity`` None) clusters every article. On
        cancellation or timeout the previous run's clusters stay in place.
        """
        if identity is not None:
            require_clearance(identity, self.run_min_clearance, "run clustering")
        algorithm = self.detector.validate_algorithm(algorithm or self.default_algorithm)

        level = identity.clearance_level if identity is not None else MAX_LEVEL
        graph = self.builder.build(self.store.list_articles(), self.store.list_links(), level)
        deadline = time.monotonic() + self.timeout_seconds if self.timeout_seconds else None
        try:
            clusters = self.detector.detect(
                graph, self.store.get_strengths(), algorithm, cancel=cancel, deadline=deadline
            )
        except ClusteringCancelled as e:
            logger.warning(str(e))
            raise

        self.store.replace_clusters(algorithm, clusters, to_assignments(clusters))
        return clusters

    def _visible_graph(self, identity: Identity):
        return self.builder.build(
            self.store.list_articles(), self.store.list_links(), identity.clearance_level
        )

    def clusters(self, identity: Identity, algorithm: str | None = None) -> list[ClusterResult]:
        """Stored clusters as seen by the requester.

        Members above the requester's clearance are removed and the affected
        clusters rescored over what remains.
        """
        algorithm = self.detector.validate_algorithm(algorithm or self.default_algorithm)
        return visible_clusters(
            self.store.get_clusters(algorithm),
            self._visible_graph(identity),
            self.store.get_strengths(),
        )

    def article_cluster(
        self, ref: ArticleRef, identity: Identity, algorithm: str | None = None
    ) -> tuple[ClusterAssignment, ClusterResult]:
        """An article's assignment and the visible part of its cluster."""
        algorithm = self.detector.validate_algorithm(algorithm or self.default_algorithm)
        article = self.store.get_article(ref)
        if article is None:
            raise NotFound("article", str(ref))
        check_article_clearance(article, identity)

        assignment = self.store.get_assignment(ref, algorithm)
        if assignment is None:
            raise NotFound("cluster assignment", f"{ref} ({algorithm})")
        cluster = next((c for c in self.clusters(identity, algorithm) if ref in c.centrality), None)
        if cluster is None:
            raise NotFound("cluster", f"{assignment.cluster_id} ({algorithm})")
        view = replace(
            assignment,
            cluster_id=cluster.cluster_id,
            cluster_label=cluster.label,
            centrality_score=cluster.centrality[ref],
        )
        return view, cluster
