"""Community detection over the strength-weighted link graph."""

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import replace
from typing import Any

import numpy as np

from ..errors import ClusteringCancelled, ValidationError
from ..models import (
    ArticleRef,
    ClusterAssignment,
    ClusterResult,
    GraphData,
    GraphEdge,
    LinkStrength,
    utcnow,
)
from .builder import adjacency

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "label_propagation"
DEFAULT_EDGE_WEIGHT = 0.5
# Even the weakest link in a batch normalizes to 0; it still connects its ends.
MIN_EDGE_WEIGHT = 0.05

Labels = list[int]


def edge_weight(edge: GraphEdge, strengths: Mapping[str, LinkStrength]) -> float:
    strength = strengths.get(edge.id)
    value = strength.normalized_strength if strength else DEFAULT_EDGE_WEIGHT
    return max(MIN_EDGE_WEIGHT, value)


def weighted_adjacency(
    graph: GraphData, strengths: Mapping[str, LinkStrength]
) -> list[dict[int, float]]:
    """Undirected neighbour -> summed weight, per node index. Self-loops dropped."""
    adj: list[dict[int, float]] = [{} for _ in graph.nodes]
    for edge in graph.edges:
        if edge.source == edge.target:
            continue
        w = edge_weight(edge, strengths)
        adj[edge.source][edge.target] = adj[edge.source].get(edge.target, 0.0) + w
        adj[edge.target][edge.source] = adj[edge.target].get(edge.source, 0.0) + w
    return adj


def connected_components(graph: GraphData) -> Labels:
    """Label each node with the smallest index of its connected component."""
    adj = adjacency(graph)
    labels = [-1] * len(graph.nodes)
    for start in range(len(graph.nodes)):
        if labels[start] != -1:
            continue
        labels[start] = start
        stack = [start]
        while stack:
            current = stack.pop()
            for neighbor in adj[current]:
                if labels[neighbor] == -1:
                    labels[neighbor] = start
                    stack.append(neighbor)
    return labels


class CommunityDetector:
    """Partitions visible articles into communities.

    Output is a pure function of the graph and the strengths: same input,
    same clusters, ids and representatives.
    """

    def __init__(self, max_iterations: int = 100, n_clusters: int = 8):
        self.max_iterations = max_iterations
        self.n_clusters = n_clusters
        self.algorithms: dict[str, Callable[..., Labels]] = {
            "label_propagation": self._label_propagation,
            "spectral": self._spectral,
        }

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "CommunityDetector":
        cluster_cfg = config.get("clustering", {})
        return cls(
            max_iterations=cluster_cfg.get("max_iterations", 100),
            n_clusters=cluster_cfg.get("n_clusters", 8),
        )

    def validate_algorithm(self, algorithm: str) -> str:
        if algorithm not in self.algorithms:
            raise ValidationError(
                f"Unknown clustering algorithm '{algorithm}' (choose from {', '.join(sorted(self.algorithms))})"
            )
        return algorithm

    def detect(
        self,
        graph: GraphData,
        strengths: Mapping[str, LinkStrength],
        algorithm: str = DEFAULT_ALGORITHM,
        cancel: threading.Event | None = None,
        deadline: float | None = None,
    ) -> list[ClusterResult]:
        """Run one algorithm and return clusters ordered by id.

        Args:
            graph: Visible graph; archived articles must already be excluded.
            strengths: Link strengths keyed by edge id.
            algorithm: Registered algorithm name.
            cancel: Set to abort the run between iterations.
            deadline: ``time.monotonic()`` value after which the run aborts.

        Raises:
            ClusteringCancelled: the run was cancelled or timed out.
        """
        self.validate_algorithm(algorithm)
        if not graph.nodes:
            return []

        def check():
            if cancel is not None and cancel.is_set():
                raise ClusteringCancelled(algorithm, "cancelled")
            if deadline is not None and time.monotonic() >= deadline:
                raise ClusteringCancelled(algorithm, "timed out")

        check()
        labels = self.algorithms[algorithm](graph, strengths, check)
        check()

        clusters = summarize(graph, strengths, labels, algorithm)
        logger.info(f"{algorithm}: {len(graph.nodes)} articles in {len(clusters)} cluster(s)")
        return clusters

    def _label_propagation(self, graph: GraphData, strengths, check) -> Labels:
        adj = weighted_adjacency(graph, strengths)
        labels = list(range(len(graph.nodes)))

        for iteration in range(self.max_iterations):
            check()
            changed = False
            for i, neighbors in enumerate(adj):
                if not neighbors:
                    continue
                scores: dict[int, float] = {}
                for neighbor, weight in neighbors.items():
                    scores[labels[neighbor]] = scores.get(labels[neighbor], 0.0) + weight
                best = min(scores, key=lambda label: (-scores[label], label))
                if best != labels[i]:
                    labels[i] = best
                    changed = True
            if not changed:
                logger.debug(f"Label propagation converged after {iteration + 1} iteration(s)")
                break
        else:
            logger.debug(f"Label propagation stopped at {self.max_iterations} iterations")
        return labels

    def _spectral(self, graph: GraphData, strengths, check) -> Labels:
        from sklearn.cluster import SpectralClustering

        n = len(graph.nodes)
        if n < 3 or not graph.edges:
            return connected_components(graph)

        affinity = np.zeros((n, n))
        for i, neighbors in enumerate(weighted_adjacency(graph, strengths)):
            for j, weight in neighbors.items():
                affinity[i, j] = weight
        if not affinity.any():
            return connected_components(graph)

        check()
        model = SpectralClustering(
            n_clusters=max(1, min(self.n_clusters, n - 1)),
            affinity="precomputed",
            assign_labels="discretize",
            random_state=0,
        )
        return [int(label) for label in model.fit_predict(affinity)]


def summarize(
    graph: GraphData,
    strengths: Mapping[str, LinkStrength],
    labels: Labels,
    algorithm: str,
) -> list[ClusterResult]:
    """Turn a node labelling into ordered, scored clusters."""
    adj = weighted_adjacency(graph, strengths)
    groups: dict[int, list[int]] = {}
    for i, label in enumerate(labels):
        groups.setdefault(label, []).append(i)

    clusters = [_score_cluster(graph, adj, members, algorithm) for members in groups.values()]
    clusters.sort(key=lambda c: (-c.size, c.representative))
    for cluster_id, cluster in enumerate(clusters):
        cluster.cluster_id = cluster_id
    return clusters


def _score_cluster(graph: GraphData, adj, members: list[int], algorithm: str) -> ClusterResult:
    member_set = set(members)
    n = len(members)

    pairs = {
        frozenset((i, j))
        for i in members
        for j in adj[i]
        if j in member_set
    }
    density = len(pairs) / (n * (n - 1) / 2) if n > 1 else 0.0

    centrality: dict[ArticleRef, float] = {}
    for i in members:
        internal = sum(w for j, w in adj[i].items() if j in member_set)
        centrality[graph.nodes[i].article] = internal / (n - 1) if n > 1 else 0.0

    representative = pick_representative(centrality)
    title = next(graph.nodes[i].title for i in members if graph.nodes[i].article == representative)
    return ClusterResult(
        cluster_id=-1,
        algorithm=algorithm,
        members=sorted(centrality),
        centrality=centrality,
        density=density,
        label=f"Cluster: {title}",
        representative=representative,
    )


def pick_representative(centrality: Mapping[ArticleRef, float]) -> ArticleRef | None:
    """Highest centrality; ties go to the lowest (source_type, id)."""
    if not centrality:
        return None
    return min(centrality, key=lambda ref: (-centrality[ref], ref))


def to_assignments(clusters: list[ClusterResult]) -> list[ClusterAssignment]:
    now = utcnow()
    return [
        ClusterAssignment(
            article=ref,
            algorithm=cluster.algorithm,
            cluster_id=cluster.cluster_id,
            cluster_label=cluster.label,
            centrality_score=cluster.centrality[ref],
            calculated_at=now,
        )
        for cluster in clusters
        for ref in cluster.members
    ]


def visible_clusters(
    clusters: list[ClusterResult],
    graph: GraphData,
    strengths: Mapping[str, LinkStrength],
) -> list[ClusterResult]:
    """Restrict stored clusters to the nodes of a viewer's ``graph``.

    A cluster that lost members is rescored over the visible members and
    visible edges only, so density, centrality and the representative say
    nothing about hidden articles. Clusters left empty are dropped and the
    remaining ones are renumbered from 0 in stored order.
    """
    index = {node.article: node.index for node in graph.nodes}
    adj = weighted_adjacency(graph, strengths)
    result = []
    for cluster in clusters:
        members = [index[ref] for ref in cluster.members if ref in index]
        if not members:
            continue
        if len(members) == cluster.size:
            view = replace(cluster)
        else:
            view = _score_cluster(graph, adj, members, cluster.algorithm)
        view.cluster_id = len(result)
        result.append(view)
    return result
