"""Link graph construction, structural flags and traversal.

Nodes and edges are kept in flat lists addressed by integer index; edges
reference node indices, never node objects, so cycles need no special care.
"""

import logging
from collections import deque
from collections.abc import Iterable

import numpy as np

from ..models import (
    Article,
    ArticleRef,
    GraphData,
    GraphEdge,
    GraphFilters,
    GraphNode,
    GraphStats,
    StoredLink,
)

logger = logging.getLogger(__name__)

MAX_NEIGHBORHOOD_DEPTH = 5


def role_threshold(counts: list[int], percentile: float) -> float:
    """Degree a node needs to count as an outlier in ``counts``.

    Uses the "higher" percentile method, so the threshold is always a value
    present in the data and every node tied at it qualifies.
    """
    if not counts:
        return float("inf")
    return float(np.percentile(np.asarray(counts), percentile, method="higher"))


def compute_stats(nodes: list[GraphNode], edges: list[GraphEdge]) -> GraphStats:
    """Summary statistics for a node/edge set."""
    stats = GraphStats(total_nodes=len(nodes), total_edges=len(edges))
    degrees = []
    for node in nodes:
        level = node.classification_level
        stats.nodes_by_classification[level] = stats.nodes_by_classification.get(level, 0) + 1
        stats.orphans_count += node.is_orphan
        stats.hubs_count += node.is_hub
        stats.authorities_count += node.is_authority
        degrees.append(node.total_degree)
    if degrees:
        stats.max_degree = max(degrees)
        stats.average_degree = sum(degrees) / len(degrees)
    return stats


def adjacency(graph: GraphData) -> list[list[int]]:
    """Undirected adjacency lists keyed by node index (parallel edges repeat)."""
    adj: list[list[int]] = [[] for _ in graph.nodes]
    for edge in graph.edges:
        adj[edge.source].append(edge.target)
        if edge.source != edge.target:
            adj[edge.target].append(edge.source)
    return adj


def subgraph(graph: GraphData, keep: Iterable[int]) -> GraphData:
    """Re-indexed copy of ``graph`` restricted to the node indices in ``keep``.

    Node degree counts and flags keep the values computed on the full graph.
    """
    keep_sorted = sorted(set(keep))
    remap = {old: new for new, old in enumerate(keep_sorted)}

    nodes = []
    for old in keep_sorted:
        n = graph.nodes[old]
        nodes.append(GraphNode(
            index=remap[old],
            article=n.article,
            title=n.title,
            full_path=n.full_path,
            classification_level=n.classification_level,
            status=n.status,
            inbound_count=n.inbound_count,
            outbound_count=n.outbound_count,
            is_hub=n.is_hub,
            is_authority=n.is_authority,
        ))

    edges = [
        GraphEdge(
            id=e.id,
            source=remap[e.source],
            target=remap[e.target],
            link_type=e.link_type,
            link_text=e.link_text,
            context_snippet=e.context_snippet,
            created_at=e.created_at,
        )
        for e in graph.edges
        if e.source in remap and e.target in remap
    ]
    return GraphData(nodes=nodes, edges=edges, stats=compute_stats(nodes, edges))


class GraphBuilder:
    """Builds the visible link graph for one viewer clearance level.

    Hub/authority rule: a node is a hub when its outbound count is positive,
    at least ``min_degree``, and at least the ``hub_percentile`` percentile of
    outbound counts across visible nodes. Authorities use inbound counts.
    """

    def __init__(self, hub_percentile: float = 90.0, min_degree: int = 2):
        if not 0 <= hub_percentile <= 100:
            raise ValueError(f"hub_percentile must be within [0, 100], got {hub_percentile}")
        self.hub_percentile = hub_percentile
        self.min_degree = max(1, min_degree)

    @classmethod
    def from_config(cls, config: dict) -> "GraphBuilder":
        graph_cfg = config.get("graph", {})
        return cls(
            hub_percentile=graph_cfg.get("hub_percentile", 90.0),
            min_degree=graph_cfg.get("min_degree", 2),
        )

    def build(
        self,
        articles: Iterable[Article],
        links: Iterable[StoredLink],
        viewer_level: int,
    ) -> GraphData:
        """Build nodes and edges visible at ``viewer_level``.

        Articles above the viewer's level, and archived articles, are left
        out entirely along with every edge touching them.
        """
        visible = sorted(
            (a for a in articles if a.is_active and a.classification_level <= viewer_level),
            key=lambda a: a.ref,
        )
        if not visible:
            return GraphData()

        index: dict[ArticleRef, int] = {}
        nodes = []
        for i, article in enumerate(visible):
            index[article.ref] = i
            nodes.append(GraphNode(
                index=i,
                article=article.ref,
                title=article.title,
                full_path=article.full_path,
                classification_level=article.classification_level,
                status=article.status,
            ))

        edges = []
        for link in links:
            src, dst = index.get(link.source), index.get(link.target)
            if src is None or dst is None:
                continue
            edges.append(GraphEdge(
                id=link.id,
                source=src,
                target=dst,
                link_type=link.link_type,
                link_text=link.link_text,
                context_snippet=link.context_snippet,
                created_at=link.created_at,
            ))
            nodes[src].outbound_count += 1
            nodes[dst].inbound_count += 1

        self._flag_roles(nodes)
        logger.debug(f"Built graph at level {viewer_level}: {len(nodes)} nodes, {len(edges)} edges")
        return GraphData(nodes=nodes, edges=edges, stats=compute_stats(nodes, edges))

    def _flag_roles(self, nodes: list[GraphNode]) -> None:
        hub_at = role_threshold([n.outbound_count for n in nodes], self.hub_percentile)
        authority_at = role_threshold([n.inbound_count for n in nodes], self.hub_percentile)
        for node in nodes:
            node.is_hub = node.outbound_count >= max(self.min_degree, hub_at)
            node.is_authority = node.inbound_count >= max(self.min_degree, authority_at)


def apply_filters(graph: GraphData, filters: GraphFilters | None) -> GraphData:
    """Select nodes by classification, source type and structural role."""
    if filters is None:
        return graph

    def keep(node: GraphNode) -> bool:
        if filters.min_classification is not None and node.classification_level < filters.min_classification:
            return False
        if filters.max_classification is not None and node.classification_level > filters.max_classification:
            return False
        if filters.source_types and node.article.source_type not in filters.source_types:
            return False
        if filters.only_hubs and not node.is_hub:
            return False
        if filters.only_authorities and not node.is_authority:
            return False
        if filters.only_orphans and not node.is_orphan:
            return False
        if filters.exclude_orphans and node.is_orphan:
            return False
        return True

    return subgraph(graph, (n.index for n in graph.nodes if keep(n)))


def neighborhood(graph: GraphData, root: ArticleRef, depth: int = 2) -> GraphData:
    """Nodes within ``depth`` undirected hops of ``root`` (depth clamped to 1..5)."""
    depth = min(max(depth, 1), MAX_NEIGHBORHOOD_DEPTH)
    start = graph.index_of(root)
    if start is None:
        return GraphData()

    adj = adjacency(graph)
    seen = {start}
    queue = deque([(start, 0)])
    while queue:
        current, dist = queue.popleft()
        if dist == depth:
            continue
        for neighbor in adj[current]:
            if neighbor not in seen:
                seen.add(neighbor)
                queue.append((neighbor, dist + 1))
    return subgraph(graph, seen)
