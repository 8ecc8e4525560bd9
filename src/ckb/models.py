"""Data models used throughout CKB."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

SOURCE_TYPES = ("doc", "git")
ARTICLE_STATUSES = ("draft", "published", "archived")
ACTIVE_STATUSES = ("draft", "published")
LINK_TYPES = ("wiki", "mention", "embed")
MIN_LEVEL = 1
MAX_LEVEL = 5


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, order=True)
class ArticleRef:
    """Identity of an article: (source_type, id)."""
    source_type: str
    id: str

    def __str__(self) -> str:
        return f"{self.source_type}/{self.id}"


@dataclass
class DocMetadata:
    """Metadata for hand-written documentation articles."""
    author: str = ""
    summary: str = ""
    source_type: str = field(default="doc", init=False)


@dataclass
class GitMetadata:
    """Metadata for articles mirrored from a git repository."""
    repository: str = ""
    branch: str = "main"
    file_path: str = ""
    commit: str = ""
    source_type: str = field(default="git", init=False)


ArticleMetadata = Union[DocMetadata, GitMetadata]


def metadata_from_dict(source_type: str, data: dict[str, Any] | None) -> ArticleMetadata:
    """Build the metadata variant for a source type, ignoring unknown keys."""
    data = dict(data or {})
    data.pop("source_type", None)
    if source_type == "doc":
        allowed = {"author", "summary"}
        return DocMetadata(**{k: str(v) for k, v in data.items() if k in allowed})
    if source_type == "git":
        allowed = {"repository", "branch", "file_path", "commit"}
        return GitMetadata(**{k: str(v) for k, v in data.items() if k in allowed})
    raise ValueError(f"Unknown source_type: {source_type}")


@dataclass
class Article:
    """A knowledge base article."""
    source_type: str
    id: str
    title: str
    full_path: str
    classification_level: int
    content: str = ""
    status: str = "draft"
    tags: set[str] = field(default_factory=set)
    metadata: ArticleMetadata | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if self.metadata is None:
            self.metadata = metadata_from_dict(self.source_type, None)

    @property
    def ref(self) -> ArticleRef:
        return ArticleRef(self.source_type, self.id)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


@dataclass
class ContentSecret:
    """A classified segment of an article, referenced by {{SECRET:key}}."""
    article: ArticleRef
    key: str
    classification_level: int
    content: str
    description: str | None = None
    created_by: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class SecretRequest:
    """A request to create a secret on an article."""
    key: str
    classification_level: int
    content: str
    description: str | None = None


@dataclass
class SecretMapping:
    """Render-time resolution of one secret placeholder for one requester."""
    secret_key: str
    classification_level: int
    granted_access: bool
    denied_message: str
    revealed_content: str | None = None
    description: str | None = None


@dataclass
class ProcessedArticle:
    """An article as served to one reader: content untouched, secrets mapped."""
    article: Article
    content: str
    secret_mappings: list[SecretMapping]
    user_classification: int


@dataclass(frozen=True)
class Identity:
    """A resolved requester, supplied by the authentication collaborator."""
    requester_id: str
    clearance_level: int


@dataclass(frozen=True)
class ClientInfo:
    """Client metadata recorded with audit entries."""
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class AccessLogEntry:
    """One secret-access decision. Never mutated once written."""
    article: ArticleRef
    secret_key: str
    requester_id: str
    user_level: int
    required_level: int
    granted: bool
    ip_address: str | None = None
    user_agent: str | None = None
    accessed_at: datetime = field(default_factory=utcnow)


@dataclass
class LinkOccurrence:
    """One wiki link found in an article's content."""
    start: int
    end: int
    text: str
    target_path: str
    display_text: str
    link_type: str = "wiki"
    context_snippet: str | None = None
    target: ArticleRef | None = None
    broken_reason: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.target is not None


@dataclass
class StoredLink:
    """A resolved link as persisted by the store (edge identity = id)."""
    id: str
    source: ArticleRef
    target: ArticleRef
    link_text: str
    link_type: str = "wiki"
    context_snippet: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class GraphNode:
    """A visible article in the link graph."""
    index: int
    article: ArticleRef
    title: str
    full_path: str
    classification_level: int
    status: str
    inbound_count: int = 0
    outbound_count: int = 0
    is_hub: bool = False
    is_authority: bool = False

    @property
    def total_degree(self) -> int:
        return self.inbound_count + self.outbound_count

    @property
    def is_orphan(self) -> bool:
        return self.total_degree == 0


@dataclass
class GraphEdge:
    """A directed link between two node indices."""
    id: str
    source: int
    target: int
    link_type: str = "wiki"
    link_text: str | None = None
    context_snippet: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class GraphStats:
    """Summary statistics of a graph."""
    total_nodes: int = 0
    total_edges: int = 0
    orphans_count: int = 0
    hubs_count: int = 0
    authorities_count: int = 0
    average_degree: float = 0.0
    max_degree: int = 0
    nodes_by_classification: dict[int, int] = field(default_factory=dict)


@dataclass
class GraphData:
    """Index-addressed node and edge collections."""
    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)
    stats: GraphStats = field(default_factory=GraphStats)

    def index_of(self, ref: ArticleRef) -> int | None:
        for node in self.nodes:
            if node.article == ref:
                return node.index
        return None


@dataclass
class GraphFilters:
    """Node selection filters applied after structural flags are computed."""
    min_classification: int | None = None
    max_classification: int | None = None
    source_types: list[str] = field(default_factory=list)
    only_hubs: bool = False
    only_authorities: bool = False
    only_orphans: bool = False
    exclude_orphans: bool = False


@dataclass
class LinkStrength:
    """Multi-factor weight of one edge."""
    link_id: str
    source: ArticleRef
    target: ArticleRef
    base: float = 1.0
    shared_tags_score: float = 0.0
    recency_score: float = 0.0
    bidirectional_score: float = 0.0
    link_count_score: float = 0.0
    normalized_strength: float = 0.5
    calculated_at: datetime = field(default_factory=utcnow)

    @property
    def total_strength(self) -> float:
        return (
            self.base
            + self.shared_tags_score
            + self.recency_score
            + self.bidirectional_score
            + self.link_count_score
        )


@dataclass
class ClusterResult:
    """Result of community detection for one cluster."""
    cluster_id: int
    algorithm: str
    members: list[ArticleRef]
    centrality: dict[ArticleRef, float]
    density: float = 0.0
    label: str = ""
    representative: ArticleRef | None = None

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def avg_centrality(self) -> float:
        if not self.centrality:
            return 0.0
        return sum(self.centrality.values()) / len(self.centrality)


@dataclass
class ClusterAssignment:
    """An article's cluster under one algorithm."""
    article: ArticleRef
    algorithm: str
    cluster_id: int
    cluster_label: str
    centrality_score: float
    calculated_at: datetime = field(default_factory=utcnow)


@dataclass
class BacklinkSummary:
    """A visible article linking to another."""
    source: ArticleRef
    source_title: str
    source_path: str
    source_classification: int
    link_text: str | None
    context_snippet: str | None
    created_at: datetime


@dataclass
class BrokenLink:
    """A link in content that does not resolve to a live article."""
    link_text: str
    target_path: str
    start: int
    end: int
    reason: str
