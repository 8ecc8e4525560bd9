"""Abstract base class for graph stores and factory function."""

from abc import ABC, abstractmethod
from typing import Any

from ..models import (
    AccessLogEntry,
    Article,
    ArticleRef,
    ClusterAssignment,
    ClusterResult,
    ContentSecret,
    LinkStrength,
    StoredLink,
)


class GraphStoreBase(ABC):
    """Common interface for storage backends.

    Article and secret persistence belong to the article-storage collaborator;
    they live here so a single backend can serve a whole deployment. Every
    ``replace_*`` call is atomic: readers see either the old or the new set.
    """

    # Articles

    @abstractmethod
    def put_article(self, article: Article) -> None:
        """Insert or update an article."""

    @abstractmethod
    def get_article(self, ref: ArticleRef) -> Article | None:
        """Get an article by identity."""

    @abstractmethod
    def list_articles(self) -> list[Article]:
        """All articles, any status, ordered by (source_type, id)."""

    @abstractmethod
    def find_article(self, source_type: str, path_or_title: str) -> Article | None:
        """Find an article of a source type by full path, then by title."""

    # Secrets

    @abstractmethod
    def add_secrets(self, secrets: list[ContentSecret]) -> None:
        """Add secrets in one write. Fails as a whole on a duplicate key."""

    @abstractmethod
    def get_secrets(self, ref: ArticleRef) -> list[ContentSecret]:
        """Secrets owned by an article, ordered by key."""

    # Links

    @abstractmethod
    def replace_links(self, source: ArticleRef, links: list[StoredLink]) -> None:
        """Replace every outgoing link of an article."""

    @abstractmethod
    def list_links(self) -> list[StoredLink]:
        """All stored links."""

    # Strengths

    @abstractmethod
    def replace_strengths(self, strengths: list[LinkStrength]) -> None:
        """Replace the whole strength table."""

    @abstractmethod
    def get_strengths(self) -> dict[str, LinkStrength]:
        """Strengths keyed by link id."""

    # Clusters

    @abstractmethod
    def replace_clusters(
        self,
        algorithm: str,
        clusters: list[ClusterResult],
        assignments: list[ClusterAssignment],
    ) -> None:
        """Replace all clusters and assignments of one algorithm."""

    @abstractmethod
    def get_clusters(self, algorithm: str) -> list[ClusterResult]:
        """Clusters of one algorithm ordered by cluster id."""

    @abstractmethod
    def get_assignment(self, ref: ArticleRef, algorithm: str) -> ClusterAssignment | None:
        """An article's assignment under one algorithm."""

    # Audit

    @abstractmethod
    def append_access_log(self, entry: AccessLogEntry) -> None:
        """Append one secret-access decision."""

    @abstractmethod
    def list_access_log(self, ref: ArticleRef | None = None) -> list[AccessLogEntry]:
        """Access log entries, oldest first, optionally for one article."""


def get_graph_store(config: dict[str, Any]) -> GraphStoreBase:
    """Factory: return the right store based on config."""
    backend = config.get("storage_backend", "sql")

    if backend == "sql":
        from .sql import SQLGraphStore
        return SQLGraphStore(config["database_url"])
    elif backend == "memory":
        from .memory import MemoryGraphStore
        return MemoryGraphStore()
    else:
        raise ValueError(f"Unknown storage_backend: {backend}")
