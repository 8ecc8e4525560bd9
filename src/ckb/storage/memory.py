"""In-process graph store.

Each table is an immutable snapshot swapped under a lock, so a reader holding
the previous snapshot never sees a half-applied replace.
"""

import copy
import logging
import threading

from ..errors import ValidationError
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
from .base import GraphStoreBase

logger = logging.getLogger(__name__)


class MemoryGraphStore(GraphStoreBase):
    """Dictionary-backed store, safe for concurrent readers and writers."""

    def __init__(self):
        self.lock = threading.RLock()
        self._articles: dict[ArticleRef, Article] = {}
        self._secrets: dict[ArticleRef, dict[str, ContentSecret]] = {}
        self._links: dict[ArticleRef, list[StoredLink]] = {}
        self._strengths: dict[str, LinkStrength] = {}
        self._clusters: dict[str, list[ClusterResult]] = {}
        self._assignments: dict[str, dict[ArticleRef, ClusterAssignment]] = {}
        self._access_log: list[AccessLogEntry] = []

    def put_article(self, article: Article) -> None:
        with self.lock:
            self._articles[article.ref] = copy.deepcopy(article)

    def get_article(self, ref: ArticleRef) -> Article | None:
        with self.lock:
            article = self._articles.get(ref)
        return copy.deepcopy(article) if article else None

    def list_articles(self) -> list[Article]:
        with self.lock:
            articles = [self._articles[ref] for ref in sorted(self._articles)]
        return copy.deepcopy(articles)

    def find_article(self, source_type: str, path_or_title: str) -> Article | None:
        candidates = [a for a in self.list_articles() if a.source_type == source_type]
        for article in candidates:
            if article.full_path == path_or_title:
                return article
        for article in candidates:
            if article.title == path_or_title:
                return article
        return None

    def add_secrets(self, secrets: list[ContentSecret]) -> None:
        with self.lock:
            staged = {ref: dict(keys) for ref, keys in self._secrets.items()}
            for secret in secrets:
                keys = staged.setdefault(secret.article, {})
                if secret.key in keys:
                    raise ValidationError(f"Secret '{secret.key}' already exists on {secret.article}")
                keys[secret.key] = copy.deepcopy(secret)
            self._secrets = staged

    def get_secrets(self, ref: ArticleRef) -> list[ContentSecret]:
        with self.lock:
            keys = self._secrets.get(ref, {})
            return [copy.deepcopy(keys[k]) for k in sorted(keys)]

    def replace_links(self, source: ArticleRef, links: list[StoredLink]) -> None:
        with self.lock:
            self._links = {**self._links, source: list(links)}

    def list_links(self) -> list[StoredLink]:
        with self.lock:
            snapshot = self._links
        return [link for ref in sorted(snapshot) for link in snapshot[ref]]

    def replace_strengths(self, strengths: list[LinkStrength]) -> None:
        table = {s.link_id: s for s in strengths}
        with self.lock:
            self._strengths = table
        logger.debug(f"Replaced strength table with {len(table)} row(s)")

    def get_strengths(self) -> dict[str, LinkStrength]:
        with self.lock:
            return dict(self._strengths)

    def replace_clusters(
        self,
        algorithm: str,
        clusters: list[ClusterResult],
        assignments: list[ClusterAssignment],
    ) -> None:
        ordered = sorted(clusters, key=lambda c: c.cluster_id)
        by_article = {a.article: a for a in assignments}
        with self.lock:
            self._clusters = {**self._clusters, algorithm: ordered}
            self._assignments = {**self._assignments, algorithm: by_article}

    def get_clusters(self, algorithm: str) -> list[ClusterResult]:
        with self.lock:
            return copy.deepcopy(self._clusters.get(algorithm, []))

    def get_assignment(self, ref: ArticleRef, algorithm: str) -> ClusterAssignment | None:
        with self.lock:
            assignment = self._assignments.get(algorithm, {}).get(ref)
        return copy.deepcopy(assignment)

    def append_access_log(self, entry: AccessLogEntry) -> None:
        with self.lock:
            self._access_log.append(copy.deepcopy(entry))

    def list_access_log(self, ref: ArticleRef | None = None) -> list[AccessLogEntry]:
        with self.lock:
            entries = list(self._access_log)
        return [e for e in entries if ref is None or e.article == ref]
