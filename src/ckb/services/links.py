"""Link indexing and graph queries for one requester."""

import logging
import uuid
from typing import Any

from ..errors import NotFound
from ..classification.gate import check_article_clearance
from ..graph.builder import GraphBuilder, apply_filters, neighborhood
from ..links.extractor import Resolver, extract_links
from ..models import (
    MAX_LEVEL,
    Article,
    ArticleRef,
    BacklinkSummary,
    BrokenLink,
    GraphData,
    GraphFilters,
    GraphStats,
    Identity,
    StoredLink,
)
from ..storage import GraphStoreBase

logger = logging.getLogger(__name__)


class LinkService:
    """Keeps stored links in step with article content and answers graph queries."""

    def __init__(
        self,
        store: GraphStoreBase,
        builder: GraphBuilder | None = None,
        context_chars: int = 50,
        neighborhood_depth: int = 2,
    ):
        self.store = store
        self.builder = builder or GraphBuilder()
        self.context_chars = context_chars
        self.neighborhood_depth = neighborhood_depth

    @classmethod
    def from_config(cls, store: GraphStoreBase, config: dict[str, Any]) -> "LinkService":
        graph_cfg = config.get("graph", {})
        return cls(
            store,
            builder=GraphBuilder.from_config(config),
            context_chars=graph_cfg.get("context_chars", 50),
            neighborhood_depth=graph_cfg.get("neighborhood_depth", 2),
        )

    def resolver(self, source_type: str, viewer_level: int = MAX_LEVEL) -> Resolver:
        """Path/title lookup within one source type, blind above ``viewer_level``."""
        def resolve(path: str) -> Article | None:
            article = self.store.find_article(source_type, path)
            if article is None or article.classification_level > viewer_level:
                return None
            return article
        return resolve

    def _get_article(self, ref: ArticleRef) -> Article:
        article = self.store.get_article(ref)
        if article is None:
            raise NotFound("article", str(ref))
        return article

    # Indexing

    def index_article(self, ref: ArticleRef) -> list[StoredLink]:
        """Re-extract an article's outgoing links and replace the stored set."""
        article = self._get_article(ref)
        occurrences = extract_links(article.content, self.resolver(article.source_type), self.context_chars)
        links = [
            StoredLink(
                id=str(uuid.uuid4()),
                source=ref,
                target=o.target,
                link_text=o.display_text,
                link_type=o.link_type,
                context_snippet=o.context_snippet,
            )
            for o in occurrences.resolved()
        ]
        self.store.replace_links(ref, links)
        logger.debug(f"Indexed {len(links)} link(s) from {ref}")
        return links

    def index_all(self) -> int:
        """Re-index every article. Returns the number of stored links."""
        total = 0
        for article in self.store.list_articles():
            total += len(self.index_article(article.ref))
        logger.info(f"Indexed {total} link(s)")
        return total

    # Graph queries

    def graph(self, identity: Identity, filters: GraphFilters | None = None) -> GraphData:
        graph = self.builder.build(self.store.list_articles(), self.store.list_links(), identity.clearance_level)
        return apply_filters(graph, filters)

    def stats(self, identity: Identity) -> GraphStats:
        return self.graph(identity).stats

    def article_neighborhood(self, ref: ArticleRef, identity: Identity, depth: int | None = None) -> GraphData:
        article = self._get_article(ref)
        check_article_clearance(article, identity)
        depth = self.neighborhood_depth if depth is None else depth
        return neighborhood(self.graph(identity), ref, depth)

    def backlinks(self, ref: ArticleRef, identity: Identity) -> list[BacklinkSummary]:
        """Visible active articles linking to ``ref``, newest link first."""
        check_article_clearance(self._get_article(ref), identity)
        visible = {
            a.ref: a
            for a in self.store.list_articles()
            if a.is_active and a.classification_level <= identity.clearance_level
        }
        summaries = [
            BacklinkSummary(
                source=link.source,
                source_title=visible[link.source].title,
                source_path=visible[link.source].full_path,
                source_classification=visible[link.source].classification_level,
                link_text=link.link_text,
                context_snippet=link.context_snippet,
                created_at=link.created_at,
            )
            for link in self.store.list_links()
            if link.target == ref and link.source in visible
        ]
        summaries.sort(key=lambda s: s.created_at, reverse=True)
        return summaries

    def broken_links(self, ref: ArticleRef, identity: Identity) -> list[BrokenLink]:
        """Links in the article that do not resolve for this requester.

        A target above the requester's clearance is reported as not found.
        """
        article = self._get_article(ref)
        check_article_clearance(article, identity)
        occurrences = extract_links(
            article.content,
            self.resolver(article.source_type, identity.clearance_level),
            self.context_chars,
        )
        return [
            BrokenLink(
                link_text=o.text,
                target_path=o.target_path,
                start=o.start,
                end=o.end,
                reason=o.broken_reason,
            )
            for o in occurrences.broken()
        ]
