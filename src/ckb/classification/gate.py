"""Classification-based access control for articles and their secrets.

Article content is never rewritten here. Each ``{{SECRET:key}}`` placeholder
stays in the text and gets a mapping telling the client whether to reveal the
secret or show the denial message. Every mapping produces one audit entry.
"""

import logging
import re

from ..errors import InsufficientClearance, NotFound, ValidationError
from ..models import (
    MAX_LEVEL,
    MIN_LEVEL,
    AccessLogEntry,
    Article,
    ArticleRef,
    ClientInfo,
    ContentSecret,
    Identity,
    ProcessedArticle,
    SecretMapping,
    SecretRequest,
)
from ..storage import GraphStoreBase
from .audit import AuditSink

logger = logging.getLogger(__name__)

SECRET_PLACEHOLDER_RE = re.compile(r"\{\{SECRET:([^{}\s]+)\}\}")
SECRET_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
ACCESS_DENIED_MESSAGE = "[Access Denied]"


def placeholder_keys(content: str) -> list[str]:
    """Secret keys referenced in content, first appearance order, no repeats."""
    return list(dict.fromkeys(SECRET_PLACEHOLDER_RE.findall(content or "")))


def check_article_clearance(article: Article, identity: Identity, action: str = "read this article") -> None:
    if identity.clearance_level < article.classification_level:
        raise InsufficientClearance(article.classification_level, identity.clearance_level, action)


class ClassificationGate:
    """Decides, per reader, which secrets of an article are revealed."""

    def __init__(self, store: GraphStoreBase, audit: AuditSink):
        self.store = store
        self.audit = audit

    def resolve(
        self,
        article: Article,
        secrets: list[ContentSecret],
        identity: Identity,
        client: ClientInfo | None = None,
    ) -> ProcessedArticle:
        """Build the reader's view of ``article``.

        Raises:
            InsufficientClearance: the article itself is above the reader's level.
        """
        check_article_clearance(article, identity)
        client = client or ClientInfo()
        by_key = {s.key: s for s in secrets}

        mappings = []
        for key in placeholder_keys(article.content):
            secret = by_key.get(key)
            if secret is None:
                continue
            granted = identity.clearance_level >= secret.classification_level
            mappings.append(SecretMapping(
                secret_key=key,
                classification_level=secret.classification_level,
                granted_access=granted,
                denied_message=ACCESS_DENIED_MESSAGE,
                revealed_content=secret.content if granted else None,
                description=secret.description,
            ))
            self.audit.record(AccessLogEntry(
                article=article.ref,
                secret_key=key,
                requester_id=identity.requester_id,
                user_level=identity.clearance_level,
                required_level=secret.classification_level,
                granted=granted,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            ))

        return ProcessedArticle(
            article=article,
            content=article.content,
            secret_mappings=mappings,
            user_classification=identity.clearance_level,
        )

    def read(self, ref: ArticleRef, identity: Identity, client: ClientInfo | None = None) -> ProcessedArticle:
        article = self.store.get_article(ref)
        if article is None:
            raise NotFound("article", str(ref))
        check_article_clearance(article, identity)
        return self.resolve(article, self.store.get_secrets(ref), identity, client)

    def create_secrets(
        self,
        ref: ArticleRef,
        requests: list[SecretRequest],
        identity: Identity,
    ) -> list[ContentSecret]:
        """Validate every request, then store all of them in one write.

        Nothing is written unless every request passes.

        Raises:
            NotFound: no such article.
            ValidationError: bad key, bad level, or duplicate key.
            InsufficientClearance: a requested level is above the creator's.
        """
        article = self.store.get_article(ref)
        if article is None:
            raise NotFound("article", str(ref))
        check_article_clearance(article, identity, "modify this article")
        if not requests:
            raise ValidationError("No secrets given")

        existing = {s.key for s in self.store.get_secrets(ref)}
        seen: set[str] = set()
        for req in requests:
            if not req.key or not SECRET_KEY_RE.match(req.key):
                raise ValidationError(f"Invalid secret key: {req.key!r}")
            if req.key in seen or req.key in existing:
                raise ValidationError(f"Duplicate secret key: {req.key}")
            seen.add(req.key)
            if not MIN_LEVEL <= req.classification_level <= MAX_LEVEL:
                raise ValidationError(
                    f"Classification level must be {MIN_LEVEL}-{MAX_LEVEL}, got {req.classification_level}"
                )
            if req.classification_level > identity.clearance_level:
                raise InsufficientClearance(
                    req.classification_level,
                    identity.clearance_level,
                    f"create secret '{req.key}'",
                )

        secrets = [
            ContentSecret(
                article=ref,
                key=req.key,
                classification_level=req.classification_level,
                content=req.content,
                description=req.description,
                created_by=identity.requester_id,
            )
            for req in requests
        ]
        self.store.add_secrets(secrets)
        logger.info(f"{identity.requester_id} added {len(secrets)} secret(s) to {ref}")
        return secrets
