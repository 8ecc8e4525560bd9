"""Load articles from markdown files with YAML frontmatter.

Example file::

    ---
    id: onboarding
    title: Onboarding
    classification_level: 2
    status: published
    tags: [people, process]
    metadata: {author: ops}
    secrets:
      - key: door-code
        classification_level: 4
        content: "4411"
        description: Server room door
    ---
    See [[Security Policy]] and {{SECRET:door-code}}.
"""

import logging
import re
from pathlib import Path
from typing import Any

import yaml

from ..errors import ValidationError
from ..models import (
    ARTICLE_STATUSES,
    MAX_LEVEL,
    MIN_LEVEL,
    SOURCE_TYPES,
    Article,
    Identity,
    SecretRequest,
    metadata_from_dict,
)
from ..services.container import Services

logger = logging.getLogger(__name__)

FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)
LOADER_IDENTITY = Identity(requester_id="ckb-loader", clearance_level=MAX_LEVEL)


def parse_article(file_path: Path, root: Path) -> tuple[Article, list[SecretRequest]]:
    """Parse one markdown file into an article and its secret requests."""
    text = file_path.read_text(encoding="utf-8", errors="replace")
    fm: dict[str, Any] = {}
    fm_match = FRONTMATTER_RE.match(text)
    if fm_match:
        try:
            fm = yaml.safe_load(fm_match.group(1)) or {}
        except yaml.YAMLError as e:
            raise ValidationError(f"{file_path}: bad frontmatter: {e}") from e
        content = text[fm_match.end():]
    else:
        content = text

    rel_path = file_path.relative_to(root).with_suffix("").as_posix()

    title = fm.get("title")
    if not title:
        title_match = re.search(r"^#\s+(.+)$", content, re.MULTILINE)
        title = title_match.group(1).strip() if title_match else file_path.stem

    level = fm.get("classification_level")
    if isinstance(level, bool) or not isinstance(level, int) or not MIN_LEVEL <= level <= MAX_LEVEL:
        raise ValidationError(f"{file_path}: classification_level must be {MIN_LEVEL}-{MAX_LEVEL}")

    source_type = fm.get("source_type", "doc")
    if source_type not in SOURCE_TYPES:
        raise ValidationError(f"{file_path}: unknown source_type '{source_type}'")
    status = fm.get("status", "published")
    if status not in ARTICLE_STATUSES:
        raise ValidationError(f"{file_path}: unknown status '{status}'")

    article = Article(
        source_type=source_type,
        id=str(fm.get("id", rel_path.replace("/", "-"))),
        title=str(title),
        full_path=str(fm.get("path", rel_path)),
        classification_level=level,
        content=content,
        status=status,
        tags={str(t) for t in fm.get("tags", []) or []},
        metadata=metadata_from_dict(source_type, fm.get("metadata")),
    )

    secrets = [_parse_secret(file_path, entry) for entry in fm.get("secrets", []) or []]
    return article, secrets


def _parse_secret(file_path: Path, entry: Any) -> SecretRequest:
    if not isinstance(entry, dict):
        raise ValidationError(f"{file_path}: each secret must be a mapping")
    key = str(entry.get("key") or "")
    if not key:
        raise ValidationError(f"{file_path}: secret without a key")
    level = entry.get("classification_level")
    if isinstance(level, bool) or not isinstance(level, int) or not MIN_LEVEL <= level <= MAX_LEVEL:
        raise ValidationError(
            f"{file_path}: secret '{key}' classification_level must be {MIN_LEVEL}-{MAX_LEVEL}"
        )
    description = entry.get("description")
    return SecretRequest(
        key=key,
        classification_level=level,
        content=str(entry.get("content", "")),
        description=str(description) if description is not None else None,
    )


def load_directory(root: Path, services: Services) -> list[Article]:
    """Load every markdown file under ``root`` and re-index links.

    Articles are stored first so links between files resolve regardless of
    file order. Secrets already present on an article are left untouched.
    """
    parsed = []
    for file_path in sorted(root.rglob("*.md")):
        if file_path.name.startswith("."):
            continue
        parsed.append(parse_article(file_path, root))

    for article, _ in parsed:
        services.store.put_article(article)

    for article, requests in parsed:
        existing = {s.key for s in services.store.get_secrets(article.ref)}
        new = [r for r in requests if r.key not in existing]
        if new:
            services.gate.create_secrets(article.ref, new, LOADER_IDENTITY)

    services.links.index_all()
    logger.info(f"Loaded {len(parsed)} article(s) from {root}")
    return [article for article, _ in parsed]
