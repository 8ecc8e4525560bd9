"""Wiki-link extraction from article content."""

import re
from collections.abc import Callable, Iterator

from ..models import Article, LinkOccurrence

# [[target]], [[target|display]], ![[target]] (embed)
WIKILINK_RE = re.compile(r"(!)?\[\[(.*?)\]\]")
_MALFORMED_CHARS = set("[]{}\n")

REASON_NOT_FOUND = "target not found"
REASON_MALFORMED = "malformed target"
REASON_ARCHIVED = "target archived"

Resolver = Callable[[str], Article | None]


def context_snippet(content: str, start: int, end: int, context_chars: int = 50) -> str | None:
    """Return the text surrounding a span, trimmed."""
    snippet = content[max(0, start - context_chars):min(len(content), end + context_chars)].strip()
    return snippet or None


def _is_malformed(target: str) -> bool:
    return not target or any(c in _MALFORMED_CHARS for c in target)


class LinkOccurrences:
    """Links in one piece of content, in document order.

    Iterating scans the content again each time, so the sequence can be
    consumed any number of times. Resolution is delegated to ``resolve_path``.
    """

    def __init__(self, content: str, resolve_path: Resolver, context_chars: int = 50):
        self.content = content or ""
        self.resolve_path = resolve_path
        self.context_chars = context_chars

    def __iter__(self) -> Iterator[LinkOccurrence]:
        for match in WIKILINK_RE.finditer(self.content):
            yield self._occurrence(match)

    def _occurrence(self, match: re.Match) -> LinkOccurrence:
        inner = match.group(2)
        target, _, display = inner.partition("|")
        target = target.strip()
        display = display.strip() or target

        occurrence = LinkOccurrence(
            start=match.start(),
            end=match.end(),
            text=match.group(0),
            target_path=target,
            display_text=display,
            link_type="embed" if match.group(1) else "wiki",
            context_snippet=context_snippet(self.content, match.start(), match.end(), self.context_chars),
        )

        if _is_malformed(target):
            occurrence.broken_reason = REASON_MALFORMED
            return occurrence

        article = self.resolve_path(target)
        if article is None:
            occurrence.broken_reason = REASON_NOT_FOUND
        elif not article.is_active:
            occurrence.broken_reason = REASON_ARCHIVED
        else:
            occurrence.target = article.ref
        return occurrence

    def resolved(self) -> list[LinkOccurrence]:
        return [o for o in self if o.is_resolved]

    def broken(self) -> list[LinkOccurrence]:
        return [o for o in self if not o.is_resolved]


def extract_links(content: str, resolve_path: Resolver, context_chars: int = 50) -> LinkOccurrences:
    """Find all wiki links in content.

    Args:
        content: Raw markdown, possibly with secret placeholders.
        resolve_path: Lookup from a link target (path or title) to an article.
        context_chars: Characters of context kept on each side of a link.

    Returns:
        A restartable, lazily evaluated sequence of LinkOccurrence.
    """
    return LinkOccurrences(content, resolve_path, context_chars)
