"""Multi-factor link strength scoring.

Scoring is two-phase: every edge in a batch is scored first, then a single
min-max pass normalizes ``total_strength`` across the whole batch.
"""

import math
from collections import Counter
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone

import numpy as np

from ..models import ArticleRef, LinkStrength, StoredLink, utcnow

BASE_STRENGTH = 1.0
MAX_SHARED_TAGS_SCORE = 2.0
RECENCY_WINDOW_DAYS = 365
LINK_COUNT_SATURATION = 3.0  # log2(8)
EQUAL_STRENGTH_VALUE = 0.5


def shared_tags_score(tags_a: set[str], tags_b: set[str]) -> float:
    """Jaccard overlap of two tag sets scaled to [0, 2]."""
    union = tags_a | tags_b
    if not union:
        return 0.0
    return len(tags_a & tags_b) / len(union) * MAX_SHARED_TAGS_SCORE


def recency_score(created_at: datetime, now: datetime) -> float:
    """Linear decay from 1.0 (today) to 0.0 at 365 whole days, never negative."""
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    days = (now - created_at).days
    return min(1.0, max(0.0, 1.0 - days / RECENCY_WINDOW_DAYS))


def link_count_score(parallel_links: int) -> float:
    """log2 of the number of links between a pair over 3, capped at 1.0."""
    return min(1.0, math.log2(max(1, parallel_links)) / LINK_COUNT_SATURATION)


def normalize_strengths(strengths: list[LinkStrength]) -> list[LinkStrength]:
    """Min-max normalize total strength across the batch, in place.

    When every edge has the same total, each gets 0.5.
    """
    if not strengths:
        return strengths
    totals = np.array([s.total_strength for s in strengths], dtype=float)
    lo, hi = totals.min(), totals.max()
    if np.isclose(hi, lo):
        normalized = np.full_like(totals, EQUAL_STRENGTH_VALUE)
    else:
        normalized = (totals - lo) / (hi - lo)
    for strength, value in zip(strengths, normalized):
        strength.normalized_strength = float(value)
    return strengths


class LinkStrengthScorer:
    """Scores a batch of links against the tags of their endpoint articles."""

    def __init__(self, now: datetime | None = None):
        self.now = now

    def score_all(
        self,
        links: Iterable[StoredLink],
        tags: Mapping[ArticleRef, set[str]],
    ) -> list[LinkStrength]:
        """Score every link, then normalize over the batch."""
        links = list(links)
        now = self.now or utcnow()
        directed = {(l.source, l.target) for l in links}
        pair_counts = Counter(frozenset((l.source, l.target)) for l in links)

        strengths = []
        for link in links:
            reverse = link.source != link.target and (link.target, link.source) in directed
            strengths.append(LinkStrength(
                link_id=link.id,
                source=link.source,
                target=link.target,
                base=BASE_STRENGTH,
                shared_tags_score=shared_tags_score(
                    set(tags.get(link.source, ())), set(tags.get(link.target, ()))
                ),
                recency_score=recency_score(link.created_at, now),
                bidirectional_score=1.0 if reverse else 0.0,
                link_count_score=link_count_score(pair_counts[frozenset((link.source, link.target))]),
                calculated_at=now,
            ))

        # Only after the whole batch is scored
        return normalize_strengths(strengths)
