"""Fuzzy name matching.

Pure business logic: resolves a free-text name (course, assignment, group)
to the closest candidates. No knowledge of AppState, MCP, or I/O.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, TypeVar

from rapidfuzz import fuzz, process

if TYPE_CHECKING:
    from collections.abc import Sequence

T = TypeVar("T")

DEFAULT_SCORE_CUTOFF = 60


def normalise_query(raw: str) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    return re.sub(r"\s+", " ", raw).strip().lower()


def _field(item: Any, key: str) -> str:
    value = item.get(key) if isinstance(item, dict) else getattr(item, key, None)
    return str(value) if value else ""


def rank_matches(
    query: str,
    items: Sequence[T],
    keys: Sequence[str],
    *,
    score_cutoff: float = DEFAULT_SCORE_CUTOFF,
    limit: int = 5,
) -> list[tuple[T, float]]:
    """Score every item against the query and return the best ``limit``.

    Each item is scored by its best-matching key. Exact (case-insensitive)
    key matches always rank first with relevance 1.0. Relevance is 0.0–1.0.
    """
    normalised = normalise_query(query)
    if not normalised or not items:
        return []

    best: dict[int, float] = {}

    # Step 1: exact key match
    corpus: list[tuple[str, int]] = []
    for idx, item in enumerate(items):
        for key in keys:
            value = normalise_query(_field(item, key))
            if not value:
                continue
            if value == normalised:
                best[idx] = 1.0
            corpus.append((value, idx))

    # Step 2: fuzzy match over every key value
    results = process.extract(
        normalised,
        [term for term, _ in corpus],
        scorer=fuzz.WRatio,
        limit=None,
        score_cutoff=score_cutoff,
    )
    for _term, score, corpus_idx in results:
        _, idx = corpus[corpus_idx]
        relevance = round(score / 100, 2)
        if relevance > best.get(idx, 0.0):
            best[idx] = relevance

    ranked = sorted(best.items(), key=lambda pair: pair[1], reverse=True)
    return [(items[idx], relevance) for idx, relevance in ranked[:limit]]


def find_best_match(
    query: str,
    items: Sequence[T],
    keys: Sequence[str] = ("name",),
    *,
    score_cutoff: float = DEFAULT_SCORE_CUTOFF,
) -> T | None:
    """Return the single best-matching item, or ``None`` below the cutoff."""
    ranked = rank_matches(query, items, keys, score_cutoff=score_cutoff, limit=1)
    return ranked[0][0] if ranked else None
