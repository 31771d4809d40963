"""Embedding similarity ranking over clean wardrobe items.

Everything here is pure: no session, no I/O. The composer hands in candidates
and gets back an ordered, capped, category-grouped selection.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from app.core.config import Settings
from app.models.models import CleanlinessStatus


@dataclass(frozen=True)
class MatcherConfig:
    top_k: int = 10
    per_category_cap: int = 3
    essential_categories: tuple[str, ...] = ("top", "bottom", "shoes")

    def __post_init__(self) -> None:
        if self.top_k < 1:
            raise ValueError("top_k must be >= 1")
        if self.per_category_cap < 1:
            raise ValueError("per_category_cap must be >= 1")

    @classmethod
    def from_settings(cls, s: Settings) -> "MatcherConfig":
        return cls(
            top_k=s.MATCHER_TOP_K,
            per_category_cap=s.MATCHER_PER_CATEGORY_CAP,
            essential_categories=tuple(s.essential_category_list),
        )


@dataclass(frozen=True)
class Candidate:
    item_id: str
    category: str
    embedding: Optional[Sequence[float]]
    freshness_score: int
    wear_count: int
    cleanliness_status: str = CleanlinessStatus.FRESH


@dataclass(frozen=True)
class ScoredItem:
    candidate: Candidate
    similarity: float
    bias: float
    rank: int = 0

    @property
    def score(self) -> float:
        return self.similarity + self.bias


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = 0.0
    na = 0.0
    nb = 0.0
    for x, y in zip(a, b):
        dot += x * y
        na += x * x
        nb += y * y
    if na == 0.0 or nb == 0.0:
        return 0.0
    sim = dot / (math.sqrt(na) * math.sqrt(nb))
    if math.isnan(sim):
        return 0.0
    return max(-1.0, min(1.0, sim))


def is_eligible(c: Candidate) -> bool:
    return c.cleanliness_status in CleanlinessStatus.RECOMMENDABLE


def _rank_key(s: ScoredItem):
    return (-s.score, -s.candidate.freshness_score, s.candidate.wear_count, s.candidate.item_id)


def rank(
    query: Optional[Sequence[float]],
    candidates: Iterable[Candidate],
    config: MatcherConfig,
    *,
    bias: Optional[Callable[[Candidate], float]] = None,
    essential_categories: Optional[Iterable[str]] = None,
) -> List[ScoredItem]:
    """Score, order and select candidates.

    The best eligible item of every essential category is always kept; the
    rest of the ``top_k`` slots are filled in rank order while honoring the
    per-category cap. The returned list is in global rank order with ``rank``
    set from 1.
    """
    essentials = tuple(essential_categories) if essential_categories is not None else config.essential_categories
    scored = [
        ScoredItem(candidate=c, similarity=cosine_similarity(query, c.embedding), bias=bias(c) if bias else 0.0)
        for c in candidates
        if is_eligible(c)
    ]
    scored.sort(key=_rank_key)

    chosen: List[ScoredItem] = []
    per_cat: Dict[str, int] = {}
    seen: set[str] = set()

    for cat in essentials:
        best = next((s for s in scored if s.candidate.category == cat), None)
        if best and best.candidate.item_id not in seen:
            chosen.append(best)
            seen.add(best.candidate.item_id)
            per_cat[cat] = per_cat.get(cat, 0) + 1

    for s in scored:
        if len(chosen) >= max(config.top_k, len(seen)):
            break
        if s.candidate.item_id in seen:
            continue
        if per_cat.get(s.candidate.category, 0) >= config.per_category_cap:
            continue
        chosen.append(s)
        seen.add(s.candidate.item_id)
        per_cat[s.candidate.category] = per_cat.get(s.candidate.category, 0) + 1

    chosen.sort(key=_rank_key)
    return [
        ScoredItem(candidate=s.candidate, similarity=s.similarity, bias=s.bias, rank=i)
        for i, s in enumerate(chosen, start=1)
    ]


def group_by_category(ranked: Iterable[ScoredItem]) -> Dict[str, List[ScoredItem]]:
    out: Dict[str, List[ScoredItem]] = {}
    for s in ranked:
        out.setdefault(s.candidate.category, []).append(s)
    return out
