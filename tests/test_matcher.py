import math
import random

import pytest

from app.models.models import CleanlinessStatus
from app.services.matcher import Candidate, MatcherConfig, cosine_similarity, group_by_category, rank


def _cand(item_id, category, embedding, score=100, wears=0, status=CleanlinessStatus.FRESH):
    return Candidate(
        item_id=item_id,
        category=category,
        embedding=embedding,
        freshness_score=score,
        wear_count=wears,
        cleanliness_status=status,
    )


def test_cosine_properties():
    rng = random.Random(3)
    for _ in range(200):
        a = [rng.uniform(-1, 1) for _ in range(8)]
        b = [rng.uniform(-1, 1) for _ in range(8)]
        s = cosine_similarity(a, b)
        assert -1.0 <= s <= 1.0
        assert s == pytest.approx(cosine_similarity(b, a))
        assert cosine_similarity(a, a) == pytest.approx(1.0)


def test_cosine_degenerate_inputs():
    assert cosine_similarity([], [1.0]) == 0.0
    assert cosine_similarity(None, [1.0]) == 0.0
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    assert cosine_similarity([math.nan, 1.0], [1.0, 1.0]) == 0.0
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)


def test_closest_item_ranks_first():
    cfg = MatcherConfig(essential_categories=())
    ranked = rank(
        [1.0, 0.0, 0.0],
        [_cand("b", "top", [0.0, 1.0, 0.0]), _cand("a", "top", [1.0, 0.0, 0.0])],
        cfg,
    )
    assert [s.candidate.item_id for s in ranked] == ["a", "b"]
    assert ranked[0].rank == 1
    assert ranked[0].similarity == pytest.approx(1.0)
    assert ranked[1].similarity == pytest.approx(0.0)


def test_ineligible_items_never_ranked():
    cfg = MatcherConfig(essential_categories=())
    cands = [
        _cand("dirty", "top", [1.0, 0.0], status=CleanlinessStatus.NEEDS_WASH),
        _cand("washing", "top", [1.0, 0.0], status=CleanlinessStatus.IN_LAUNDRY),
        _cand("washed", "top", [1.0, 0.0], status=CleanlinessStatus.WASHED),
        _cand("ok", "top", [0.0, 1.0], status=CleanlinessStatus.READY_TO_WEAR),
    ]
    assert [s.candidate.item_id for s in rank([1.0, 0.0], cands, cfg)] == ["ok"]


def test_category_cap_and_top_k():
    cfg = MatcherConfig(top_k=4, per_category_cap=2, essential_categories=())
    cands = [_cand(f"t{i}", "top", [1.0, 0.1 * i]) for i in range(5)]
    cands += [_cand(f"b{i}", "bottom", [0.5, 1.0 + i]) for i in range(3)]
    ranked = rank([1.0, 0.0], cands, cfg)
    assert len(ranked) == 4
    groups = group_by_category(ranked)
    assert len(groups["top"]) == 2
    assert len(groups["bottom"]) == 2
    assert [s.rank for s in ranked] == [1, 2, 3, 4]
    assert [s.candidate.item_id for s in groups["top"]] == ["t0", "t1"]


def test_essentials_survive_a_small_top_k():
    cfg = MatcherConfig(top_k=1, per_category_cap=3, essential_categories=("top", "bottom", "shoes"))
    cands = [
        _cand("top", "top", [1.0, 0.0]),
        _cand("bottom", "bottom", [0.0, 1.0]),
        _cand("shoes", "shoes", [-1.0, 0.0]),
        _cand("hat", "accessories", [1.0, 0.0]),
    ]
    ranked = rank([1.0, 0.0], cands, cfg)
    assert {s.candidate.category for s in ranked} == {"top", "bottom", "shoes"}


def test_bias_and_tie_breaks():
    cfg = MatcherConfig(essential_categories=())
    same = [1.0, 0.0]
    cands = [
        _cand("worn", "top", same, score=50, wears=2),
        _cand("fresh", "top", same, score=100, wears=0),
        _cand("liked", "top", [0.9, 0.1], score=50),
    ]
    ranked = rank(same, cands, cfg)
    assert [s.candidate.item_id for s in ranked][:2] == ["fresh", "worn"]

    ranked = rank(same, cands, cfg, bias=lambda c: 0.2 if c.item_id == "liked" else 0.0)
    assert ranked[0].candidate.item_id == "liked"
    assert ranked[0].score == pytest.approx(ranked[0].similarity + 0.2)


def test_no_query_keeps_freshest_first():
    cfg = MatcherConfig(essential_categories=())
    cands = [_cand("old", "top", None, score=40, wears=3), _cand("new", "top", None, score=90, wears=1)]
    ranked = rank([], cands, cfg)
    assert [s.candidate.item_id for s in ranked] == ["new", "old"]
    assert all(s.similarity == 0.0 for s in ranked)


def test_config_validation():
    with pytest.raises(ValueError):
        MatcherConfig(top_k=0)
    with pytest.raises(ValueError):
        MatcherConfig(per_category_cap=0)
