import logging
import uuid

import pytest
from sqlalchemy import func, select

from app.core.errors import NotFoundError, ValidationError
from app.models.models import CleanlinessStatus, Recommendation, RecommendationWear, WashPreference
from app.services.composer import ComposerConfig, RecommendationComposer, RecommendationContext
from app.services.matcher import MatcherConfig
from tests.fixtures import FakeLLMProvider, weather_payload

USER = "test-user"
PARIS = dict(latitude=48.85, longitude=2.35)


def _ids(rec: Recommendation, category: str):
    return [str(it.clothing_item_id) for it in rec.items if it.category == category]


@pytest.fixture
def composer(services):
    return services.composer


@pytest.mark.asyncio
async def test_only_clean_items_and_closest_first(session, make_item, composer, llm_provider):
    a = await make_item("top", name="Oxford shirt", embedding=[1.0, 0.0, 0.0])
    b = await make_item("top", name="Graphic tee", embedding=[0.0, 1.0, 0.0])
    dirty = await make_item("top", wash_preference=WashPreference.AFTER_EACH_WEAR, embedding=[1.0, 0.0, 0.0])
    washing = await make_item("bottom", embedding=[1.0, 0.0, 0.0])
    shoes = await make_item("shoes", name="Loafers", embedding=[0.6, 0.8, 0.0])
    await composer.freshness.record_wear(session, USER, dirty)
    await composer.freshness.add_to_laundry(session, USER, washing)

    rec = await composer.compose(session, USER, RecommendationContext(occasion="work"))

    assert _ids(rec, "top") == [str(a), str(b)]
    assert _ids(rec, "shoes") == [str(shoes)]
    assert str(dirty) not in rec.items_by_category.get("top", [])
    assert "bottom" not in rec.items_by_category
    assert rec.items[0].clothing_item_id == a
    assert rec.items[0].similarity == pytest.approx(1.0)
    assert rec.narrative == llm_provider.narrative
    assert rec.degraded is None
    assert llm_provider.last_payload.items_by_category["top"] == ["Oxford shirt", "Graphic tee"]

    body = await composer.render(session, rec)
    assert body["total_items"] == 3
    assert body["ai_suggestion"] == llm_provider.narrative
    assert body["degraded"] == []
    assert body["items_by_category"]["top"][0]["name"] == "Oxford shirt"
    assert body["context"]["occasion"] == "work"


@pytest.mark.asyncio
async def test_narrative_timeout_still_persists(session_factory, session, make_item, services):
    slow = FakeLLMProvider(narrate_delay=1.0)
    composer = RecommendationComposer(
        freshness=services.freshness,
        feedback=services.feedback,
        provider=slow,
        weather=services.weather,
        config=ComposerConfig(narrative_timeout_ms=50, narrative_cache=False),
    )
    await make_item("top", embedding=[1.0, 0.0, 0.0])

    rec = await composer.compose(session, USER, RecommendationContext())
    assert rec.narrative is None
    assert rec.degraded == ["narrative"]
    assert slow.narrate_calls == 1

    async with session_factory() as other:
        stored = await other.get(Recommendation, rec.id)
        assert stored is not None
        assert len(stored.items) == 1
        assert stored.degraded == ["narrative"]


@pytest.mark.asyncio
async def test_weather_failure_degrades(session, make_item, composer, weather_provider):
    weather_provider.fail = "http_error"
    await make_item("top", embedding=[1.0, 0.0, 0.0])

    rec = await composer.compose(session, USER, RecommendationContext(**PARIS))
    assert rec.degraded == ["weather"]
    assert rec.weather is None
    assert len(rec.items) == 1


@pytest.mark.asyncio
async def test_embedding_failure_falls_back_to_freshness(session, make_item, composer, llm_provider):
    llm_provider.fail_embedding = True
    worn = await make_item("top", embedding=[1.0, 0.0, 0.0])
    fresh = await make_item("top", embedding=[0.0, 1.0, 0.0])
    await composer.freshness.record_wear(session, USER, worn)

    rec = await composer.compose(session, USER, RecommendationContext())
    assert rec.degraded == ["embedding"]
    assert _ids(rec, "top") == [str(fresh), str(worn)]
    assert all(it.similarity == 0.0 for it in rec.items)


@pytest.mark.asyncio
async def test_hot_weather_filters_items(session, make_item, composer, weather_provider):
    weather_provider.payload = weather_payload(temperature=34)
    tee = await make_item("top", details={"material": "cotton"}, embedding=[1.0, 0.0, 0.0])
    await make_item("top", details={"material": "merino wool"}, embedding=[1.0, 0.0, 0.0])
    await make_item("outerwear", embedding=[1.0, 0.0, 0.0])

    rec = await composer.compose(session, USER, RecommendationContext(**PARIS))
    assert [str(it.clothing_item_id) for it in rec.items] == [str(tee)]
    assert rec.weather["advisory"]["weather_type"] == "hot"
    assert rec.weather["stale"] is False
    assert rec.context["query_text"].endswith("hot weather")


@pytest.mark.asyncio
async def test_rain_requires_outerwear(session, make_item, services, weather_provider):
    weather_provider.payload = weather_payload(temperature=14, description="heavy_rain")
    composer = RecommendationComposer(
        freshness=services.freshness,
        feedback=services.feedback,
        provider=FakeLLMProvider(),
        weather=services.weather,
        matcher_config=MatcherConfig(top_k=1, essential_categories=()),
        config=ComposerConfig(narrative_cache=False),
    )
    await make_item("top", embedding=[1.0, 0.0, 0.0])
    coat = await make_item("outerwear", embedding=[0.0, 1.0, 0.0])

    rec = await composer.compose(session, USER, RecommendationContext(**PARIS))
    assert str(coat) in _ids(rec, "outerwear")


@pytest.mark.asyncio
async def test_empty_wardrobe(session, composer, llm_provider):
    rec = await composer.compose(session, USER, RecommendationContext(query="something cozy"))
    assert rec.items == []
    assert rec.narrative is None
    assert rec.degraded is None
    assert llm_provider.narrate_calls == 0
    assert llm_provider.embed_calls == 0


@pytest.mark.asyncio
async def test_context_validation(session, composer):
    with pytest.raises(ValidationError) as exc:
        await composer.compose(session, USER, RecommendationContext(occasion="funeral"))
    assert exc.value.code == "invalid_occasion"
    with pytest.raises(ValidationError) as exc:
        await composer.compose(session, USER, RecommendationContext(latitude=10.0))
    assert exc.value.code == "latitude_and_longitude_required_together"
    assert await session.scalar(select(func.count()).select_from(Recommendation)) == 0


@pytest.mark.asyncio
async def test_mark_worn_skips_unwearable_items(session, make_item, composer):
    top = await make_item("top", embedding=[1.0, 0.0, 0.0])
    shoes = await make_item("shoes", embedding=[1.0, 0.0, 0.0])
    rec = await composer.compose(session, USER, RecommendationContext())
    await composer.freshness.add_to_laundry(session, USER, shoes)

    out = await composer.mark_worn(session, USER, rec.id)
    assert out["worn"] == [str(top)]
    assert out["skipped"] == [{"item_id": str(shoes), "reason": "cannot_wear_from_in_laundry"}]

    item = await composer.freshness.load_item(session, USER, top)
    assert item.wear_count == 1
    assert item.freshness_score == 75

    res = await session.execute(select(RecommendationWear).where(RecommendationWear.recommendation_id == rec.id))
    log = res.scalar_one()
    assert log.worn_item_ids == [str(top)]
    assert log.skipped_item_ids == [str(shoes)]

    with pytest.raises(ValidationError) as exc:
        await composer.mark_worn(session, USER, rec.id, [str(uuid.uuid4())])
    assert exc.value.code == "item_not_in_recommendation"


@pytest.mark.asyncio
async def test_history_and_ownership(session, make_item, composer):
    await make_item("top", embedding=[1.0, 0.0, 0.0])
    first = await composer.compose(session, USER, RecommendationContext(occasion="casual"))
    second = await composer.compose(session, USER, RecommendationContext(occasion="work"))

    recs, total = await composer.history(session, USER, limit=10)
    assert total == 2
    assert {r.id for r in recs} == {first.id, second.id}

    recs, total = await composer.history(session, USER, limit=1, offset=1)
    assert total == 2
    assert len(recs) == 1

    with pytest.raises(NotFoundError):
        await composer.get(session, "someone-else", first.id)
    with pytest.raises(NotFoundError):
        await composer.get(session, USER, "nope")
    assert (await composer.get(session, USER, str(first.id))).id == first.id


@pytest.mark.asyncio
async def test_ready_to_wear_items_are_recommended(session, make_item, composer):
    item_id = await make_item("top", embedding=[1.0, 0.0, 0.0])
    await composer.freshness.add_to_laundry(session, USER, item_id)
    await composer.freshness.mark_washed(session, USER, item_id)
    item = await composer.freshness.return_to_rotation(session, USER, item_id)
    assert item.cleanliness_status == CleanlinessStatus.READY_TO_WEAR

    rec = await composer.compose(session, USER, RecommendationContext())
    assert _ids(rec, "top") == [str(item_id)]


@pytest.mark.asyncio
async def test_mark_worn_ignores_repeated_ids(session, make_item, composer):
    top = await make_item("top", embedding=[1.0, 0.0, 0.0])
    rec = await composer.compose(session, USER, RecommendationContext())

    out = await composer.mark_worn(session, USER, rec.id, [str(top), str(top)])
    assert out["worn"] == [str(top)]
    item = await composer.freshness.load_item(session, USER, top)
    assert item.wear_count == 1


@pytest.mark.asyncio
async def test_season_and_formality_narrow_candidates(session, make_item, composer):
    summer = await make_item("top", details={"season": "summer", "formality": "casual"}, embedding=[1.0, 0.0, 0.0])
    anytime = await make_item("top", details={"season": "all-season"}, embedding=[1.0, 0.0, 0.0])
    untagged = await make_item("top", embedding=[1.0, 0.0, 0.0])
    await make_item("top", details={"season": "winter"}, embedding=[1.0, 0.0, 0.0])
    await make_item("top", details={"season": "summer", "formality": "formal"}, embedding=[1.0, 0.0, 0.0])

    rec = await composer.compose(session, USER, RecommendationContext(season="summer", formality="casual"))
    assert set(_ids(rec, "top")) == {str(summer), str(anytime), str(untagged)}


@pytest.mark.asyncio
async def test_embedding_width_mismatch_is_logged(session, make_item, composer, caplog):
    await make_item("top", embedding=[1.0, 0.0, 0.0])
    odd = await make_item("top", embedding=[1.0, 0.0])
    caplog.set_level(logging.WARNING, logger="uvicorn.error")

    rec = await composer.compose(session, USER, RecommendationContext())
    assert "recs:embedding dim mismatch" in caplog.text
    assert str(odd) in caplog.text
    assert len(rec.items) == 2


@pytest.mark.asyncio
async def test_similar_items_rank_by_base_embedding(session, make_item, composer):
    base = await make_item("top", embedding=[1.0, 0.0, 0.0])
    near = await make_item("bottom", embedding=[0.9, 0.1, 0.0])
    far = await make_item("shoes", embedding=[0.0, 0.0, 1.0])
    washing = await make_item("top", embedding=[1.0, 0.0, 0.0])
    await make_item("top")
    await composer.freshness.add_to_laundry(session, USER, washing)

    related = await composer.similar_items(session, USER, base, limit=5)
    assert related.base.id == base
    assert [s.candidate.item_id for s in related.ranked] == [str(near), str(far)]
    assert related.ranked[0].similarity > related.ranked[1].similarity

    limited = await composer.similar_items(session, USER, base, limit=1)
    assert [s.candidate.item_id for s in limited.ranked] == [str(near)]

    bare = await make_item("top")
    with pytest.raises(ValidationError) as exc:
        await composer.similar_items(session, USER, bare)
    assert exc.value.code == "item_has_no_embedding"
    with pytest.raises(NotFoundError):
        await composer.similar_items(session, "someone-else", base)


@pytest.mark.asyncio
async def test_complementary_items_follow_category_map(session, make_item, composer):
    base = await make_item("top", details={"formality": "business", "season": "fall"}, embedding=[1.0, 0.0, 0.0])
    chinos = await make_item("bottom", details={"formality": "business"}, embedding=[0.8, 0.2, 0.0])
    await make_item("bottom", details={"formality": "casual"}, embedding=[1.0, 0.0, 0.0])
    loafers = await make_item("shoes", details={"season": "all-season"}, embedding=[0.0, 1.0, 0.0])
    await make_item("shoes", details={"season": "summer"}, embedding=[1.0, 0.0, 0.0])
    await make_item("top", embedding=[1.0, 0.0, 0.0])
    await make_item("dress", embedding=[1.0, 0.0, 0.0])

    grouped = (await composer.complementary_items(session, USER, base)).grouped_body()
    assert set(grouped) == {"bottom", "shoes"}
    assert [b["id"] for b in grouped["bottom"]] == [str(chinos)]
    assert [s["id"] for s in grouped["shoes"]] == [str(loafers)]

    # an explicit season replaces the base item's own
    summer = (await composer.complementary_items(session, USER, base, season="summer")).grouped_body()
    assert len(summer["shoes"]) == 2
    with pytest.raises(ValidationError):
        await composer.complementary_items(session, USER, base, season="monsoon")
