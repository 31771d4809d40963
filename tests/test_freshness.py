import random
import uuid

import pytest
from sqlalchemy import select

from app.core.db import utcnow
from app.core.errors import ConflictError, InvalidTransitionError, NotFoundError, VersionConflictError
from app.models.models import CleanlinessStatus, ClothingItem, LaundryEntry, LaundryStatus, WashPreference
from app.services.freshness import (
    FreshnessConfig,
    FreshnessStateMachine,
    apply_add_to_laundry,
    apply_mark_washed,
    apply_remove_from_laundry,
    apply_return,
    apply_wear,
    derive_status,
    init_item,
)

USER = "test-user"


def _item(pref: str = WashPreference.AFTER_FEW_WEARS) -> ClothingItem:
    item = ClothingItem(user_id=USER, category="top", wash_preference=pref, details={})
    init_item(item)
    return item


def test_derive_status_boundaries():
    cfg = FreshnessConfig()
    assert derive_status(100, cfg) == CleanlinessStatus.FRESH
    assert derive_status(67, cfg) == CleanlinessStatus.FRESH
    assert derive_status(66, cfg) == CleanlinessStatus.WORN_WEARABLE
    assert derive_status(34, cfg) == CleanlinessStatus.WORN_WEARABLE
    assert derive_status(33, cfg) == CleanlinessStatus.NEEDS_WASH
    assert derive_status(0, cfg) == CleanlinessStatus.NEEDS_WASH


def test_decay_per_preference():
    cfg = FreshnessConfig()
    now = utcnow()

    each = _item(WashPreference.AFTER_EACH_WEAR)
    apply_wear(each, cfg, now)
    assert each.freshness_score == 25
    assert each.cleanliness_status == CleanlinessStatus.NEEDS_WASH

    manual = _item(WashPreference.MANUAL)
    apply_wear(manual, cfg, now)
    assert manual.freshness_score == 85
    assert manual.cleanliness_status == CleanlinessStatus.FRESH
    assert manual.wear_count == 1
    assert manual.last_worn_at == now


def test_score_never_leaves_bounds():
    cfg = FreshnessConfig()
    rng = random.Random(7)
    ops = ["wear", "add", "remove", "washed", "return"]
    for pref in WashPreference.ALL:
        item = _item(pref)
        for _ in range(300):
            op = rng.choice(ops)
            try:
                if op == "wear":
                    apply_wear(item, cfg, utcnow())
                elif op == "add":
                    apply_add_to_laundry(item)
                elif op == "remove":
                    apply_remove_from_laundry(item, cfg)
                elif op == "washed":
                    apply_mark_washed(item)
                else:
                    apply_return(item)
            except (InvalidTransitionError, ConflictError):
                pass
            assert 0 <= item.freshness_score <= 100
            assert item.cleanliness_status in CleanlinessStatus.ALL
            if item.cleanliness_status in (CleanlinessStatus.FRESH, CleanlinessStatus.WORN_WEARABLE, CleanlinessStatus.NEEDS_WASH):
                assert item.cleanliness_status == derive_status(item.freshness_score, cfg)


def test_invalid_transitions_leave_item_untouched():
    item = _item()
    with pytest.raises(InvalidTransitionError) as exc:
        apply_mark_washed(item)
    assert exc.value.code == "cannot_mark_washed_from_fresh"
    with pytest.raises(InvalidTransitionError):
        apply_return(item)
    with pytest.raises(InvalidTransitionError):
        apply_remove_from_laundry(item, FreshnessConfig())

    apply_add_to_laundry(item)
    with pytest.raises(ConflictError) as exc:
        apply_add_to_laundry(item)
    assert exc.value.code == "already_in_laundry"
    with pytest.raises(InvalidTransitionError):
        apply_wear(item, FreshnessConfig(), utcnow())
    assert item.cleanliness_status == CleanlinessStatus.IN_LAUNDRY
    assert item.wear_count == 0


def test_config_validation():
    with pytest.raises(ValueError):
        FreshnessConfig(fresh_threshold=30, needs_wash_threshold=33)
    with pytest.raises(ValueError):
        FreshnessConfig(decay_after_each_wear=50)
    with pytest.raises(ValueError):
        FreshnessConfig(decay_manual=0)
    with pytest.raises(ValueError):
        FreshnessConfig(max_retries=-1)


@pytest.mark.asyncio
async def test_full_lifecycle(session, make_item):
    sm = FreshnessStateMachine()
    item_id = await make_item(wash_preference=WashPreference.AFTER_FEW_WEARS)

    scores = []
    for _ in range(4):
        item = await sm.record_wear(session, USER, item_id)
        scores.append((item.freshness_score, item.cleanliness_status))
    assert scores == [
        (75, CleanlinessStatus.FRESH),
        (50, CleanlinessStatus.WORN_WEARABLE),
        (25, CleanlinessStatus.NEEDS_WASH),
        (0, CleanlinessStatus.NEEDS_WASH),
    ]
    assert item.wear_count == 4

    entry = await sm.add_to_laundry(session, USER, item_id, notes="delicates")
    assert entry.status == LaundryStatus.IN_LAUNDRY
    assert entry.active is True
    assert entry.expected_return > entry.added_at

    item = await sm.mark_washed(session, USER, item_id)
    assert item.cleanliness_status == CleanlinessStatus.WASHED

    item = await sm.return_to_rotation(session, USER, item_id)
    assert item.cleanliness_status == CleanlinessStatus.READY_TO_WEAR
    assert item.freshness_score == 100
    assert item.wear_count == 0
    assert item.last_worn_at is None

    res = await session.execute(select(LaundryEntry).where(LaundryEntry.clothing_item_id == item_id))
    closed = res.scalar_one()
    assert closed.active is False
    assert closed.status == LaundryStatus.READY_TO_WEAR
    assert closed.closed_at is not None

    item = await sm.record_wear(session, USER, item_id)
    assert item.freshness_score == 75
    assert item.cleanliness_status == CleanlinessStatus.FRESH


@pytest.mark.asyncio
async def test_remove_from_laundry_restores_derived_status(session, make_item):
    sm = FreshnessStateMachine()
    item_id = await make_item(wash_preference=WashPreference.AFTER_EACH_WEAR)
    await sm.record_wear(session, USER, item_id)
    await sm.add_to_laundry(session, USER, item_id)

    item = await sm.remove_from_laundry(session, USER, item_id)
    assert item.cleanliness_status == CleanlinessStatus.NEEDS_WASH
    res = await session.execute(select(LaundryEntry).where(LaundryEntry.clothing_item_id == item_id))
    assert res.scalars().all() == []

    # a fresh laundry entry can be opened again afterwards
    entry = await sm.add_to_laundry(session, USER, item_id)
    assert entry.active is True


@pytest.mark.asyncio
async def test_missing_and_foreign_items(session, make_item):
    sm = FreshnessStateMachine()
    other = await make_item(user_id="someone-else")
    with pytest.raises(NotFoundError):
        await sm.record_wear(session, USER, uuid.uuid4())
    with pytest.raises(NotFoundError):
        await sm.record_wear(session, USER, "not-a-uuid")
    with pytest.raises(NotFoundError):
        await sm.record_wear(session, USER, other)


@pytest.mark.asyncio
async def test_double_add_is_conflict(session, make_item):
    sm = FreshnessStateMachine()
    item_id = await make_item()
    await sm.add_to_laundry(session, USER, item_id)
    with pytest.raises(ConflictError) as exc:
        await sm.add_to_laundry(session, USER, item_id)
    assert exc.value.code == "already_in_laundry"
    res = await session.execute(select(LaundryEntry).where(LaundryEntry.clothing_item_id == item_id))
    assert len(res.scalars().all()) == 1


@pytest.mark.asyncio
async def test_stale_version_is_retried(session_factory, make_item):
    sm = FreshnessStateMachine()
    item_id = await make_item(wash_preference=WashPreference.AFTER_FEW_WEARS)
    calls = 0

    async def _wear_with_race(sess, item):
        nonlocal calls
        calls += 1
        if calls == 1:
            # another writer lands between our read and our write
            async with session_factory() as other:
                await sm.record_wear(other, USER, item_id)
        apply_wear(item, sm.config, utcnow())

    async with session_factory() as s:
        item = await sm.transition(s, USER, item_id, _wear_with_race, action="wear")

    assert calls == 2
    assert item.wear_count == 2
    assert item.freshness_score == 50
    assert item.version == 3


@pytest.mark.asyncio
async def test_version_conflict_after_retries(session_factory, make_item):
    sm = FreshnessStateMachine(FreshnessConfig(max_retries=1))
    item_id = await make_item(wash_preference=WashPreference.MANUAL)
    calls = 0

    async def _always_raced(sess, item):
        nonlocal calls
        calls += 1
        async with session_factory() as other:
            await sm.record_wear(other, USER, item_id)
        apply_wear(item, sm.config, utcnow())

    async with session_factory() as s:
        with pytest.raises(VersionConflictError) as exc:
            await sm.transition(s, USER, item_id, _always_raced, action="wear")

    assert calls == 2
    body = exc.value.to_body()
    assert body["detail"] == "version_conflict"
    assert body["retry"] is True
    assert body["attempts"] == 2

    async with session_factory() as s:
        item = await sm.load_item(s, USER, item_id)
    # only the competing writes landed
    assert item.wear_count == 2
