"""Per-item freshness and cleanliness lifecycle.

The pure ``apply_*`` functions mutate a ``ClothingItem`` in memory and know
nothing about sessions. ``FreshnessStateMachine`` wraps them in an optimistic
concurrency loop: every transition is flushed against the row's ``version``
and re-applied on the latest row when another writer got there first.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import Settings
from app.core.db import utcnow
from app.core.errors import ConflictError, InvalidTransitionError, NotFoundError, VersionConflictError, WardrobeError
from app.models.models import (
    CleanlinessStatus,
    ClothingItem,
    LaundryEntry,
    LaundryStatus,
    WashPreference,
)

logger = logging.getLogger("uvicorn.error")

MAX_SCORE = 100
MIN_SCORE = 0

WEARABLE_STATES = (
    CleanlinessStatus.FRESH,
    CleanlinessStatus.WORN_WEARABLE,
    CleanlinessStatus.NEEDS_WASH,
    CleanlinessStatus.READY_TO_WEAR,
)


@dataclass(frozen=True)
class FreshnessConfig:
    fresh_threshold: int = 66
    needs_wash_threshold: int = 33
    decay_after_each_wear: int = 75
    decay_after_few_wears: int = 25
    decay_manual: int = 15
    max_retries: int = 3
    expected_return_days: int = 2

    def __post_init__(self) -> None:
        if not (MIN_SCORE <= self.needs_wash_threshold < self.fresh_threshold <= MAX_SCORE):
            raise ValueError("freshness thresholds must satisfy 0 <= needs_wash < fresh <= 100")
        for name in ("decay_after_each_wear", "decay_after_few_wears", "decay_manual"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if MAX_SCORE - self.decay_after_each_wear > self.needs_wash_threshold:
            raise ValueError("decay_after_each_wear must reach the needs_wash threshold in one wear")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    @classmethod
    def from_settings(cls, s: Settings) -> "FreshnessConfig":
        return cls(
            fresh_threshold=s.FRESHNESS_FRESH_THRESHOLD,
            needs_wash_threshold=s.FRESHNESS_NEEDS_WASH_THRESHOLD,
            decay_after_each_wear=s.FRESHNESS_DECAY_AFTER_EACH_WEAR,
            decay_after_few_wears=s.FRESHNESS_DECAY_AFTER_FEW_WEARS,
            decay_manual=s.FRESHNESS_DECAY_MANUAL,
            max_retries=s.FRESHNESS_MAX_RETRIES,
            expected_return_days=s.LAUNDRY_EXPECTED_RETURN_DAYS,
        )

    def decay(self, preference: str, wear_count: int) -> int:
        # Fixed steps today; wear_count is part of the signature so a
        # progressive schedule can slot in without touching callers.
        if preference == WashPreference.AFTER_EACH_WEAR:
            return self.decay_after_each_wear
        if preference == WashPreference.AFTER_FEW_WEARS:
            return self.decay_after_few_wears
        return self.decay_manual


def clamp_score(score: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, int(score)))


def derive_status(score: int, config: FreshnessConfig) -> str:
    if score <= config.needs_wash_threshold:
        return CleanlinessStatus.NEEDS_WASH
    if score > config.fresh_threshold:
        return CleanlinessStatus.FRESH
    return CleanlinessStatus.WORN_WEARABLE


def init_item(item: ClothingItem) -> None:
    item.cleanliness_status = CleanlinessStatus.FRESH
    item.freshness_score = MAX_SCORE
    item.wear_count = 0
    item.last_worn_at = None


def apply_wear(item: ClothingItem, config: FreshnessConfig, now: datetime) -> None:
    if item.cleanliness_status not in WEARABLE_STATES:
        raise InvalidTransitionError("wear", item.cleanliness_status)
    item.wear_count = (item.wear_count or 0) + 1
    item.last_worn_at = now
    item.freshness_score = clamp_score(
        (item.freshness_score if item.freshness_score is not None else MAX_SCORE)
        - config.decay(item.wash_preference, item.wear_count)
    )
    item.cleanliness_status = derive_status(item.freshness_score, config)


def apply_add_to_laundry(item: ClothingItem) -> None:
    if item.cleanliness_status in CleanlinessStatus.IN_LAUNDRY_STATES:
        raise ConflictError("already_in_laundry")
    item.cleanliness_status = CleanlinessStatus.IN_LAUNDRY


def apply_remove_from_laundry(item: ClothingItem, config: FreshnessConfig) -> None:
    if item.cleanliness_status != CleanlinessStatus.IN_LAUNDRY:
        raise InvalidTransitionError("remove_from_laundry", item.cleanliness_status)
    item.cleanliness_status = derive_status(item.freshness_score, config)


def apply_mark_washed(item: ClothingItem) -> None:
    if item.cleanliness_status != CleanlinessStatus.IN_LAUNDRY:
        raise InvalidTransitionError("mark_washed", item.cleanliness_status)
    item.cleanliness_status = CleanlinessStatus.WASHED


def apply_return(item: ClothingItem) -> None:
    if item.cleanliness_status not in CleanlinessStatus.IN_LAUNDRY_STATES:
        raise InvalidTransitionError("return", item.cleanliness_status)
    item.cleanliness_status = CleanlinessStatus.READY_TO_WEAR
    item.freshness_score = MAX_SCORE
    item.wear_count = 0
    item.last_worn_at = None
    item.suggestion_dismissed_at = None


Mutation = Callable[[AsyncSession, ClothingItem], Awaitable[None]]


class FreshnessStateMachine:
    def __init__(self, config: FreshnessConfig | None = None) -> None:
        self.config = config or FreshnessConfig()

    async def load_item(self, session: AsyncSession, user_id: str, item_id: uuid.UUID | str) -> ClothingItem:
        res = await session.execute(
            select(ClothingItem)
            .where(ClothingItem.id == _as_uuid(item_id), ClothingItem.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        item = res.scalar_one_or_none()
        if not item:
            raise NotFoundError("item_not_found")
        return item

    async def transition(
        self,
        session: AsyncSession,
        user_id: str,
        item_id: uuid.UUID | str,
        mutate: Mutation,
        *,
        action: str,
    ) -> ClothingItem:
        """Apply ``mutate`` to the latest row and commit, retrying on stale versions.

        Everything ``mutate`` writes shares the item's transaction and is rolled
        back with it.
        """
        attempts = 0
        while True:
            attempts += 1
            item = await self.load_item(session, user_id, item_id)
            try:
                await mutate(session, item)
                await session.commit()
            except StaleDataError:
                await session.rollback()
                if attempts > self.config.max_retries:
                    logger.warning(
                        "freshness:%s version conflict item_id=%s attempts=%s", action, item_id, attempts
                    )
                    raise VersionConflictError(str(item_id), attempts)
                logger.info("freshness:%s stale version item_id=%s attempt=%s retrying", action, item_id, attempts)
                continue
            except IntegrityError:
                # The active-entry unique index caught a concurrent add-to-laundry.
                await session.rollback()
                raise ConflictError("already_in_laundry")
            except WardrobeError:
                # Rejections raised before any write keep the loaded rows usable.
                if session.new or session.dirty or session.deleted:
                    await session.rollback()
                raise
            except Exception:
                await session.rollback()
                raise
            logger.info(
                "freshness:%s item_id=%s status=%s score=%s wears=%s",
                action,
                item.id,
                item.cleanliness_status,
                item.freshness_score,
                item.wear_count,
            )
            return item

    async def record_wear(
        self, session: AsyncSession, user_id: str, item_id: uuid.UUID | str, *, now: Optional[datetime] = None
    ) -> ClothingItem:
        async def _wear(_session: AsyncSession, item: ClothingItem) -> None:
            apply_wear(item, self.config, now or utcnow())

        return await self.transition(session, user_id, item_id, _wear, action="wear")

    async def add_to_laundry(
        self,
        session: AsyncSession,
        user_id: str,
        item_id: uuid.UUID | str,
        *,
        expected_return: Optional[datetime] = None,
        notes: Optional[str] = None,
        priority: str = "medium",
        then: Optional[Mutation] = None,
    ) -> LaundryEntry:
        created: list[LaundryEntry] = []

        async def _add(sess: AsyncSession, item: ClothingItem) -> None:
            created.clear()
            apply_add_to_laundry(item)
            now = utcnow()
            entry = LaundryEntry(
                user_id=user_id,
                clothing_item_id=item.id,
                status=LaundryStatus.IN_LAUNDRY,
                active=True,
                added_at=now,
                expected_return=expected_return or now + timedelta(days=self.config.expected_return_days),
                notes=notes,
                priority=priority,
            )
            sess.add(entry)
            created.append(entry)
            if then is not None:
                await then(sess, item)

        await self.transition(session, user_id, item_id, _add, action="add_to_laundry")
        return created[0]

    async def remove_from_laundry(self, session: AsyncSession, user_id: str, item_id: uuid.UUID | str) -> ClothingItem:
        async def _remove(sess: AsyncSession, item: ClothingItem) -> None:
            apply_remove_from_laundry(item, self.config)
            entry = await active_entry(sess, item.id)
            if entry:
                await sess.delete(entry)

        return await self.transition(session, user_id, item_id, _remove, action="remove_from_laundry")

    async def mark_washed(self, session: AsyncSession, user_id: str, item_id: uuid.UUID | str) -> ClothingItem:
        async def _washed(sess: AsyncSession, item: ClothingItem) -> None:
            apply_mark_washed(item)
            entry = await active_entry(sess, item.id)
            if entry:
                entry.status = LaundryStatus.WASHED

        return await self.transition(session, user_id, item_id, _washed, action="mark_washed")

    async def return_to_rotation(self, session: AsyncSession, user_id: str, item_id: uuid.UUID | str) -> ClothingItem:
        async def _return(sess: AsyncSession, item: ClothingItem) -> None:
            apply_return(item)
            entry = await active_entry(sess, item.id)
            if entry:
                entry.status = LaundryStatus.READY_TO_WEAR
                entry.active = False
                entry.closed_at = utcnow()

        return await self.transition(session, user_id, item_id, _return, action="return")


async def active_entry(session: AsyncSession, item_id: uuid.UUID) -> Optional[LaundryEntry]:
    res = await session.execute(
        select(LaundryEntry)
        .where(LaundryEntry.clothing_item_id == item_id, LaundryEntry.active.is_(True))
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


def _as_uuid(value: uuid.UUID | str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise NotFoundError("item_not_found") from e
