from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import utcnow
from app.core.errors import ValidationError
from app.models.models import (
    CleanlinessStatus,
    ClothingItem,
    LaundryEntry,
    LaundryStatus,
    WashDecision,
    WashPreference,
    WearLearningState,
)
from app.services.freshness import FreshnessStateMachine
from app.services.learner import WearDecisionLearner, threshold_multiplier

logger = logging.getLogger("uvicorn.error")


@dataclass
class LaundrySuggestion:
    item: ClothingItem
    reason: str
    confidence: float
    urgency: float
    effective_trigger: float
    multiplier: float


@dataclass
class SuggestionBatch:
    suggestions: List[LaundrySuggestion]
    skipped: List[str] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        out = {WashPreference.AFTER_EACH_WEAR: 0, WashPreference.AFTER_FEW_WEARS: 0}
        for s in self.suggestions:
            out[s.item.wash_preference] = out.get(s.item.wash_preference, 0) + 1
        return out


@dataclass
class DecisionOutcome:
    decision: str
    item: ClothingItem
    item_type: str
    dismiss_rate: float
    multiplier: float
    moved: bool


def _reason(item: ClothingItem) -> str:
    if item.wash_preference == WashPreference.AFTER_EACH_WEAR:
        return "You prefer to wash after each wear"
    return f"You've worn this {item.wear_count} times"


def _is_candidate(item: ClothingItem) -> bool:
    if item.is_archived:
        return False
    if item.cleanliness_status in CleanlinessStatus.IN_LAUNDRY_STATES:
        return False
    if item.wash_preference == WashPreference.MANUAL:
        return False
    if item.suggestion_dismissed_at is not None:
        # Dismissed items stay out until they are worn again.
        if item.last_worn_at is None or item.last_worn_at <= item.suggestion_dismissed_at:
            return False
    return True


def evaluate_item(item: ClothingItem, trigger: int, multiplier: float) -> Optional[LaundrySuggestion]:
    """Return a suggestion when the item's score sits at or below its learned trigger."""
    if item.wash_preference not in (WashPreference.AFTER_EACH_WEAR, WashPreference.AFTER_FEW_WEARS):
        raise ValueError(f"unknown wash preference {item.wash_preference!r}")
    score = item.freshness_score
    if score is None or not 0 <= int(score) <= 100:
        raise ValueError(f"freshness score out of range: {score!r}")
    if (item.wear_count or 0) < 1:
        return None
    effective = min(100.0, max(0.0, trigger / multiplier))
    urgency = effective - int(score)
    if urgency < 0:
        return None
    confidence = min(1.0, max(0.0, 0.5 + urgency / (2 * max(effective, 1.0))))
    return LaundrySuggestion(
        item=item,
        reason=_reason(item),
        confidence=round(confidence, 3),
        urgency=round(urgency, 3),
        effective_trigger=round(effective, 3),
        multiplier=round(multiplier, 3),
    )


def build_suggestions(
    items: Iterable[ClothingItem],
    trigger: int,
    multipliers: Dict[str, float],
    default_multiplier: float = 1.0,
) -> SuggestionBatch:
    suggestions: List[LaundrySuggestion] = []
    skipped: List[str] = []
    for item in items:
        try:
            if not _is_candidate(item):
                continue
            m = multipliers.get((item.category or "other").lower(), default_multiplier)
            sug = evaluate_item(item, trigger, m)
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning("laundry-suggest: skipping malformed item item_id=%s reason=%s", getattr(item, "id", None), e)
            skipped.append(str(getattr(item, "id", "")))
            continue
        if sug:
            suggestions.append(sug)
    suggestions.sort(key=lambda s: (s.item.freshness_score, -(s.item.wear_count or 0)))
    return SuggestionBatch(suggestions=suggestions, skipped=skipped)


class LaundrySuggestionGenerator:
    def __init__(self, freshness: FreshnessStateMachine, learner: WearDecisionLearner) -> None:
        self.freshness = freshness
        self.learner = learner

    async def suggest(self, session: AsyncSession, user_id: str) -> SuggestionBatch:
        res = await session.execute(
            select(ClothingItem).where(
                ClothingItem.user_id == user_id,
                ClothingItem.is_archived.is_(False),
                ClothingItem.cleanliness_status.not_in(CleanlinessStatus.IN_LAUNDRY_STATES),
                ClothingItem.wash_preference != WashPreference.MANUAL,
            )
        )
        items = res.scalars().all()
        multipliers = await self.learner.multipliers(session, user_id)
        batch = build_suggestions(
            items,
            self.freshness.config.needs_wash_threshold,
            multipliers,
            self.learner.neutral_multiplier,
        )
        logger.info(
            "laundry-suggest user_id=%s candidates=%s suggestions=%s skipped=%s",
            user_id,
            len(items),
            len(batch.suggestions),
            len(batch.skipped),
        )
        return batch

    async def respond(
        self,
        session: AsyncSession,
        user_id: str,
        item_id: uuid.UUID | str,
        decision: str,
        item_type: Optional[str] = None,
    ) -> DecisionOutcome:
        if decision not in (WashDecision.MOVED_TO_LAUNDRY, WashDecision.KEPT_WEARING):
            raise ValidationError("invalid_decision")
        states: List[WearLearningState] = []

        async def _record(sess: AsyncSession, it: ClothingItem) -> None:
            states.clear()
            states.append(await self.learner.record(sess, user_id, it, decision, item_type))

        moved = False
        if decision == WashDecision.MOVED_TO_LAUNDRY:
            item = await self.freshness.load_item(session, user_id, item_id)
            # The client may already have called add-to-laundry before reporting.
            if item.cleanliness_status not in CleanlinessStatus.IN_LAUNDRY_STATES:
                await self.freshness.add_to_laundry(session, user_id, item_id, then=_record)
                moved = True
            else:
                await self.freshness.transition(session, user_id, item_id, _record, action="record_decision")
        else:
            async def _dismiss(sess: AsyncSession, it: ClothingItem) -> None:
                it.suggestion_dismissed_at = utcnow()
                await _record(sess, it)

            await self.freshness.transition(session, user_id, item_id, _dismiss, action="dismiss_suggestion")

        item = await self.freshness.load_item(session, user_id, item_id)
        state = states[0]
        return DecisionOutcome(
            decision=decision,
            item=item,
            item_type=state.category,
            dismiss_rate=state.dismiss_rate,
            multiplier=threshold_multiplier(state.dismiss_rate, self.learner.config),
            moved=moved,
        )



@dataclass
class LaundryOverview:
    entries: List[LaundryEntry]
    grouped: Dict[str, List[LaundryEntry]]
    stats: Dict[str, int]


def is_overdue(entry: LaundryEntry, now: datetime) -> bool:
    return (
        entry.active
        and entry.status == LaundryStatus.IN_LAUNDRY
        and entry.expected_return is not None
        and entry.expected_return < now
    )


async def list_laundry(
    session: AsyncSession, user_id: str, status: Optional[str] = None, *, newest_first: bool = True
) -> LaundryOverview:
    stmt = select(LaundryEntry).where(LaundryEntry.user_id == user_id)
    if status:
        stmt = stmt.where(LaundryEntry.status == status)
    order = LaundryEntry.added_at.desc() if newest_first else LaundryEntry.added_at.asc()
    res = await session.execute(stmt.order_by(order))
    entries = list(res.scalars().all())

    grouped: Dict[str, List[LaundryEntry]] = {s: [] for s in LaundryStatus.ALL}
    for e in entries:
        grouped.setdefault(e.status, []).append(e)
    now = utcnow()
    stats = {s: len(v) for s, v in grouped.items()}
    stats["total"] = len(entries)
    stats["overdue"] = sum(1 for e in entries if is_overdue(e, now))
    return LaundryOverview(entries=entries, grouped=grouped, stats=stats)


async def laundry_stats(session: AsyncSession, user_id: str) -> dict:
    res = await session.execute(
        select(LaundryEntry.status, LaundryEntry.added_at).where(LaundryEntry.user_id == user_id)
    )
    now = utcnow()
    by_status: Dict[str, dict] = {}
    for status, added_at in res.all():
        b = by_status.setdefault(status, {"count": 0, "days": 0.0})
        b["count"] += 1
        if added_at is not None:
            b["days"] += (now - added_at).total_seconds() / 86400.0

    overdue = await session.scalar(
        select(func.count())
        .select_from(LaundryEntry)
        .where(
            LaundryEntry.user_id == user_id,
            LaundryEntry.active.is_(True),
            LaundryEntry.status == LaundryStatus.IN_LAUNDRY,
            LaundryEntry.expected_return < now,
        )
    )
    total = sum(b["count"] for b in by_status.values())
    return {
        "total": total,
        "overdue": int(overdue or 0),
        "by_status": [
            {"status": s, "count": b["count"], "avg_days": round(b["days"] / b["count"], 2)}
            for s, b in sorted(by_status.items())
        ],
        "ready_to_wear": by_status.get(LaundryStatus.READY_TO_WEAR, {}).get("count", 0),
    }
