from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.db import upsert_insert, utcnow
from app.models.models import ClothingItem, WashDecision, WashDecisionRecord, WearLearningState

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class LearnerConfig:
    decay_constant: float = 0.3
    initial_rate: float = 0.5
    min_multiplier: float = 0.5
    max_multiplier: float = 1.5

    def __post_init__(self) -> None:
        if not 0.0 < self.decay_constant <= 1.0:
            raise ValueError("decay_constant must be in (0, 1]")
        if not 0.0 <= self.initial_rate <= 1.0:
            raise ValueError("initial_rate must be in [0, 1]")
        if not 0.0 < self.min_multiplier <= self.max_multiplier:
            raise ValueError("multiplier bounds must satisfy 0 < min <= max")

    @classmethod
    def from_settings(cls, s: Settings) -> "LearnerConfig":
        return cls(
            decay_constant=s.LEARNER_DECAY_CONSTANT,
            initial_rate=s.LEARNER_INITIAL_RATE,
            min_multiplier=s.LEARNER_MIN_MULTIPLIER,
            max_multiplier=s.LEARNER_MAX_MULTIPLIER,
        )


def update_rate(prev: float, decision: str, alpha: float) -> float:
    indicator = 1.0 if decision == WashDecision.KEPT_WEARING else 0.0
    rate = alpha * indicator + (1.0 - alpha) * prev
    return min(1.0, max(0.0, rate))


def threshold_multiplier(rate: float, config: LearnerConfig) -> float:
    """Map a dismiss rate onto the bounded multiplier applied to trigger points.

    A rate of 1.0 (always kept wearing) gives ``max_multiplier``; the trigger an
    item has to fall below is divided by it, so suggestions get rarer.
    """
    rate = min(1.0, max(0.0, rate))
    m = config.min_multiplier + (config.max_multiplier - config.min_multiplier) * rate
    return min(config.max_multiplier, max(config.min_multiplier, m))


class WearDecisionLearner:
    def __init__(self, config: LearnerConfig | None = None) -> None:
        self.config = config or LearnerConfig()

    @property
    def neutral_multiplier(self) -> float:
        return threshold_multiplier(self.config.initial_rate, self.config)

    async def record(
        self,
        session: AsyncSession,
        user_id: str,
        item: ClothingItem,
        decision: str,
        item_type: str | None = None,
    ) -> WearLearningState:
        """Append the decision to the log and fold it into the (user, category) rate.

        The rate is updated with a single upsert so concurrent first decisions for
        a category both land. Does not commit; the caller owns the transaction.
        """
        category = (item_type or item.category or "other").lower()
        session.add(
            WashDecisionRecord(
                user_id=user_id,
                clothing_item_id=item.id,
                decision=decision,
                item_type=category,
                created_at=utcnow(),
            )
        )
        kept = 1.0 if decision == WashDecision.KEPT_WEARING else 0.0
        alpha = WearLearningState.decay_constant
        stmt = upsert_insert(session, WearLearningState).values(
            user_id=user_id,
            category=category,
            dismiss_rate=update_rate(self.config.initial_rate, decision, self.config.decay_constant),
            decay_constant=self.config.decay_constant,
            decisions_count=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[WearLearningState.user_id, WearLearningState.category],
            set_={
                "dismiss_rate": alpha * kept + (1.0 - alpha) * WearLearningState.dismiss_rate,
                "decisions_count": WearLearningState.decisions_count + 1,
                "updated_at": utcnow(),
            },
        )
        await session.execute(stmt)
        res = await session.execute(
            select(WearLearningState)
            .where(WearLearningState.user_id == user_id, WearLearningState.category == category)
            .execution_options(populate_existing=True)
        )
        state = res.scalar_one()
        logger.info(
            "learner:record user_id=%s category=%s decision=%s rate=%.3f n=%s",
            user_id,
            category,
            decision,
            state.dismiss_rate,
            state.decisions_count,
        )
        return state

    async def multipliers(self, session: AsyncSession, user_id: str, categories: Iterable[str] | None = None) -> Dict[str, float]:
        stmt = select(WearLearningState).where(WearLearningState.user_id == user_id)
        if categories is not None:
            stmt = stmt.where(WearLearningState.category.in_(list(categories)))
        res = await session.execute(stmt)
        return {s.category: threshold_multiplier(s.dismiss_rate, self.config) for s in res.scalars().all()}

    def multiplier_for(self, multipliers: Dict[str, float], category: str | None) -> float:
        return multipliers.get((category or "other").lower(), self.neutral_multiplier)
