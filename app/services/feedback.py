from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.db import upsert_insert, utcnow
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.models import Feedback, FeedbackQuality, Recommendation

logger = logging.getLogger("uvicorn.error")

ASPECTS = ("style", "comfort", "appropriateness", "creativity")
MAX_COMMENT = 500
ANY = "any"

SCOPE_CATEGORY = "category"
SCOPE_ITEM = "item"


@dataclass(frozen=True)
class FeedbackConfig:
    smoothing: float = 0.3
    negative_cap: float = -0.5
    category_weight: float = 0.1
    item_weight: float = 0.15

    def __post_init__(self) -> None:
        if not 0.0 < self.smoothing <= 1.0:
            raise ValueError("smoothing must be in (0, 1]")
        if not -1.0 <= self.negative_cap <= 0.0:
            raise ValueError("negative_cap must be in [-1, 0]")

    @classmethod
    def from_settings(cls, s: Settings) -> "FeedbackConfig":
        return cls(
            smoothing=s.FEEDBACK_SMOOTHING,
            negative_cap=s.FEEDBACK_NEGATIVE_CAP,
            category_weight=s.FEEDBACK_CATEGORY_WEIGHT,
            item_weight=s.FEEDBACK_ITEM_WEIGHT,
        )


def rating_signal(rating: int, would_wear_again: Optional[bool], config: FeedbackConfig) -> float:
    s = (rating - 3) / 2.0
    if would_wear_again is False:
        s = min(s, config.negative_cap)
    return max(-1.0, min(1.0, s))


def smooth(prev: float, signal: float, beta: float) -> float:
    return max(-1.0, min(1.0, beta * signal + (1.0 - beta) * prev))


def validate_feedback(
    rating: int,
    comment: Optional[str],
    specific_aspects: Optional[Dict[str, Optional[int]]],
) -> Dict[str, int]:
    if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
        raise ValidationError("invalid_rating")
    if comment is not None and len(comment) > MAX_COMMENT:
        raise ValidationError("comment_too_long")
    aspects: Dict[str, int] = {}
    for k, v in (specific_aspects or {}).items():
        if k not in ASPECTS:
            raise ValidationError("invalid_aspect", extra={"aspect": k})
        if v is None:
            continue
        if not isinstance(v, int) or not 1 <= v <= 5:
            raise ValidationError("invalid_aspect_rating", extra={"aspect": k})
        aspects[k] = v
    return aspects


@dataclass
class FeedbackBias:
    """Ranking bias for one (user, occasion, season) bucket."""

    config: FeedbackConfig
    by_category: Dict[str, float] = field(default_factory=dict)
    by_item: Dict[str, float] = field(default_factory=dict)

    def for_item(self, item_id: str, category: str) -> float:
        return self.config.category_weight * self.by_category.get(category, 0.0) + self.config.item_weight * self.by_item.get(
            str(item_id), 0.0
        )

    def __call__(self, candidate) -> float:
        return self.for_item(candidate.item_id, candidate.category)


def _bucket(rec: Recommendation) -> Tuple[str, str]:
    ctx = rec.context or {}
    return (ctx.get("occasion") or ANY, ctx.get("season") or ANY)


class FeedbackAggregator:
    def __init__(self, config: FeedbackConfig | None = None) -> None:
        self.config = config or FeedbackConfig()

    async def _load_recommendation(self, session: AsyncSession, user_id: str, recommendation_id) -> Recommendation:
        try:
            rid = recommendation_id if isinstance(recommendation_id, uuid.UUID) else uuid.UUID(str(recommendation_id))
        except ValueError as e:
            raise NotFoundError("recommendation_not_found") from e
        rec = await session.get(Recommendation, rid)
        if not rec or rec.user_id != user_id:
            raise NotFoundError("recommendation_not_found")
        return rec

    async def get(self, session: AsyncSession, user_id: str, recommendation_id) -> Feedback:
        rec = await self._load_recommendation(session, user_id, recommendation_id)
        res = await session.execute(
            select(Feedback).where(Feedback.user_id == user_id, Feedback.recommendation_id == rec.id)
        )
        fb = res.scalar_one_or_none()
        if not fb:
            raise NotFoundError("feedback_not_found")
        return fb

    async def submit(
        self,
        session: AsyncSession,
        user_id: str,
        recommendation_id,
        *,
        rating: int,
        comment: Optional[str] = None,
        specific_aspects: Optional[Dict[str, Optional[int]]] = None,
        would_wear_again: Optional[bool] = None,
        improvements: Optional[List[str]] = None,
    ) -> Feedback:
        aspects = validate_feedback(rating, comment, specific_aspects)
        rec = await self._load_recommendation(session, user_id, recommendation_id)
        rec_id = rec.id
        existing = await session.execute(
            select(Feedback.id).where(Feedback.user_id == user_id, Feedback.recommendation_id == rec.id)
        )
        if existing.scalar_one_or_none():
            raise ConflictError("feedback_already_submitted")

        fb = Feedback(
            recommendation_id=rec.id,
            user_id=user_id,
            rating=rating,
            comment=comment,
            specific_aspects=aspects or None,
            would_wear_again=would_wear_again,
            improvements=[i.strip() for i in (improvements or []) if i and i.strip()] or None,
            created_at=utcnow(),
        )
        session.add(fb)
        try:
            # Only the feedback row is pending here, so a violation is the per-recommendation unique key.
            await session.flush()
        except IntegrityError:
            await session.rollback()
            logger.info("feedback:duplicate race user_id=%s recommendation_id=%s", user_id, rec_id)
            raise ConflictError("feedback_already_submitted")

        signal = rating_signal(rating, would_wear_again, self.config)
        occasion, season = _bucket(rec)
        keys = [(SCOPE_CATEGORY, c) for c in sorted({it.category for it in rec.items})]
        keys += [(SCOPE_ITEM, k) for k in dict.fromkeys(str(it.clothing_item_id) for it in rec.items)]
        await self._fold(session, user_id, occasion, season, keys, signal)
        await session.commit()
        logger.info(
            "feedback:submit user_id=%s recommendation_id=%s rating=%s signal=%.2f buckets=%s",
            user_id,
            rec_id,
            rating,
            signal,
            len(keys),
        )
        return fb

    async def _fold(
        self,
        session: AsyncSession,
        user_id: str,
        occasion: str,
        season: str,
        keys: Iterable[Tuple[str, str]],
        signal: float,
    ) -> None:
        """Smooth ``signal`` into each bucket with one atomic upsert per key."""
        beta = self.config.smoothing
        for scope, key in keys:
            stmt = upsert_insert(session, FeedbackQuality).values(
                id=uuid.uuid4(),
                user_id=user_id,
                occasion=occasion,
                season=season,
                scope=scope,
                key=key,
                score=smooth(0.0, signal, beta),
                count=1,
            )
            # beta * signal + (1 - beta) * prev stays in [-1, 1] for inputs in [-1, 1]
            stmt = stmt.on_conflict_do_update(
                index_elements=[
                    FeedbackQuality.user_id,
                    FeedbackQuality.occasion,
                    FeedbackQuality.season,
                    FeedbackQuality.scope,
                    FeedbackQuality.key,
                ],
                set_={
                    "score": beta * signal + (1.0 - beta) * FeedbackQuality.score,
                    "count": FeedbackQuality.count + 1,
                    "updated_at": utcnow(),
                },
            )
            await session.execute(stmt)

    async def bias_for(
        self, session: AsyncSession, user_id: str, occasion: Optional[str], season: Optional[str]
    ) -> FeedbackBias:
        res = await session.execute(
            select(FeedbackQuality).where(
                FeedbackQuality.user_id == user_id,
                FeedbackQuality.occasion == (occasion or ANY),
                FeedbackQuality.season == (season or ANY),
            ).execution_options(populate_existing=True)
        )
        bias = FeedbackBias(config=self.config)
        for q in res.scalars().all():
            if q.scope == SCOPE_CATEGORY:
                bias.by_category[q.key] = q.score
            elif q.scope == SCOPE_ITEM:
                bias.by_item[q.key] = q.score
        return bias
