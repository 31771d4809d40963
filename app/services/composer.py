"""Outfit recommendation pipeline.

weather advisory -> clean, weather-suitable candidates -> query embedding ->
feedback bias -> similarity ranking -> narrative -> persisted result.

Weather, embedding and narrative are best-effort: any of them failing only
adds its name to ``degraded`` on the stored result.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.db import utcnow
from app.core.errors import (
    ExternalServiceError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
    VersionConflictError,
)
from app.models.models import (
    FORMALITIES,
    OCCASIONS,
    SEASONS,
    CleanlinessStatus,
    ClothingItem,
    Recommendation,
    RecommendationItem,
    RecommendationWear,
)
from app.services import llm as llm_service
from app.services.feedback import FeedbackAggregator
from app.services.freshness import FreshnessStateMachine
from app.services.llm.types import NarrativeInput
from app.services.matcher import Candidate, MatcherConfig, ScoredItem, group_by_category, rank
from app.services.weather import WeatherAdvisoryCache, WeatherLookup

logger = logging.getLogger("uvicorn.error")

DEGRADED_WEATHER = "weather"
DEGRADED_EMBEDDING = "embedding"
DEGRADED_NARRATIVE = "narrative"


@dataclass(frozen=True)
class ComposerConfig:
    narrative_timeout_ms: int = 4000
    embedding_timeout_ms: int = 2000
    narrative_cache: bool = True
    narrative_cache_ttl_s: int = 86400

    @classmethod
    def from_settings(cls, s: Settings) -> "ComposerConfig":
        return cls(
            narrative_timeout_ms=s.NARRATIVE_TIMEOUT_MS,
            embedding_timeout_ms=s.EMBEDDING_TIMEOUT_MS,
            narrative_cache=s.NARRATIVE_CACHE_ENABLED,
            narrative_cache_ttl_s=s.NARRATIVE_CACHE_TTL_S,
        )


@dataclass
class RecommendationContext:
    query: Optional[str] = None
    occasion: Optional[str] = None
    weather: Optional[str] = None
    season: Optional[str] = None
    formality: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def validate(self) -> None:
        if self.occasion is not None and self.occasion not in OCCASIONS:
            raise ValidationError("invalid_occasion")
        if self.season is not None and self.season not in SEASONS:
            raise ValidationError("invalid_season")
        if self.formality is not None and self.formality not in FORMALITIES:
            raise ValidationError("invalid_formality")
        if (self.latitude is None) != (self.longitude is None):
            raise ValidationError("latitude_and_longitude_required_together")
        if self.latitude is not None and not -90.0 <= self.latitude <= 90.0:
            raise ValidationError("latitude_out_of_range")
        if self.longitude is not None and not -180.0 <= self.longitude <= 180.0:
            raise ValidationError("longitude_out_of_range")
        if self.query is not None and len(self.query) > 500:
            raise ValidationError("query_too_long")

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


def _lower(v: Any) -> str:
    return str(v).strip().lower() if v else ""


def is_weather_suitable(item: ClothingItem, advisory: Optional[Dict[str, Any]]) -> bool:
    if not advisory:
        return True
    details = item.details or {}
    if _lower(item.category) in advisory.get("avoid_categories", []):
        return False
    if _lower(details.get("subcategory")) in advisory.get("avoid_types", []):
        return False
    material = _lower(details.get("material"))
    if material and any(m in material for m in advisory.get("avoid_materials", [])):
        return False
    return True


ALL_SEASON = "all-season"

# pieces that complete an outfit around a base item
COMPLEMENTARY_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    "top": ("bottom", "outerwear", "shoes", "accessories"),
    "bottom": ("top", "shoes", "accessories"),
    "dress": ("shoes", "accessories", "outerwear"),
    "outerwear": ("top", "bottom", "shoes"),
    "shoes": ("top", "bottom", "dress", "accessories"),
    "accessories": ("top", "bottom", "dress", "shoes"),
}
DEFAULT_COMPLEMENTARY = ("top", "bottom", "shoes")
COMPLEMENTARY_PER_CATEGORY = 3


def matches_context(item: ClothingItem, season: Optional[str], formality: Optional[str]) -> bool:
    """Untagged items fit any context; tagged ones must agree with it."""
    details = item.details or {}
    item_season = _lower(details.get("season"))
    if season and item_season and item_season not in (season, ALL_SEASON):
        return False
    item_formality = _lower(details.get("formality"))
    if formality and item_formality and item_formality != formality:
        return False
    return True


def describe_item(item: ClothingItem) -> str:
    details = item.details or {}
    return details.get("description") or item.name or details.get("subcategory") or item.category


def to_candidate(item: ClothingItem) -> Candidate:
    return Candidate(
        item_id=str(item.id),
        category=item.category,
        embedding=item.embedding,
        freshness_score=item.freshness_score,
        wear_count=item.wear_count or 0,
        cleanliness_status=item.cleanliness_status,
    )


@dataclass
class RelatedItems:
    """Items ranked against a base item's embedding."""

    base: ClothingItem
    ranked: List[ScoredItem]
    items: Dict[str, ClothingItem]

    def _body(self, s: ScoredItem) -> Dict[str, Any]:
        item = self.items[s.candidate.item_id]
        return {
            "id": s.candidate.item_id,
            "name": item.name,
            "category": item.category,
            "details": item.details,
            "freshness_score": item.freshness_score,
            "cleanliness_status": item.cleanliness_status,
            "rank": s.rank,
            "similarity": round(s.similarity, 6),
            "score": round(s.score, 6),
        }

    def ranked_body(self) -> List[Dict[str, Any]]:
        return [self._body(s) for s in self.ranked]

    def grouped_body(self) -> Dict[str, List[Dict[str, Any]]]:
        return {cat: [self._body(s) for s in group] for cat, group in group_by_category(self.ranked).items()}


class RecommendationComposer:
    def __init__(
        self,
        *,
        freshness: FreshnessStateMachine,
        feedback: FeedbackAggregator,
        provider: Any,
        weather: Optional[WeatherAdvisoryCache] = None,
        matcher_config: MatcherConfig | None = None,
        config: ComposerConfig | None = None,
    ) -> None:
        self.freshness = freshness
        self.feedback = feedback
        self.provider = provider
        self.weather = weather
        self.matcher_config = matcher_config or MatcherConfig()
        self.config = config or ComposerConfig()

    async def _advisory(self, ctx: RecommendationContext, degraded: List[str]) -> Optional[WeatherLookup]:
        if not ctx.has_coordinates or self.weather is None:
            return None
        try:
            return await self.weather.get_advisory(ctx.latitude, ctx.longitude)
        except ExternalServiceError as e:
            logger.warning("recs:weather degraded lat=%s lon=%s reason=%s", ctx.latitude, ctx.longitude, e.reason)
            degraded.append(DEGRADED_WEATHER)
            return None

    async def _query_vector(self, text: str, degraded: List[str]) -> List[float]:
        try:
            out = await asyncio.wait_for(
                llm_service.embed_text(text, self.provider, timeout_ms=self.config.embedding_timeout_ms),
                timeout=self.config.embedding_timeout_ms / 1000.0,
            )
            return out.vector
        except Exception as e:
            logger.warning("recs:embedding degraded reason=%r", e)
            degraded.append(DEGRADED_EMBEDDING)
            return []

    async def _narrative(self, payload: NarrativeInput, degraded: List[str]) -> Optional[str]:
        try:
            out = await asyncio.wait_for(
                llm_service.narrate_outfit(
                    payload,
                    self.provider,
                    timeout_ms=self.config.narrative_timeout_ms,
                    use_cache=self.config.narrative_cache,
                    cache_ttl_s=self.config.narrative_cache_ttl_s,
                ),
                timeout=self.config.narrative_timeout_ms / 1000.0,
            )
        except Exception as e:
            logger.warning("recs:narrative degraded reason=%r", e)
            degraded.append(DEGRADED_NARRATIVE)
            return None
        logger.info(
            "recs:narrative model=%s cached=%s latency_ms=%s",
            out.usage.model,
            out.usage.cached,
            out.usage.latency_ms,
        )
        return out.text

    async def _clean_items(self, session: AsyncSession, user_id: str) -> List[ClothingItem]:
        res = await session.execute(
            select(ClothingItem).where(
                ClothingItem.user_id == user_id,
                ClothingItem.is_archived.is_(False),
                ClothingItem.cleanliness_status.in_(CleanlinessStatus.RECOMMENDABLE),
            )
        )
        return list(res.scalars().all())

    async def candidates(
        self,
        session: AsyncSession,
        user_id: str,
        advisory: Optional[Dict[str, Any]],
        ctx: Optional[RecommendationContext] = None,
    ) -> Tuple[List[ClothingItem], int]:
        clean = await self._clean_items(session, user_id)
        season = ctx.season if ctx else None
        formality = ctx.formality if ctx else None
        suitable = [i for i in clean if is_weather_suitable(i, advisory) and matches_context(i, season, formality)]
        return suitable, len(clean)

    async def _base_item(self, session: AsyncSession, user_id: str, item_id) -> ClothingItem:
        base = await self.freshness.load_item(session, user_id, item_id)
        if not base.embedding:
            raise ValidationError("item_has_no_embedding")
        return base

    async def similar_items(self, session: AsyncSession, user_id: str, item_id, *, limit: int = 5) -> RelatedItems:
        """Clean items closest to ``item_id``, any category."""
        base = await self._base_item(session, user_id, item_id)
        pool = [i for i in await self._clean_items(session, user_id) if i.id != base.id and i.embedding]
        config = MatcherConfig(top_k=limit, per_category_cap=limit, essential_categories=())
        ranked = rank(base.embedding, [to_candidate(i) for i in pool], config)
        logger.info("recs:similar user_id=%s item_id=%s pool=%s ranked=%s", user_id, base.id, len(pool), len(ranked))
        return RelatedItems(base=base, ranked=ranked, items={str(i.id): i for i in pool})

    async def complementary_items(
        self, session: AsyncSession, user_id: str, item_id, *, season: Optional[str] = None
    ) -> RelatedItems:
        """Up to three items per complementary category, matched on the base item's formality and season."""
        if season is not None and season not in SEASONS:
            raise ValidationError("invalid_season")
        base = await self._base_item(session, user_id, item_id)
        details = base.details or {}
        targets = COMPLEMENTARY_CATEGORIES.get(_lower(base.category), DEFAULT_COMPLEMENTARY)
        base_season = _lower(details.get("season"))
        if season is None and base_season != ALL_SEASON:
            season = base_season or None
        formality = _lower(details.get("formality")) or None
        pool = [
            i
            for i in await self._clean_items(session, user_id)
            if i.id != base.id and i.embedding and i.category in targets and matches_context(i, season, formality)
        ]
        config = MatcherConfig(
            top_k=COMPLEMENTARY_PER_CATEGORY * len(targets),
            per_category_cap=COMPLEMENTARY_PER_CATEGORY,
            essential_categories=targets,
        )
        ranked = rank(base.embedding, [to_candidate(i) for i in pool], config)
        logger.info(
            "recs:complementary user_id=%s item_id=%s season=%s formality=%s pool=%s ranked=%s",
            user_id,
            base.id,
            season or "-",
            formality or "-",
            len(pool),
            len(ranked),
        )
        return RelatedItems(base=base, ranked=ranked, items={str(i.id): i for i in pool})

    async def compose(self, session: AsyncSession, user_id: str, ctx: RecommendationContext) -> Recommendation:
        ctx.validate()
        started = time.perf_counter()
        degraded: List[str] = []

        lookup = await self._advisory(ctx, degraded)
        advisory = lookup.advisory if lookup else None

        items, clean_count = await self.candidates(session, user_id, advisory, ctx)
        lookup_by_id = {str(i.id): i for i in items}
        essentials = list(self.matcher_config.essential_categories)
        for c in (advisory or {}).get("required_categories", []):
            if c not in essentials:
                essentials.append(c)

        weather_label = ctx.weather or (advisory or {}).get("weather_type")
        query_text = llm_service.build_query_text(ctx.query, ctx.occasion, weather_label, ctx.season, ctx.formality)
        query = await self._query_vector(query_text, degraded) if items else []
        if query:
            off = [str(i.id) for i in items if i.embedding and len(i.embedding) != len(query)]
            if off:
                logger.warning(
                    "recs:embedding dim mismatch query_dim=%s items=%s item_ids=%s", len(query), len(off), ",".join(off[:5])
                )

        bias = await self.feedback.bias_for(session, user_id, ctx.occasion, ctx.season)
        ranked = rank(
            query,
            [to_candidate(i) for i in items],
            self.matcher_config,
            bias=bias,
            essential_categories=essentials,
        )
        grouped = group_by_category(ranked)

        text = None
        if ranked:
            text = await self._narrative(
                NarrativeInput(
                    context={**asdict(ctx), "weather": weather_label},
                    items_by_category={
                        cat: [describe_item(lookup_by_id[s.candidate.item_id]) for s in group]
                        for cat, group in grouped.items()
                    },
                    advisory=advisory,
                ),
                degraded,
            )

        rec = await self._persist(session, user_id, ctx, query_text, ranked, grouped, lookup, text, degraded)
        logger.info(
            "recs:compose user_id=%s rec_id=%s clean=%s candidates=%s ranked=%s degraded=%s ms=%.1f",
            user_id,
            rec.id,
            clean_count,
            len(items),
            len(ranked),
            ",".join(degraded) or "-",
            (time.perf_counter() - started) * 1000,
        )
        return rec

    async def _persist(
        self,
        session: AsyncSession,
        user_id: str,
        ctx: RecommendationContext,
        query_text: str,
        ranked: Sequence[ScoredItem],
        grouped: Dict[str, List[ScoredItem]],
        lookup: Optional[WeatherLookup],
        narrative: Optional[str],
        degraded: List[str],
    ) -> Recommendation:
        rec = Recommendation(
            id=uuid.uuid4(),
            user_id=user_id,
            context={**asdict(ctx), "query_text": query_text},
            items_by_category={cat: [s.candidate.item_id for s in group] for cat, group in grouped.items()},
            weather=lookup.as_dict() if lookup else None,
            narrative=narrative,
            degraded=degraded or None,
            created_at=utcnow(),
        )
        rec.items = [
            RecommendationItem(
                clothing_item_id=uuid.UUID(s.candidate.item_id),
                category=s.candidate.category,
                rank=s.rank,
                similarity=round(s.similarity, 6),
                score=round(s.score, 6),
            )
            for s in ranked
        ]
        session.add(rec)
        try:
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error("recs:persist failed user_id=%s", user_id, exc_info=True)
            raise PersistenceError("recommendation_persist_failed") from e
        return rec

    async def get(self, session: AsyncSession, user_id: str, recommendation_id) -> Recommendation:
        try:
            rid = recommendation_id if isinstance(recommendation_id, uuid.UUID) else uuid.UUID(str(recommendation_id))
        except ValueError as e:
            raise NotFoundError("recommendation_not_found") from e
        rec = await session.get(Recommendation, rid)
        if not rec or rec.user_id != user_id:
            raise NotFoundError("recommendation_not_found")
        return rec

    async def history(
        self, session: AsyncSession, user_id: str, *, limit: int = 20, offset: int = 0
    ) -> Tuple[List[Recommendation], int]:
        total = await session.scalar(
            select(func.count()).select_from(Recommendation).where(Recommendation.user_id == user_id)
        )
        res = await session.execute(
            select(Recommendation)
            .where(Recommendation.user_id == user_id)
            .order_by(Recommendation.created_at.desc(), Recommendation.id)
            .limit(limit)
            .offset(offset)
        )
        return list(res.scalars().all()), int(total or 0)

    async def mark_worn(
        self,
        session: AsyncSession,
        user_id: str,
        recommendation_id,
        item_ids: Optional[Iterable[str]] = None,
    ) -> Dict[str, Any]:
        """Record a wear for every item of the result, each item in its own transaction."""
        rec = await self.get(session, user_id, recommendation_id)
        rec_id = rec.id
        all_ids = list(dict.fromkeys(str(it.clothing_item_id) for it in rec.items))
        if item_ids is not None:
            wanted = list(dict.fromkeys(str(i) for i in item_ids))
            unknown = [i for i in wanted if i not in all_ids]
            if unknown:
                raise ValidationError("item_not_in_recommendation", extra={"item_ids": unknown})
            targets = wanted
        else:
            targets = all_ids

        now = utcnow()
        worn: List[str] = []
        skipped: List[Dict[str, str]] = []
        for item_id in targets:
            try:
                await self.freshness.record_wear(session, user_id, item_id, now=now)
                worn.append(item_id)
            except (InvalidTransitionError, NotFoundError, VersionConflictError) as e:
                logger.info("recs:worn skipped rec_id=%s item_id=%s reason=%s", rec_id, item_id, e.code)
                skipped.append({"item_id": item_id, "reason": e.code})

        session.add(
            RecommendationWear(
                recommendation_id=rec_id,
                user_id=user_id,
                worn_item_ids=worn,
                skipped_item_ids=[s["item_id"] for s in skipped] or None,
                worn_at=now,
            )
        )
        try:
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error("recs:worn persist failed rec_id=%s", rec_id, exc_info=True)
            raise PersistenceError("recommendation_wear_persist_failed") from e
        logger.info("recs:worn rec_id=%s worn=%s skipped=%s", rec_id, len(worn), len(skipped))
        return {"recommendation_id": str(rec_id), "worn": worn, "skipped": skipped, "worn_at": now}

    async def render(self, session: AsyncSession, rec: Recommendation) -> Dict[str, Any]:
        """Response body for a stored result, joining current item details."""
        ids = [it.clothing_item_id for it in rec.items]
        items: Dict[str, ClothingItem] = {}
        if ids:
            res = await session.execute(select(ClothingItem).where(ClothingItem.id.in_(ids)))
            items = {str(i.id): i for i in res.scalars().all()}
        by_category: Dict[str, List[Dict[str, Any]]] = {}
        for ri in rec.items:
            item = items.get(str(ri.clothing_item_id))
            by_category.setdefault(ri.category, []).append(
                {
                    "id": str(ri.clothing_item_id),
                    "name": item.name if item else None,
                    "category": ri.category,
                    "details": item.details if item else None,
                    "freshness_score": item.freshness_score if item else None,
                    "cleanliness_status": item.cleanliness_status if item else None,
                    "rank": ri.rank,
                    "similarity": ri.similarity,
                    "score": ri.score,
                }
            )
        return {
            "recommendation_id": str(rec.id),
            "items_by_category": by_category,
            "total_items": len(rec.items),
            "weather": rec.weather,
            "ai_suggestion": rec.narrative,
            "degraded": rec.degraded or [],
            "context": rec.context,
            "created_at": rec.created_at,
        }
