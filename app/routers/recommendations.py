from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import ensure_same_user, get_current_user_id
from app.core.db import get_session
from app.core.deps import get_composer, get_feedback
from app.routers.items_helpers import _build_item_out
from app.schemas.feedback import FeedbackIn, FeedbackOut
from app.schemas.items import Season
from app.schemas.recs import (
    ComplementaryItemsOut,
    RecommendationHistoryOut,
    RecommendationIn,
    RecommendationOut,
    SimilarItemsOut,
    WornIn,
    WornOut,
)
from app.services.composer import RecommendationComposer, RecommendationContext
from app.services.feedback import FeedbackAggregator

router = APIRouter(prefix="/recommendations", tags=["recommendations"])


def _feedback_out(fb) -> FeedbackOut:
    return FeedbackOut(
        id=str(fb.id),
        recommendation_id=str(fb.recommendation_id),
        rating=fb.rating,
        comment=fb.comment,
        specific_aspects=fb.specific_aspects,
        would_wear_again=fb.would_wear_again,
        improvements=fb.improvements,
        created_at=fb.created_at,
    )


@router.post("", response_model=RecommendationOut, status_code=status.HTTP_201_CREATED)
async def create_recommendation(
    payload: RecommendationIn,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    composer: RecommendationComposer = Depends(get_composer),
):
    ensure_same_user(user_id, payload.user_id)
    ctx = RecommendationContext(**payload.model_dump(exclude={"user_id"}))
    rec = await composer.compose(session, user_id, ctx)
    return RecommendationOut(**await composer.render(session, rec))


@router.get("/history", response_model=RecommendationHistoryOut)
async def recommendation_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    composer: RecommendationComposer = Depends(get_composer),
):
    recs, total = await composer.history(session, user_id, limit=limit, offset=offset)
    items = [RecommendationOut(**await composer.render(session, r)) for r in recs]
    return RecommendationHistoryOut(items=items, total=total, limit=limit, offset=offset)


@router.get("/similar/{item_id}", response_model=SimilarItemsOut)
async def similar_items(
    item_id: str,
    limit: int = Query(5, ge=1, le=50),
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    composer: RecommendationComposer = Depends(get_composer),
):
    related = await composer.similar_items(session, user_id, item_id, limit=limit)
    return SimilarItemsOut(base_item=_build_item_out(related.base), items=related.ranked_body())


@router.get("/complementary/{item_id}", response_model=ComplementaryItemsOut)
async def complementary_items(
    item_id: str,
    season: Optional[Season] = None,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    composer: RecommendationComposer = Depends(get_composer),
):
    related = await composer.complementary_items(session, user_id, item_id, season=season)
    return ComplementaryItemsOut(base_item=_build_item_out(related.base), items_by_category=related.grouped_body())


@router.get("/{recommendation_id}", response_model=RecommendationOut)
async def get_recommendation(
    recommendation_id: str,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    composer: RecommendationComposer = Depends(get_composer),
):
    rec = await composer.get(session, user_id, recommendation_id)
    return RecommendationOut(**await composer.render(session, rec))


@router.post("/{recommendation_id}/worn", response_model=WornOut)
async def mark_worn(
    recommendation_id: str,
    payload: Optional[WornIn] = None,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    composer: RecommendationComposer = Depends(get_composer),
):
    payload = payload or WornIn()
    ensure_same_user(user_id, payload.user_id)
    out = await composer.mark_worn(session, user_id, recommendation_id, payload.item_ids)
    return WornOut(**out)


@router.post("/{recommendation_id}/feedback", response_model=FeedbackOut, status_code=status.HTTP_201_CREATED)
async def submit_feedback(
    recommendation_id: str,
    payload: FeedbackIn,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    feedback: FeedbackAggregator = Depends(get_feedback),
):
    ensure_same_user(user_id, payload.user_id)
    fb = await feedback.submit(
        session,
        user_id,
        recommendation_id,
        rating=payload.rating,
        comment=payload.comment,
        specific_aspects=payload.specific_aspects,
        would_wear_again=payload.would_wear_again,
        improvements=payload.improvements,
    )
    return _feedback_out(fb)


@router.get("/{recommendation_id}/feedback", response_model=FeedbackOut)
async def get_feedback_for(
    recommendation_id: str,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    feedback: FeedbackAggregator = Depends(get_feedback),
):
    fb = await feedback.get(session, user_id, recommendation_id)
    return _feedback_out(fb)
