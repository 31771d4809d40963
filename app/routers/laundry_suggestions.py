from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import ensure_same_user, get_current_user_id
from app.core.db import get_session
from app.core.deps import get_freshness, get_laundry
from app.models.models import ClothingItem
from app.routers.items_helpers import _build_item_out, _set_wash_preference
from app.schemas.items import ItemOut, WashPreferenceIn
from app.schemas.laundry import LaundrySuggestionOut, LaundrySuggestionsOut, LearnIn, LearnOut
from app.services.freshness import FreshnessStateMachine
from app.services.laundry import LaundrySuggestionGenerator

router = APIRouter(prefix="/laundry-suggestions", tags=["laundry"])


@router.get("", response_model=LaundrySuggestionsOut)
async def get_suggestions(
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    laundry: LaundrySuggestionGenerator = Depends(get_laundry),
):
    batch = await laundry.suggest(session, user_id)
    return LaundrySuggestionsOut(
        suggestions=[
            LaundrySuggestionOut(
                item=_build_item_out(s.item),
                reason=s.reason,
                confidence=s.confidence,
                urgency=s.urgency,
                effective_trigger=s.effective_trigger,
                multiplier=s.multiplier,
            )
            for s in batch.suggestions
        ],
        total=len(batch.suggestions),
        summary=batch.summary,
    )


@router.post("/learn", response_model=LearnOut)
async def learn(
    payload: LearnIn,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    laundry: LaundrySuggestionGenerator = Depends(get_laundry),
):
    ensure_same_user(user_id, payload.user_id)
    out = await laundry.respond(session, user_id, payload.clothing_id, payload.decision, payload.item_type)
    return LearnOut(
        clothing_id=str(out.item.id),
        decision=out.decision,
        item_type=out.item_type,
        dismiss_rate=round(out.dismiss_rate, 4),
        multiplier=round(out.multiplier, 4),
        moved_to_laundry=out.moved,
        cleanliness_status=out.item.cleanliness_status,
    )


@router.put("/wash-preference/{item_id}", response_model=ItemOut)
async def set_wash_preference(
    item_id: str,
    payload: WashPreferenceIn,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    freshness: FreshnessStateMachine = Depends(get_freshness),
):
    ensure_same_user(user_id, payload.user_id)

    async def _set(_session: AsyncSession, item: ClothingItem) -> None:
        _set_wash_preference(item, payload.preference)

    item = await freshness.transition(session, user_id, item_id, _set, action="wash_preference")
    return _build_item_out(item)
