import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import ensure_same_user, get_current_user_id
from app.core.db import get_session, utcnow
from app.core.deps import get_freshness
from app.core.errors import ValidationError
from app.models.models import LaundryStatus
from app.routers.items_helpers import _build_entry_out, _build_item_out
from app.schemas.items import ItemOut
from app.schemas.laundry import LaundryAddIn, LaundryEntryOut, LaundryListOut, LaundryStatsOut
from app.services.freshness import FreshnessStateMachine
from app.services.laundry import is_overdue, laundry_stats, list_laundry

router = APIRouter(prefix="/laundry", tags=["laundry"])
logger = logging.getLogger("uvicorn.error")


@router.get("", response_model=LaundryListOut)
async def get_laundry(
    entry_status: Optional[str] = Query(None, alias="status"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    if entry_status and entry_status not in LaundryStatus.ALL:
        raise ValidationError("invalid_status")
    overview = await list_laundry(session, user_id, entry_status, newest_first=sort_order == "desc")
    now = utcnow()
    return LaundryListOut(
        items=[_build_entry_out(e, is_overdue(e, now)) for e in overview.entries],
        grouped={k: [_build_entry_out(e, is_overdue(e, now)) for e in v] for k, v in overview.grouped.items()},
        stats=overview.stats,
    )


@router.get("/stats", response_model=LaundryStatsOut)
async def get_laundry_stats(
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    return LaundryStatsOut(**await laundry_stats(session, user_id))


@router.post("/{item_id}", response_model=LaundryEntryOut, status_code=status.HTTP_201_CREATED)
async def add_to_laundry(
    item_id: str,
    payload: Optional[LaundryAddIn] = None,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    freshness: FreshnessStateMachine = Depends(get_freshness),
):
    payload = payload or LaundryAddIn()
    ensure_same_user(user_id, payload.user_id)
    entry = await freshness.add_to_laundry(
        session,
        user_id,
        item_id,
        expected_return=payload.expected_return,
        notes=payload.notes,
        priority=payload.priority,
    )
    await session.refresh(entry, attribute_names=["item"])
    return _build_entry_out(entry)


@router.delete("/{item_id}", response_model=ItemOut)
async def remove_from_laundry(
    item_id: str,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    freshness: FreshnessStateMachine = Depends(get_freshness),
):
    item = await freshness.remove_from_laundry(session, user_id, item_id)
    return _build_item_out(item)


@router.post("/{item_id}/washed", response_model=ItemOut)
async def mark_washed(
    item_id: str,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    freshness: FreshnessStateMachine = Depends(get_freshness),
):
    item = await freshness.mark_washed(session, user_id, item_id)
    return _build_item_out(item)


@router.post("/{item_id}/return", response_model=ItemOut)
async def return_to_rotation(
    item_id: str,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    freshness: FreshnessStateMachine = Depends(get_freshness),
):
    item = await freshness.return_to_rotation(session, user_id, item_id)
    return _build_item_out(item)
