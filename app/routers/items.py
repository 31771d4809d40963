import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import get_current_user_id
from app.core.db import get_session
from app.core.deps import get_freshness
from app.core.errors import ValidationError
from app.models.models import CATEGORIES, CleanlinessStatus, ClothingItem
from app.routers.items_helpers import _apply_updates, _build_item_out, _split_metadata
from app.schemas.items import ItemCreate, ItemListOut, ItemOut, ItemUpdate
from app.services.freshness import FreshnessStateMachine, init_item

router = APIRouter(prefix="/items", tags=["items"])
# Use uvicorn logger so INFO messages show up in container logs
logger = logging.getLogger("uvicorn.error")


@router.post("", response_model=ItemOut, status_code=status.HTTP_201_CREATED)
async def create_item(
    payload: ItemCreate,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    category, details = _split_metadata(payload.metadata.model_dump())
    item = ClothingItem(
        user_id=user_id,
        name=payload.name,
        category=category,
        details=details,
        embedding=payload.embedding or None,
        wash_preference=payload.wash_preference,
        is_archived=False,
    )
    init_item(item)
    session.add(item)
    await session.commit()
    logger.info("items:create user_id=%s item_id=%s category=%s", user_id, item.id, category)
    return _build_item_out(item)


@router.get("", response_model=ItemListOut)
async def list_items(
    category: Optional[str] = Query(None),
    cleanliness_status: Optional[str] = Query(None, alias="status"),
    include_archived: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    if category and category not in CATEGORIES:
        raise ValidationError("invalid_category")
    if cleanliness_status and cleanliness_status not in CleanlinessStatus.ALL:
        raise ValidationError("invalid_status")
    conds = [ClothingItem.user_id == user_id]
    if category:
        conds.append(ClothingItem.category == category)
    if cleanliness_status:
        conds.append(ClothingItem.cleanliness_status == cleanliness_status)
    if not include_archived:
        conds.append(ClothingItem.is_archived.is_(False))

    total = await session.scalar(select(func.count()).select_from(ClothingItem).where(*conds))
    res = await session.execute(
        select(ClothingItem)
        .where(*conds)
        .order_by(ClothingItem.created_at.desc(), ClothingItem.id)
        .limit(limit)
        .offset(offset)
    )
    items = [_build_item_out(i) for i in res.scalars().all()]
    return ItemListOut(items=items, total=int(total or 0), limit=limit, offset=offset)


@router.get("/{item_id}", response_model=ItemOut)
async def get_item(
    item_id: str,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    freshness: FreshnessStateMachine = Depends(get_freshness),
):
    item = await freshness.load_item(session, user_id, item_id)
    return _build_item_out(item)


@router.patch("/{item_id}", response_model=ItemOut)
async def update_item(
    item_id: str,
    payload: ItemUpdate,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    freshness: FreshnessStateMachine = Depends(get_freshness),
):
    data = payload.model_dump(exclude_unset=True)
    if not data:
        raise ValidationError("no_fields_to_update")

    async def _patch(_session: AsyncSession, item: ClothingItem) -> None:
        _apply_updates(item, data)

    item = await freshness.transition(session, user_id, item_id, _patch, action="update")
    return _build_item_out(item)


@router.post("/{item_id}/worn", response_model=ItemOut)
async def mark_item_worn(
    item_id: str,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    freshness: FreshnessStateMachine = Depends(get_freshness),
):
    item = await freshness.record_wear(session, user_id, item_id)
    return _build_item_out(item)
