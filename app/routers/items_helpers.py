from typing import Any, Callable, Dict

from app.core.errors import ValidationError
from app.models.models import ClothingItem, LaundryEntry, WashPreference
from app.schemas.items import ItemOut
from app.schemas.laundry import LaundryEntryOut


def _metadata_out(item: ClothingItem) -> Dict[str, Any]:
    return {"category": item.category, **(item.details or {})}


def _build_item_out(item: ClothingItem) -> ItemOut:
    return ItemOut(
        id=str(item.id),
        name=item.name,
        category=item.category,
        metadata=_metadata_out(item),
        has_embedding=bool(item.embedding),
        wear_count=item.wear_count or 0,
        last_worn_at=item.last_worn_at,
        cleanliness_status=item.cleanliness_status,
        freshness_score=item.freshness_score,
        wash_preference=item.wash_preference,
        is_archived=bool(item.is_archived),
        version=item.version,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def _build_entry_out(entry: LaundryEntry, overdue: bool = False) -> LaundryEntryOut:
    return LaundryEntryOut(
        id=str(entry.id),
        clothing_item_id=str(entry.clothing_item_id),
        status=entry.status,
        active=entry.active,
        added_at=entry.added_at,
        expected_return=entry.expected_return,
        closed_at=entry.closed_at,
        notes=entry.notes,
        priority=entry.priority,
        overdue=overdue,
        item=_build_item_out(entry.item) if entry.item is not None else None,
    )


def _split_metadata(metadata: Dict[str, Any]) -> tuple[str, Dict[str, Any]]:
    details = {k: v for k, v in metadata.items() if k != "category" and v not in (None, [], "")}
    return metadata["category"], details


def _set_name(item: ClothingItem, value: Any) -> None:
    item.name = value.strip() if isinstance(value, str) and value.strip() else None


def _set_metadata(item: ClothingItem, value: Any) -> None:
    if value is None:
        raise ValidationError("metadata_required")
    item.category, item.details = _split_metadata(value)


def _set_embedding(item: ClothingItem, value: Any) -> None:
    item.embedding = [float(x) for x in value] if value else None


def _set_wash_preference(item: ClothingItem, value: Any) -> None:
    if value not in WashPreference.ALL:
        raise ValidationError("invalid_wash_preference")
    item.wash_preference = value


def _set_archived(item: ClothingItem, value: Any) -> None:
    item.is_archived = bool(value)


# PATCH /items/{id}: every updatable field and the function that applies it.
UPDATE_HANDLERS: Dict[str, Callable[[ClothingItem, Any], None]] = {
    "name": _set_name,
    "metadata": _set_metadata,
    "embedding": _set_embedding,
    "wash_preference": _set_wash_preference,
    "is_archived": _set_archived,
}


def _apply_updates(item: ClothingItem, data: Dict[str, Any]) -> None:
    for field, value in data.items():
        handler = UPDATE_HANDLERS.get(field)
        if handler is None:
            raise ValidationError("field_not_updatable", extra={"field": field})
        handler(item, value)
