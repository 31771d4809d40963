from datetime import datetime
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field

from app.schemas.items import ItemOut

Priority = Literal["low", "medium", "high"]


class LaundryAddIn(BaseModel):
    user_id: Optional[str] = None
    expected_return: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=500)
    priority: Priority = "medium"


class LaundryEntryOut(BaseModel):
    id: str
    clothing_item_id: str
    status: str
    active: bool
    added_at: datetime
    expected_return: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    notes: Optional[str] = None
    priority: str
    overdue: bool = False
    item: Optional[ItemOut] = None


class LaundryListOut(BaseModel):
    items: List[LaundryEntryOut]
    grouped: Dict[str, List[LaundryEntryOut]]
    stats: Dict[str, int]


class LaundryStatusBucket(BaseModel):
    status: str
    count: int
    avg_days: float


class LaundryStatsOut(BaseModel):
    total: int
    overdue: int
    ready_to_wear: int
    by_status: List[LaundryStatusBucket]


class LaundrySuggestionOut(BaseModel):
    item: ItemOut
    reason: str
    confidence: float
    urgency: float
    effective_trigger: float
    multiplier: float


class LaundrySuggestionsOut(BaseModel):
    suggestions: List[LaundrySuggestionOut]
    total: int
    summary: Dict[str, int]


class LearnIn(BaseModel):
    user_id: Optional[str] = None
    clothing_id: str
    decision: Literal["moved_to_laundry", "kept_wearing"]
    item_type: Optional[str] = Field(None, max_length=64)


class LearnOut(BaseModel):
    clothing_id: str
    decision: str
    item_type: str
    dismiss_rate: float
    multiplier: float
    moved_to_laundry: bool
    cleanliness_status: str
