from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field

from app.schemas.items import Formality, ItemOut, Season

Occasion = Literal["work", "casual", "formal", "party", "date", "gym", "travel", "other", "general"]


class RecommendationIn(BaseModel):
    user_id: Optional[str] = None
    query: Optional[str] = Field(None, max_length=500)
    occasion: Optional[Occasion] = None
    weather: Optional[str] = Field(None, max_length=64)
    season: Optional[Season] = None
    formality: Optional[Formality] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class RecItemOut(BaseModel):
    id: str
    name: Optional[str] = None
    category: str
    details: Optional[Dict[str, Any]] = None
    freshness_score: Optional[int] = None
    cleanliness_status: Optional[str] = None
    rank: int
    similarity: float
    score: float


class RecommendationOut(BaseModel):
    recommendation_id: str
    items_by_category: Dict[str, List[RecItemOut]]
    total_items: int
    weather: Optional[Dict[str, Any]] = None
    ai_suggestion: Optional[str] = None
    degraded: List[str] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class RecommendationHistoryOut(BaseModel):
    items: List[RecommendationOut]
    total: int
    limit: int
    offset: int


class WornIn(BaseModel):
    user_id: Optional[str] = None
    item_ids: Optional[List[str]] = None


class SkippedItemOut(BaseModel):
    item_id: str
    reason: str


class WornOut(BaseModel):
    recommendation_id: str
    worn: List[str]
    skipped: List[SkippedItemOut]
    worn_at: datetime


class SimilarItemsOut(BaseModel):
    base_item: ItemOut
    items: List[RecItemOut]


class ComplementaryItemsOut(BaseModel):
    base_item: ItemOut
    items_by_category: Dict[str, List[RecItemOut]]
