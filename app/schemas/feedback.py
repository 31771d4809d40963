from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator

from app.services.feedback import ASPECTS, MAX_COMMENT


class FeedbackIn(BaseModel):
    user_id: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=MAX_COMMENT)
    specific_aspects: Optional[Dict[str, Optional[int]]] = None
    would_wear_again: Optional[bool] = None
    improvements: Optional[List[str]] = None

    @field_validator("specific_aspects")
    @classmethod
    def _aspects(cls, v: Optional[Dict[str, Optional[int]]]):
        if not v:
            return v
        for k, score in v.items():
            if k not in ASPECTS:
                raise ValueError(f"unknown aspect {k}")
            if score is not None and not 1 <= score <= 5:
                raise ValueError(f"{k} must be between 1 and 5")
        return v


class FeedbackOut(BaseModel):
    id: str
    recommendation_id: str
    rating: int
    comment: Optional[str] = None
    specific_aspects: Optional[Dict[str, int]] = None
    would_wear_again: Optional[bool] = None
    improvements: Optional[List[str]] = None
    created_at: datetime
