from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.config import settings

Season = Literal["spring", "summer", "fall", "winter", "all-season"]
Formality = Literal["casual", "business-casual", "business", "formal", "semi-formal"]
WashPreferenceLit = Literal["afterEachWear", "afterFewWears", "manual"]
Length = Literal["short", "knee", "midi", "ankle", "full"]
Sleeve = Literal["sleeveless", "short", "three_quarter", "long"]


class _MetadataBase(BaseModel):
    model_config = ConfigDict(extra="forbid")
    subcategory: Optional[str] = Field(None, max_length=64)
    colors: List[str] = Field(default_factory=list)
    formality: Optional[Formality] = None
    season: Optional[Season] = None
    material: Optional[str] = Field(None, max_length=64)
    pattern: Optional[str] = Field(None, max_length=64)
    occasions: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    description: Optional[str] = Field(None, max_length=500)

    @field_validator("subcategory", "material", "pattern")
    @classmethod
    def _lower(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v else v

    @field_validator("colors", "occasions", "tags")
    @classmethod
    def _clean_list(cls, v: List[str]) -> List[str]:
        out: List[str] = []
        for s in v:
            s = s.strip().lower()
            if s and s not in out:
                out.append(s)
        return out


class TopMetadata(_MetadataBase):
    category: Literal["top"]
    sleeve_length: Optional[Sleeve] = None
    neckline: Optional[str] = None


class BottomMetadata(_MetadataBase):
    category: Literal["bottom"]
    length: Optional[Length] = None
    rise: Optional[Literal["low", "mid", "high"]] = None


class DressMetadata(_MetadataBase):
    category: Literal["dress"]
    length: Optional[Length] = None
    sleeve_length: Optional[Sleeve] = None


class OuterwearMetadata(_MetadataBase):
    category: Literal["outerwear"]
    waterproof: Optional[bool] = None
    insulation: Optional[Literal["none", "light", "medium", "heavy"]] = None


class ShoesMetadata(_MetadataBase):
    category: Literal["shoes"]
    waterproof: Optional[bool] = None
    heel_height: Optional[Literal["flat", "low", "mid", "high"]] = None


class AccessoriesMetadata(_MetadataBase):
    category: Literal["accessories"]


class UnderwearMetadata(_MetadataBase):
    category: Literal["underwear"]


class OtherMetadata(_MetadataBase):
    category: Literal["other"]


ItemMetadata = Annotated[
    Union[
        TopMetadata,
        BottomMetadata,
        DressMetadata,
        OuterwearMetadata,
        ShoesMetadata,
        AccessoriesMetadata,
        UnderwearMetadata,
        OtherMetadata,
    ],
    Field(discriminator="category"),
]


def _check_embedding(v: Optional[List[float]]) -> Optional[List[float]]:
    if v and len(v) != settings.EMBEDDING_DIM:
        raise ValueError(f"embedding must have {settings.EMBEDDING_DIM} dimensions, got {len(v)}")
    return v


class ItemCreate(BaseModel):
    name: Optional[str] = Field(None, max_length=200)
    metadata: ItemMetadata
    embedding: Optional[List[float]] = None
    wash_preference: WashPreferenceLit = "manual"

    _embedding_dim = field_validator("embedding")(_check_embedding)


class ItemUpdate(BaseModel):
    """Partial update; only the fields present are applied."""

    name: Optional[str] = Field(None, max_length=200)
    metadata: Optional[ItemMetadata] = None
    embedding: Optional[List[float]] = None
    wash_preference: Optional[WashPreferenceLit] = None
    is_archived: Optional[bool] = None

    _embedding_dim = field_validator("embedding")(_check_embedding)


class ItemOut(BaseModel):
    id: str
    name: Optional[str] = None
    category: str
    metadata: Optional[dict] = None
    has_embedding: bool = False
    wear_count: int = 0
    last_worn_at: Optional[datetime] = None
    cleanliness_status: str
    freshness_score: int
    wash_preference: str
    is_archived: bool = False
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ItemListOut(BaseModel):
    items: List[ItemOut]
    total: int
    limit: int
    offset: int


class WashPreferenceIn(BaseModel):
    user_id: Optional[str] = None
    preference: WashPreferenceLit
