from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class LLMUsage(BaseModel):
    model: str = ""
    tokens_in: int = 0
    tokens_out: int = 0
    latency_ms: int = 0
    cached: bool = False
    cache_key: Optional[str] = None
    prompt_version: str = "p1"


class NarrativeInput(BaseModel):
    context: Dict[str, Any] = Field(default_factory=dict)
    items_by_category: Dict[str, List[str]] = Field(default_factory=dict)
    advisory: Optional[Dict[str, Any]] = None
    prompt_version: str = "p1"


class NarrativeOutput(BaseModel):
    text: Optional[str] = None
    usage: LLMUsage = Field(default_factory=LLMUsage)


class EmbeddingOutput(BaseModel):
    vector: List[float] = Field(default_factory=list)
    usage: LLMUsage = Field(default_factory=LLMUsage)
