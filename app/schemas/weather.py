from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class WeatherAdvisoryOut(BaseModel):
    key: str
    weather: Dict[str, Any]
    advisory: Dict[str, Any]
    cached: bool
    stale: bool
    fetched_at: str


class WeatherCacheStatsOut(BaseModel):
    hits: int
    misses: int
    fetches: int
    coalesced: int
    entry_count: int
    expired_count: int
    inflight: int
    ttl_s: float


class WeatherCacheEntryOut(BaseModel):
    key: str
    created_at: str
    expires_at: str
    age_s: float
    expired: bool
    weather_type: Optional[str] = None


class WeatherCacheEntriesOut(BaseModel):
    entries: List[WeatherCacheEntryOut]


class WeatherCacheClearedOut(BaseModel):
    cleared: int
