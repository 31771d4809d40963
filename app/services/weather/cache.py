from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.core.config import Settings
from app.core.errors import ExternalServiceError, ValidationError
from app.services.weather.advisory import build_advisory
from app.services.weather.provider import WeatherProvider

logger = logging.getLogger("uvicorn.error")

CacheKey = Tuple[float, float, int]


@dataclass(frozen=True)
class WeatherCacheConfig:
    ttl_s: float = 900.0
    coord_precision: int = 2
    fetch_timeout_s: float = 2.0
    sweep_interval_s: float = 0.0

    def __post_init__(self) -> None:
        if self.ttl_s <= 0:
            raise ValueError("ttl_s must be positive")
        if self.coord_precision < 0:
            raise ValueError("coord_precision must be >= 0")
        if self.fetch_timeout_s <= 0:
            raise ValueError("fetch_timeout_s must be positive")

    @classmethod
    def from_settings(cls, s: Settings) -> "WeatherCacheConfig":
        return cls(
            ttl_s=float(s.WEATHER_CACHE_TTL_S),
            coord_precision=s.WEATHER_COORD_PRECISION,
            fetch_timeout_s=s.WEATHER_FETCH_TIMEOUT_MS / 1000.0,
            sweep_interval_s=float(s.WEATHER_CACHE_SWEEP_INTERVAL_S),
        )


@dataclass
class CacheEntry:
    key: CacheKey
    weather: Dict[str, Any]
    advisory: Dict[str, Any]
    created_at: float
    expires_at: float


@dataclass
class WeatherLookup:
    key: CacheKey
    weather: Dict[str, Any]
    advisory: Dict[str, Any]
    cached: bool = False
    stale: bool = False
    fetched_at: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "key": format_key(self.key),
            "weather": self.weather,
            "advisory": self.advisory,
            "cached": self.cached,
            "stale": self.stale,
            "fetched_at": _iso(self.fetched_at),
        }


def format_key(key: CacheKey) -> str:
    return f"{key[0]}:{key[1]}:{key[2]}"


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class WeatherAdvisoryCache:
    """In-process TTL cache keyed by coordinate bucket and hour.

    Concurrent misses on one key share a single provider call; lookups on
    other keys never wait on each other.
    """

    def __init__(
        self,
        provider: WeatherProvider,
        config: WeatherCacheConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.provider = provider
        self.config = config or WeatherCacheConfig()
        self.clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._inflight: Dict[CacheKey, asyncio.Task] = {}
        self.hits = 0
        self.misses = 0
        self.fetches = 0
        self.coalesced = 0

    def make_key(self, lat: float, lon: float, now: Optional[float] = None) -> CacheKey:
        if lat is None or lon is None:
            raise ValidationError("coordinates_required")
        if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
            raise ValidationError("coordinates_out_of_range")
        now = self.clock() if now is None else now
        p = self.config.coord_precision
        return (round(float(lat), p), round(float(lon), p), int(now // 3600))

    async def get_advisory(self, lat: float, lon: float) -> WeatherLookup:
        now = self.clock()
        key = self.make_key(lat, lon, now)
        entry = self._entries.get(key)
        if entry is not None and now < entry.expires_at:
            self.hits += 1
            return WeatherLookup(key, entry.weather, entry.advisory, cached=True, fetched_at=entry.created_at)

        self.misses += 1
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._fetch(key, lat, lon))
            self._inflight[key] = task
        else:
            self.coalesced += 1

        try:
            # shield: one caller being cancelled must not cancel the shared fetch
            fresh = await asyncio.shield(task)
        except ExternalServiceError:
            stale = self._entries.get(key)
            if stale is None:
                raise
            logger.warning("weather-cache: serving stale key=%s", format_key(key))
            return WeatherLookup(key, stale.weather, stale.advisory, cached=True, stale=True, fetched_at=stale.created_at)
        return WeatherLookup(key, fresh.weather, fresh.advisory, fetched_at=fresh.created_at)

    async def _fetch(self, key: CacheKey, lat: float, lon: float) -> CacheEntry:
        self.fetches += 1
        started = time.perf_counter()
        try:
            try:
                weather = await asyncio.wait_for(
                    self.provider.fetch(key[0], key[1]), timeout=self.config.fetch_timeout_s
                )
            except asyncio.TimeoutError as e:
                logger.warning("weather-cache: fetch timeout key=%s", format_key(key))
                raise ExternalServiceError("weather", "timeout") from e
            advisory = build_advisory(weather)
            now = self.clock()
            entry = CacheEntry(key=key, weather=weather, advisory=advisory, created_at=now, expires_at=now + self.config.ttl_s)
            self._entries[key] = entry
            logger.info(
                "weather-cache: fetched key=%s provider=%s type=%s ms=%.1f",
                format_key(key),
                getattr(self.provider, "name", "unknown"),
                advisory.get("weather_type"),
                (time.perf_counter() - started) * 1000,
            )
            return entry
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("weather-cache: bad provider payload key=%s err=%s", format_key(key), e)
            raise ExternalServiceError("weather", "bad_payload") from e
        finally:
            self._inflight.pop(key, None)

    def stats(self) -> Dict[str, Any]:
        now = self.clock()
        expired = sum(1 for e in self._entries.values() if now >= e.expires_at)
        return {
            "hits": self.hits,
            "misses": self.misses,
            "fetches": self.fetches,
            "coalesced": self.coalesced,
            "entry_count": len(self._entries),
            "expired_count": expired,
            "inflight": len(self._inflight),
            "ttl_s": self.config.ttl_s,
        }

    def entries(self) -> List[Dict[str, Any]]:
        now = self.clock()
        out = []
        for e in sorted(self._entries.values(), key=lambda e: e.created_at, reverse=True):
            out.append(
                {
                    "key": format_key(e.key),
                    "created_at": _iso(e.created_at),
                    "expires_at": _iso(e.expires_at),
                    "age_s": round(now - e.created_at, 1),
                    "expired": now >= e.expires_at,
                    "weather_type": e.advisory.get("weather_type"),
                }
            )
        return out

    def clear(self) -> int:
        n = len(self._entries)
        self._entries.clear()
        logger.info("weather-cache: cleared entries=%s", n)
        return n

    def clear_expired(self) -> int:
        now = self.clock()
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.info("weather-cache: cleared expired entries=%s", len(expired))
        return len(expired)

    async def run_sweeper(self) -> None:
        interval = self.config.sweep_interval_s
        if interval <= 0:
            return
        while True:
            await asyncio.sleep(interval)
            self.clear_expired()
