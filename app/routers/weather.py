from fastapi import APIRouter, Depends, Query

from app.auth.deps import get_current_user_id
from app.core.deps import get_weather
from app.schemas.weather import (
    WeatherAdvisoryOut,
    WeatherCacheClearedOut,
    WeatherCacheEntriesOut,
    WeatherCacheStatsOut,
)
from app.services.weather import WeatherAdvisoryCache

router = APIRouter(prefix="/weather", tags=["weather"])


@router.get("/advisory", response_model=WeatherAdvisoryOut)
async def get_advisory(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    user_id: str = Depends(get_current_user_id),
    cache: WeatherAdvisoryCache = Depends(get_weather),
):
    lookup = await cache.get_advisory(lat, lon)
    return WeatherAdvisoryOut(**lookup.as_dict())


@router.get("/cache/stats", response_model=WeatherCacheStatsOut)
async def cache_stats(
    user_id: str = Depends(get_current_user_id),
    cache: WeatherAdvisoryCache = Depends(get_weather),
):
    return WeatherCacheStatsOut(**cache.stats())


@router.get("/cache/entries", response_model=WeatherCacheEntriesOut)
async def cache_entries(
    user_id: str = Depends(get_current_user_id),
    cache: WeatherAdvisoryCache = Depends(get_weather),
):
    return WeatherCacheEntriesOut(entries=cache.entries())


@router.delete("/cache", response_model=WeatherCacheClearedOut)
async def clear_cache(
    user_id: str = Depends(get_current_user_id),
    cache: WeatherAdvisoryCache = Depends(get_weather),
):
    return WeatherCacheClearedOut(cleared=cache.clear())


@router.delete("/cache/expired", response_model=WeatherCacheClearedOut)
async def clear_expired(
    user_id: str = Depends(get_current_user_id),
    cache: WeatherAdvisoryCache = Depends(get_weather),
):
    return WeatherCacheClearedOut(cleared=cache.clear_expired())
