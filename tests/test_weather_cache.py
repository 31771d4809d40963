import asyncio

import pytest

from app.core.errors import ExternalServiceError, ValidationError
from app.services.weather import WeatherAdvisoryCache, WeatherCacheConfig, build_advisory, temperature_band
from app.services.weather.provider import normalize_open_meteo
from tests.fixtures import FakeWeatherProvider, weather_payload

BERLIN = (52.52, 13.41)
# one minute into an hour, so short ttl steps stay in the same bucket
T0 = 3600.0 * 500_000 + 60


class FakeClock:
    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _cache(provider, clock=None, **cfg):
    return WeatherAdvisoryCache(provider, WeatherCacheConfig(**cfg), clock=clock or FakeClock())


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_fetch():
    provider = FakeWeatherProvider(delay=0.05)
    cache = _cache(provider)

    results = await asyncio.gather(*[cache.get_advisory(*BERLIN) for _ in range(10)])

    assert provider.calls == 1
    assert all(r.advisory == results[0].advisory for r in results)
    stats = cache.stats()
    assert stats["fetches"] == 1
    assert stats["misses"] == 10
    assert stats["coalesced"] == 9
    assert stats["inflight"] == 0


@pytest.mark.asyncio
async def test_hit_within_ttl_and_refetch_after():
    provider = FakeWeatherProvider()
    clock = FakeClock()
    cache = _cache(provider, clock, ttl_s=300)

    first = await cache.get_advisory(*BERLIN)
    assert first.cached is False
    second = await cache.get_advisory(52.5249, 13.4149)  # same 2-decimal bucket
    assert second.cached is True
    assert provider.calls == 1

    clock.now += 301
    third = await cache.get_advisory(*BERLIN)
    assert third.cached is False
    assert provider.calls == 2
    assert cache.stats()["hits"] == 1


@pytest.mark.asyncio
async def test_keys_are_bucketed_by_precision_and_hour():
    cache = _cache(FakeWeatherProvider(), coord_precision=1)
    k1 = cache.make_key(52.52, 13.41, now=T0)
    k2 = cache.make_key(52.54, 13.44, now=T0 + 100)
    k3 = cache.make_key(52.52, 13.41, now=T0 + 3600)
    assert k1 == k2 == (52.5, 13.4, int(T0 // 3600))
    assert k3 != k1

    with pytest.raises(ValidationError):
        cache.make_key(91.0, 0.0)
    with pytest.raises(ValidationError):
        cache.make_key(None, 0.0)


@pytest.mark.asyncio
async def test_stale_entry_served_when_provider_fails():
    provider = FakeWeatherProvider()
    clock = FakeClock()
    cache = _cache(provider, clock, ttl_s=60)

    fresh = await cache.get_advisory(*BERLIN)
    clock.now += 120
    provider.fail = "http_error"

    stale = await cache.get_advisory(*BERLIN)
    assert stale.stale is True
    assert stale.cached is True
    assert stale.advisory == fresh.advisory


@pytest.mark.asyncio
async def test_failure_without_stale_entry_raises():
    provider = FakeWeatherProvider()
    provider.fail = "http_error"
    cache = _cache(provider)
    with pytest.raises(ExternalServiceError) as exc:
        await cache.get_advisory(*BERLIN)
    assert exc.value.code == "weather_unavailable"
    assert exc.value.reason == "http_error"
    assert cache.stats()["entry_count"] == 0


@pytest.mark.asyncio
async def test_slow_provider_times_out():
    provider = FakeWeatherProvider(delay=1.0)
    cache = _cache(provider, fetch_timeout_s=0.05)
    with pytest.raises(ExternalServiceError) as exc:
        await cache.get_advisory(*BERLIN)
    assert exc.value.reason == "timeout"
    assert cache.stats()["inflight"] == 0


@pytest.mark.asyncio
async def test_bad_payload_is_an_external_failure():
    provider = FakeWeatherProvider(payload={"description": "clear_sky"})
    cache = _cache(provider)
    with pytest.raises(ExternalServiceError) as exc:
        await cache.get_advisory(*BERLIN)
    assert exc.value.reason == "bad_payload"


@pytest.mark.asyncio
async def test_clear_and_clear_expired():
    provider = FakeWeatherProvider()
    clock = FakeClock()
    cache = _cache(provider, clock, ttl_s=60)

    await cache.get_advisory(*BERLIN)
    clock.now += 30
    await cache.get_advisory(48.85, 2.35)
    clock.now += 40

    entries = cache.entries()
    assert len(entries) == 2
    assert sorted(e["expired"] for e in entries) == [False, True]
    assert cache.stats()["expired_count"] == 1

    assert cache.clear_expired() == 1
    assert cache.stats()["entry_count"] == 1
    assert cache.clear() == 1
    assert cache.entries() == []


@pytest.mark.asyncio
async def test_sweeper_drops_expired_entries():
    clock = FakeClock()
    cache = _cache(FakeWeatherProvider(), clock, ttl_s=10, sweep_interval_s=0.01)
    await cache.get_advisory(*BERLIN)
    clock.now += 20

    task = asyncio.create_task(cache.run_sweeper())
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert cache.stats()["entry_count"] == 0


def test_temperature_bands():
    assert temperature_band(31) == "hot"
    assert temperature_band(30) == "mild"
    assert temperature_band(18) == "mild"
    assert temperature_band(17.9) == "cool"
    assert temperature_band(10) == "cool"
    assert temperature_band(9.9) == "cold"


def test_advisory_rules():
    hot = build_advisory(weather_payload(temperature=34))
    assert hot["weather_type"] == "hot"
    assert "outerwear" in hot["avoid_categories"]
    assert "wool" in hot["avoid_materials"]

    cold_rain = build_advisory(weather_payload(temperature=4, description="moderate_rain"))
    assert cold_rain["weather_type"] == "cold_rainy"
    assert cold_rain["required_categories"] == ["outerwear"]
    assert "suede" in cold_rain["avoid_materials"]
    assert "Rain expected" in cold_rain["advice"]

    # requirement wins over the hot-weather avoid list
    hot_storm = build_advisory(weather_payload(temperature=33, description="thunderstorm"))
    assert "outerwear" in hot_storm["required_categories"]
    assert "outerwear" not in hot_storm["avoid_categories"]

    humid = build_advisory(weather_payload(temperature=22, humidity=90))
    assert humid["weather_type"] == "normal_humid"
    assert humid["humid"] is True
    assert "polyester" in humid["avoid_materials"]


def test_normalize_open_meteo():
    data = {
        "latitude": 52.52,
        "longitude": 13.42,
        "timezone": "GMT",
        "current_weather": {"temperature": 12.3, "weathercode": 61, "windspeed": 9.1, "time": "2026-10-19T10:00"},
        "hourly": {"relativehumidity_2m": [77, 80]},
    }
    out = normalize_open_meteo(data)
    assert out["description"] == "slight_rain"
    assert out["humidity"] == 77.0
    assert out["temperature"] == 12.3

    out = normalize_open_meteo({"current_weather": {"temperature": 20, "weathercode": 1234}})
    assert out["description"] == "unknown"
    assert out["humidity"] == 50.0

    with pytest.raises(ValueError):
        normalize_open_meteo({})
