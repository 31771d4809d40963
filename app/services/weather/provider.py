from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from app.core.errors import ExternalServiceError

logger = logging.getLogger("uvicorn.error")

WMO_CODES: Dict[int, str] = {
    0: "clear_sky",
    1: "mainly_clear",
    2: "partly_cloudy",
    3: "overcast",
    45: "foggy",
    48: "depositing_rime_fog",
    51: "light_drizzle",
    53: "moderate_drizzle",
    55: "dense_drizzle",
    56: "light_freezing_drizzle",
    57: "dense_freezing_drizzle",
    61: "slight_rain",
    63: "moderate_rain",
    65: "heavy_rain",
    66: "light_freezing_rain",
    67: "heavy_freezing_rain",
    71: "slight_snow_fall",
    73: "moderate_snow_fall",
    75: "heavy_snow_fall",
    77: "snow_grains",
    80: "slight_rain_showers",
    81: "moderate_rain_showers",
    82: "violent_rain_showers",
    85: "slight_snow_showers",
    86: "heavy_snow_showers",
    95: "thunderstorm",
    96: "thunderstorm_with_slight_hail",
    99: "thunderstorm_with_heavy_hail",
}

DEFAULT_HUMIDITY = 50.0


class WeatherProvider(Protocol):
    name: str

    async def fetch(self, lat: float, lon: float) -> Dict[str, Any]:
        """Return current conditions normalized to the keys used by the advisory rules."""
        ...


def normalize_open_meteo(data: Dict[str, Any]) -> Dict[str, Any]:
    current = data.get("current_weather")
    if not current:
        raise ValueError("no current_weather in response")
    code = int(current.get("weathercode", -1))
    humidity = DEFAULT_HUMIDITY
    hourly = data.get("hourly") or {}
    series = hourly.get("relativehumidity_2m") or []
    if series and series[0] is not None:
        humidity = float(series[0])
    return {
        "temperature": float(current["temperature"]),
        "weather_code": code,
        "description": WMO_CODES.get(code, "unknown"),
        "humidity": humidity,
        "wind_speed": current.get("windspeed"),
        "time": current.get("time"),
        "timezone": data.get("timezone"),
        "location": {"latitude": data.get("latitude"), "longitude": data.get("longitude")},
    }


class OpenMeteoProvider:
    name = "open-meteo"

    def __init__(self, base_url: str, timeout_s: float = 2.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self.base_url = base_url
        self.timeout_s = timeout_s
        self._client = client

    async def fetch(self, lat: float, lon: float) -> Dict[str, Any]:
        params = {
            "latitude": lat,
            "longitude": lon,
            "current_weather": "true",
            "hourly": "temperature_2m,relativehumidity_2m,weathercode",
        }
        try:
            if self._client is not None:
                resp = await self._client.get(self.base_url, params=params, timeout=self.timeout_s)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                    resp = await client.get(self.base_url, params=params)
            resp.raise_for_status()
            return normalize_open_meteo(resp.json())
        except httpx.TimeoutException as e:
            raise ExternalServiceError("weather", "timeout") from e
        except httpx.HTTPError as e:
            logger.warning("weather:fetch failed lat=%s lon=%s err=%s", lat, lon, e)
            raise ExternalServiceError("weather", "http_error") from e
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("weather:bad payload lat=%s lon=%s err=%s", lat, lon, e)
            raise ExternalServiceError("weather", "bad_payload") from e
