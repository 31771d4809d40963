from app.services.weather.advisory import build_advisory, temperature_band
from app.services.weather.cache import WeatherAdvisoryCache, WeatherCacheConfig, WeatherLookup
from app.services.weather.provider import OpenMeteoProvider, WeatherProvider

__all__ = [
    "build_advisory",
    "temperature_band",
    "WeatherAdvisoryCache",
    "WeatherCacheConfig",
    "WeatherLookup",
    "OpenMeteoProvider",
    "WeatherProvider",
]
