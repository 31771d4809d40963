from .providers import FakeLLMProvider, FakeWeatherProvider, weather_payload

__all__ = [
    "FakeLLMProvider",
    "FakeWeatherProvider",
    "weather_payload",
]
