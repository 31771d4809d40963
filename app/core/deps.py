from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Request

from app.core.config import Settings, settings
from app.services import llm as llm_service
from app.services.composer import ComposerConfig, RecommendationComposer
from app.services.feedback import FeedbackAggregator, FeedbackConfig
from app.services.freshness import FreshnessConfig, FreshnessStateMachine
from app.services.laundry import LaundrySuggestionGenerator
from app.services.learner import LearnerConfig, WearDecisionLearner
from app.services.matcher import MatcherConfig
from app.services.weather import OpenMeteoProvider, WeatherAdvisoryCache, WeatherCacheConfig, WeatherProvider


@dataclass
class Services:
    freshness: FreshnessStateMachine
    learner: WearDecisionLearner
    laundry: LaundrySuggestionGenerator
    weather: WeatherAdvisoryCache
    feedback: FeedbackAggregator
    composer: RecommendationComposer
    llm: Any


def build_services(
    s: Settings = settings,
    *,
    weather_provider: Optional[WeatherProvider] = None,
    llm_provider: Any = None,
) -> Services:
    freshness = FreshnessStateMachine(FreshnessConfig.from_settings(s))
    learner = WearDecisionLearner(LearnerConfig.from_settings(s))
    weather_cfg = WeatherCacheConfig.from_settings(s)
    weather = WeatherAdvisoryCache(
        weather_provider or OpenMeteoProvider(s.WEATHER_API_URL, timeout_s=weather_cfg.fetch_timeout_s),
        weather_cfg,
    )
    feedback = FeedbackAggregator(FeedbackConfig.from_settings(s))
    provider = llm_provider or llm_service.build_provider(s)
    composer = RecommendationComposer(
        freshness=freshness,
        feedback=feedback,
        provider=provider,
        weather=weather,
        matcher_config=MatcherConfig.from_settings(s),
        config=ComposerConfig.from_settings(s),
    )
    return Services(
        freshness=freshness,
        learner=learner,
        laundry=LaundrySuggestionGenerator(freshness, learner),
        weather=weather,
        feedback=feedback,
        composer=composer,
        llm=provider,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_freshness(request: Request) -> FreshnessStateMachine:
    return get_services(request).freshness


def get_laundry(request: Request) -> LaundrySuggestionGenerator:
    return get_services(request).laundry


def get_weather(request: Request) -> WeatherAdvisoryCache:
    return get_services(request).weather


def get_feedback(request: Request) -> FeedbackAggregator:
    return get_services(request).feedback


def get_composer(request: Request) -> RecommendationComposer:
    return get_services(request).composer
