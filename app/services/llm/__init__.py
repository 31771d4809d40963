from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Dict, Optional

from redis.exceptions import RedisError

from app.core.cache import cache_json_get, cache_json_set
from app.core.config import Settings, settings
from app.services.llm.prompts import PROMPT_VERSION, build_query_text
from app.services.llm.providers.base import EmbeddingProvider, NarrativeProvider, NullProvider
from app.services.llm.providers.openai import OpenAIProvider
from app.services.llm.types import EmbeddingOutput, NarrativeInput, NarrativeOutput

logger = logging.getLogger("uvicorn.error")

__all__ = [
    "build_provider",
    "build_query_text",
    "embed_text",
    "narrate_outfit",
    "EmbeddingProvider",
    "NarrativeProvider",
    "NullProvider",
]


def _hash_blob(data: Dict[str, Any]) -> str:
    return hashlib.sha256(json.dumps(data, sort_keys=True, default=str).encode()).hexdigest()


def build_provider(s: Settings = settings):
    """Provider serving both narrative and embedding calls."""
    if not s.LLM_ENABLED:
        return NullProvider()
    name = (s.LLM_PROVIDER or "local").lower()
    if name == "openai":
        return OpenAIProvider(
            s.LLM_MODEL_NARRATIVE, s.LLM_MODEL_EMBEDDING, s.LLM_MAX_OUTPUT_TOKENS, embedding_dim=s.EMBEDDING_DIM
        )
    return NullProvider()


async def narrate_outfit(
    payload: NarrativeInput,
    provider: NarrativeProvider,
    *,
    timeout_ms: Optional[int] = None,
    use_cache: Optional[bool] = None,
    cache_ttl_s: Optional[int] = None,
) -> NarrativeOutput:
    """Narrative for a ranked outfit, cached in Redis by content hash.

    Provider errors and timeouts propagate; the caller decides how to degrade.
    A Redis outage only disables the cache.
    """
    payload.prompt_version = payload.prompt_version or PROMPT_VERSION
    timeout_ms = timeout_ms or settings.NARRATIVE_TIMEOUT_MS
    use_cache = settings.NARRATIVE_CACHE_ENABLED if use_cache is None else use_cache

    cache_key = (
        f"llm:narrative:{payload.prompt_version}:"
        f"{_hash_blob({'c': payload.context, 'i': payload.items_by_category, 'a': payload.advisory})}"
    )
    if use_cache:
        try:
            cached = await cache_json_get(cache_key)
        except RedisError as e:
            logger.warning("llm:narrative cache read failed key=%s err=%s", cache_key, e)
            cached = None
        if cached:
            out = NarrativeOutput.model_validate(cached)
            out.usage.cached = True
            out.usage.cache_key = cache_key
            return out

    out = await provider.narrate_outfit(payload, timeout_ms=timeout_ms)
    out.usage.cached = False
    out.usage.cache_key = cache_key
    if use_cache and out.text:
        try:
            await cache_json_set(cache_key, out.model_dump(), cache_ttl_s or settings.NARRATIVE_CACHE_TTL_S)
        except RedisError as e:
            logger.warning("llm:narrative cache write failed key=%s err=%s", cache_key, e)
    return out


async def embed_text(text: str, provider: EmbeddingProvider, *, timeout_ms: Optional[int] = None) -> EmbeddingOutput:
    out = await provider.embed_text(text, timeout_ms=timeout_ms or settings.EMBEDDING_TIMEOUT_MS)
    logger.info("llm:embed model=%s dims=%s latency_ms=%s", out.usage.model, len(out.vector), out.usage.latency_ms)
    return out
