from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

import logging

from app.services.llm.prompts import build_narrative_prompt
from app.services.llm.types import EmbeddingOutput, LLMUsage, NarrativeInput, NarrativeOutput

logger = logging.getLogger("uvicorn.error")


class OpenAIProvider:
    name = "openai"

    def __init__(
        self,
        model_narrative: str,
        model_embedding: str,
        max_output_tokens: int = 400,
        embedding_dim: Optional[int] = None,
    ):
        self.client = AsyncOpenAI()
        self.model_narrative = model_narrative
        self.model_embedding = model_embedding
        self.max_output_tokens = max_output_tokens
        self.embedding_dim = embedding_dim

    async def _chat(self, messages: List[Dict[str, Any]], model: str, timeout_ms: int) -> Dict[str, Any]:
        start = time.perf_counter()
        logger.info("llm:openai request model=%s timeout_ms=%s", model, timeout_ms)
        try:
            resp = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=model,
                    messages=messages,
                    temperature=0.7,
                    max_tokens=self.max_output_tokens,
                ),
                timeout=timeout_ms / 1000.0,
            )
        except asyncio.TimeoutError:
            logger.warning("llm:openai timeout model=%s timeout_ms=%s", model, timeout_ms)
            raise
        latency_ms = int((time.perf_counter() - start) * 1000)
        choice = resp.choices[0].message.content if resp.choices else ""
        return {
            "content": choice,
            "latency_ms": latency_ms,
            "tokens_in": getattr(resp.usage, "prompt_tokens", 0) if resp.usage else 0,
            "tokens_out": getattr(resp.usage, "completion_tokens", 0) if resp.usage else 0,
        }

    async def narrate_outfit(self, payload: NarrativeInput, *, timeout_ms: int) -> NarrativeOutput:
        messages = build_narrative_prompt(payload)
        res = await self._chat(messages, self.model_narrative, timeout_ms)
        text = (res["content"] or "").strip() or None
        return NarrativeOutput(
            text=text,
            usage=LLMUsage(
                model=self.model_narrative,
                tokens_in=res["tokens_in"],
                tokens_out=res["tokens_out"],
                latency_ms=res["latency_ms"],
                prompt_version=payload.prompt_version,
            ),
        )

    async def embed_text(self, text: str, *, timeout_ms: int) -> EmbeddingOutput:
        start = time.perf_counter()
        kwargs: Dict[str, Any] = {"model": self.model_embedding, "input": text}
        if self.embedding_dim:
            kwargs["dimensions"] = self.embedding_dim
        try:
            resp = await asyncio.wait_for(
                self.client.embeddings.create(**kwargs),
                timeout=timeout_ms / 1000.0,
            )
        except asyncio.TimeoutError:
            logger.warning("llm:openai embedding timeout model=%s timeout_ms=%s", self.model_embedding, timeout_ms)
            raise
        vector = list(resp.data[0].embedding) if resp.data else []
        return EmbeddingOutput(
            vector=vector,
            usage=LLMUsage(
                model=self.model_embedding,
                tokens_in=getattr(resp.usage, "prompt_tokens", 0) if resp.usage else 0,
                latency_ms=int((time.perf_counter() - start) * 1000),
            ),
        )
