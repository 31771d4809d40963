from __future__ import annotations

from typing import Protocol

from app.services.llm.types import EmbeddingOutput, LLMUsage, NarrativeInput, NarrativeOutput


class NarrativeProvider(Protocol):
    async def narrate_outfit(self, payload: NarrativeInput, *, timeout_ms: int) -> NarrativeOutput:
        ...


class EmbeddingProvider(Protocol):
    async def embed_text(self, text: str, *, timeout_ms: int) -> EmbeddingOutput:
        ...


class NullProvider:
    """Safety net provider used when LLM is disabled."""

    name = "disabled"

    async def narrate_outfit(self, payload: NarrativeInput, *, timeout_ms: int) -> NarrativeOutput:
        return NarrativeOutput(
            text=None,
            usage=LLMUsage(model=self.name, prompt_version=payload.prompt_version, cached=True),
        )

    async def embed_text(self, text: str, *, timeout_ms: int) -> EmbeddingOutput:
        return EmbeddingOutput(vector=[], usage=LLMUsage(model=self.name, cached=True))
