"""Default embedding/completion provider.

Completions go through litellm; embeddings come from a local
sentence-transformers model. Both calls are bounded by a timeout here, at
the provider boundary, so the core never waits indefinitely.
"""

from __future__ import annotations

import asyncio
import logging

from code_memory.config import MEMORY_CONFIG
from code_memory.embeddings.text_embedder import TextEmbedder
from code_memory.llm.base import ProviderUnavailableError
from code_memory.llm.client import llm_complete_messages

logger = logging.getLogger(__name__)


class LiteLLMProvider:
    """``KnowledgeProvider`` backed by litellm and sentence-transformers."""

    def __init__(
        self,
        embedder: TextEmbedder | None = None,
        model: str | None = None,
        timeout: float | None = None,
        enable_completions: bool = True,
    ) -> None:
        self.embedder = embedder
        self.model = model or MEMORY_CONFIG["llm_model"]
        self.timeout = timeout if timeout is not None else MEMORY_CONFIG["provider_timeout_seconds"]
        self.enable_completions = enable_completions

    @classmethod
    def with_local_embeddings(cls, **kwargs) -> "LiteLLMProvider":
        return cls(embedder=TextEmbedder(), **kwargs)

    async def create_embedding(self, text: str) -> list[float]:
        if self.embedder is None:
            raise ProviderUnavailableError("No text embedder configured")
        return await asyncio.wait_for(
            asyncio.to_thread(self.embedder.embed, text), timeout=self.timeout,
        )

    async def complete(self, messages: list[dict[str, str]]) -> str:
        if not self.enable_completions:
            raise ProviderUnavailableError("Completions disabled")
        return await asyncio.wait_for(
            llm_complete_messages(messages, model=self.model, timeout=self.timeout),
            timeout=self.timeout,
        )


def build_default_provider() -> LiteLLMProvider:
    """litellm completions, plus local embeddings when ``enable_embeddings`` is set.

    The embedding model is only loaded on the first ``create_embedding`` call.
    """
    if MEMORY_CONFIG["enable_embeddings"]:
        return LiteLLMProvider.with_local_embeddings()
    return LiteLLMProvider()
