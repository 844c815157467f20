"""Provider interface consumed by the knowledge core."""

from __future__ import annotations

from typing import Protocol


class ProviderUnavailableError(RuntimeError):
    """Raised when a provider capability is disabled or not configured."""


class KnowledgeProvider(Protocol):
    """Embedding and completion backend.

    Both calls may raise; every caller in the core catches the failure and
    continues without the enrichment.
    """

    async def create_embedding(self, text: str) -> list[float]: ...

    async def complete(self, messages: list[dict[str, str]]) -> str: ...
