"""LiteLLM wrapper with structured logging."""

from __future__ import annotations

import logging

import litellm

from code_memory.config import MEMORY_CONFIG

logger = logging.getLogger(__name__)

# Suppress litellm's verbose logging
litellm.suppress_debug_info = True


async def llm_complete_messages(
    messages: list[dict[str, str]],
    model: str | None = None,
    temperature: float | None = None,
    timeout: float | None = None,
    max_attempts: int = 1,
) -> str:
    """Send a chat completion request via litellm and return the text response.

    The knowledge core makes a single attempt per operation; ``max_attempts``
    exists for callers outside the core that want retries.
    """
    model = model or MEMORY_CONFIG["llm_model"]
    temperature = temperature if temperature is not None else MEMORY_CONFIG["llm_temperature"]

    for attempt in range(max_attempts):
        try:
            response = await litellm.acompletion(
                model=model,
                messages=messages,
                temperature=temperature,
                timeout=timeout,
            )
            return response.choices[0].message.content or ""
        except Exception:
            if attempt == max_attempts - 1:
                raise
            logger.warning("LLM call failed (attempt %d/%d), retrying...", attempt + 1, max_attempts)

    return ""  # unreachable but satisfies type checker
