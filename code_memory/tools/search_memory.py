"""Agent-facing ``search_memory`` tool over the entry store and cache."""

from __future__ import annotations

import logging
from typing import Any

from code_memory.core.context import ContextAssembler, estimate_tokens, hash_query
from code_memory.core.entry_store import EntryStore
from code_memory.core.knowledge_cache import KnowledgeCache
from code_memory.models import (
    MemoryContext,
    MemoryEntry,
    MemoryEntryType,
    MemoryMetadata,
    MemoryQuery,
    clamp_unit,
)

logger = logging.getLogger(__name__)

SEARCH_CACHE_TTL_SECONDS = 60 * 60
NO_RESULTS_SUMMARY = "No relevant information found in the knowledge base."


class SearchMemoryTool:
    """Searches project knowledge for the agent, caching summaries of hits."""

    name = "search_memory"
    description = (
        "Search the project knowledge base for relevant information. Use this tool "
        "to find architecture decisions, API documentation, module descriptions, "
        "and coding patterns."
    )
    parameters: dict[str, Any] = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "The search query to find relevant information",
            },
            "type": {
                "type": "string",
                "description": "Optional filter by entry type",
                "enum": [t.value for t in MemoryEntryType],
            },
            "limit": {
                "type": "integer",
                "description": "Maximum number of results to return",
                "default": 5,
            },
        },
        "required": ["query"],
    }

    def __init__(
        self,
        store: EntryStore,
        cache: KnowledgeCache,
        assembler: ContextAssembler | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.assembler = assembler or ContextAssembler(store, cache)

    async def execute(self, params: dict[str, Any]) -> dict[str, Any]:
        """Run a search. Never raises; failures come back as ``success=False``."""
        errors = self.validate(params)
        if errors:
            return {"success": False, "data": None, "error": "Parameter validation failed: " + ", ".join(errors)}

        query = params["query"]
        type_name = params.get("type")
        limit = params.get("limit") or 5

        try:
            cache_key = f"search:{type_name or 'all'}:{limit}:{hash_query(query)}"
            cached = self.cache.get(cache_key)
            if cached is not None:
                return {
                    "success": True,
                    "data": {
                        "entries": [cached],
                        "summary": cached.content,
                        "total_tokens": estimate_tokens(cached.content),
                        "relevance_score": cached.metadata.relevance,
                        "from_cache": True,
                    },
                    "error": None,
                }

            if type_name:
                results = self.store.query(MemoryQuery(
                    text=query, types=[MemoryEntryType(type_name)], limit=limit,
                ))
                entries = [r.entry for r in results]
            else:
                entries = self.store.get_relevant(query, limit)

            summary = self._summarise(entries)
            relevance = (
                sum(e.metadata.relevance for e in entries) / len(entries) if entries else 0.0
            )

            if entries:
                self.cache.cache(
                    cache_key,
                    MemoryEntry(
                        type=MemoryEntryType.DOCUMENTATION,
                        content=summary,
                        metadata=MemoryMetadata(
                            source="search-memory-tool",
                            tags=["search-result", "summary"],
                            relevance=clamp_unit(relevance),
                        ),
                    ),
                    ttl=SEARCH_CACHE_TTL_SECONDS,
                )

            return {
                "success": True,
                "data": {
                    "entries": entries,
                    "summary": summary,
                    "total_tokens": sum(estimate_tokens(e.content) for e in entries),
                    "relevance_score": relevance,
                    "from_cache": False,
                },
                "error": None,
            }
        except Exception as exc:
            logger.exception("search_memory failed for query %r", query)
            return {"success": False, "data": None, "error": str(exc)}

    async def provide_context(self, query: str, max_tokens: int | None = None) -> MemoryContext:
        return await self.assembler.provide_context(query, max_tokens)

    async def enrich_prompt(self, prompt: str, context: MemoryContext | None = None) -> str:
        return await self.assembler.enrich_prompt(prompt, context)

    @staticmethod
    def validate(params: dict[str, Any]) -> list[str]:
        errors = []
        query = params.get("query")
        if not isinstance(query, str) or not query.strip():
            errors.append("query is required and must be a non-empty string")

        type_name = params.get("type")
        if type_name is not None and type_name not in {t.value for t in MemoryEntryType}:
            errors.append(f"type must be one of the entry types, got {type_name!r}")

        limit = params.get("limit")
        if limit is not None and (not isinstance(limit, int) or isinstance(limit, bool) or limit < 1):
            errors.append("limit must be a positive integer")
        return errors

    @staticmethod
    def _summarise(entries: list[MemoryEntry]) -> str:
        if not entries:
            return NO_RESULTS_SUMMARY
        lines = [
            f"{i}. [{e.type.label}] {e.content[:200]}{'...' if len(e.content) > 200 else ''}"
            for i, e in enumerate(entries, start=1)
        ]
        return f"Found {len(entries)} relevant items:\n\n" + "\n\n".join(lines)
