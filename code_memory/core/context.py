"""Context assembly for the agent runtime.

Turns a free-text query into a token-bounded set of knowledge entries plus
a short summary, consulting the knowledge cache before the entry store.
Task-aware variants pick entry types by the kind of work being done.

Token counts are estimated as ``ceil(len(text) / 4)``.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import re
from datetime import datetime, timezone

from code_memory.config import MEMORY_CONFIG
from code_memory.core.entry_store import EntryStore
from code_memory.core.knowledge_cache import KnowledgeCache
from code_memory.llm.base import KnowledgeProvider
from code_memory.models import (
    MemoryContext,
    MemoryEntry,
    MemoryEntryType,
    MemoryMetadata,
    MemoryQuery,
    clamp_unit,
)

logger = logging.getLogger(__name__)

T = MemoryEntryType

# task type -> (primary types, secondary types)
TASK_TYPE_PRIORITIES: dict[str, tuple[list[MemoryEntryType], list[MemoryEntryType]]] = {
    "refactoring": ([T.CODE, T.PATTERN], [T.ARCHITECTURE, T.DECISION]),
    "feature": ([T.MODULE, T.API], [T.ARCHITECTURE, T.PATTERN]),
    "bugfix": ([T.CODE, T.API], [T.PATTERN]),
    "architecture": ([T.ARCHITECTURE, T.DECISION], [T.MODULE, T.PATTERN]),
    "documentation": ([T.DOCUMENTATION, T.API], [T.MODULE]),
    "default": ([T.DOCUMENTATION], [T.ARCHITECTURE, T.API]),
}

TASK_STOP_WORDS = frozenset({
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "shall", "can", "need", "to", "of",
    "in", "for", "on", "with", "at", "by", "from", "as", "into", "through",
    "during", "before", "after", "above", "below", "between", "under",
    "again", "further", "then", "once",
})


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def hash_query(query: str) -> str:
    return hashlib.sha1(query.encode("utf-8")).hexdigest()[:16]


def type_priorities(task_type: str) -> tuple[list[MemoryEntryType], list[MemoryEntryType]]:
    return TASK_TYPE_PRIORITIES.get(task_type, TASK_TYPE_PRIORITIES["default"])


def extract_task_keywords(text: str, limit: int = 10) -> list[str]:
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    unique = dict.fromkeys(w for w in words if len(w) > 2 and w not in TASK_STOP_WORDS)
    return list(unique)[:limit]


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


class ContextAssembler:
    """Builds agent context from the entry store, cache first."""

    def __init__(
        self,
        store: EntryStore,
        cache: KnowledgeCache,
        provider: KnowledgeProvider | None = None,
        max_context_tokens: int | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.provider = provider
        self.config = MEMORY_CONFIG
        self.max_context_tokens = (
            max_context_tokens if max_context_tokens is not None
            else self.config["context_max_tokens"]
        )

    # ── Query context ──

    async def provide_context(self, query: str, max_tokens: int | None = None) -> MemoryContext:
        """Cached, token-bounded context for ``query``."""
        max_tokens = max_tokens if max_tokens is not None else self.max_context_tokens
        cache_key = f"context:{hash_query(query)}"

        cached = self.cache.get(cache_key)
        if cached is not None:
            return MemoryContext(
                entries=[cached],
                summary=cached.content,
                total_tokens=estimate_tokens(cached.content),
                relevance_score=cached.metadata.relevance,
            )

        context = await self.assemble_context(query, max_tokens)

        if context.entries:
            now = datetime.now(timezone.utc)
            summary_entry = MemoryEntry(
                type=MemoryEntryType.DOCUMENTATION,
                content=context.summary,
                metadata=MemoryMetadata(
                    source="agent-context",
                    tags=["context", "summary"],
                    relevance=clamp_unit(context.relevance_score),
                    confidence=1.0,
                ),
                created_at=now,
                updated_at=now,
            )
            self.cache.cache(cache_key, summary_entry, ttl=self.config["context_cache_ttl_seconds"])

        return context

    async def assemble_context(self, query: str, max_tokens: int) -> MemoryContext:
        """Uncached assembly: rank, fill the token budget greedily, summarise."""
        results = self.store.query(MemoryQuery(
            text=query,
            limit=self.config["context_query_limit"],
            threshold=self.config["context_relevance_threshold"],
        ))

        entries: list[MemoryEntry] = []
        total_tokens = 0
        score_sum = 0.0
        for result in results:
            tokens = estimate_tokens(result.entry.content)
            if total_tokens + tokens <= max_tokens:
                entries.append(result.entry)
                total_tokens += tokens
                score_sum += result.score

        summary = await self.generate_summary(entries, query)

        return MemoryContext(
            entries=entries,
            summary=summary,
            total_tokens=total_tokens,
            relevance_score=score_sum / len(entries) if entries else 0.0,
        )

    async def generate_summary(self, entries: list[MemoryEntry], query: str) -> str:
        if not entries:
            return ""

        if self.provider is not None:
            chars = self.config["summary_entry_chars"]
            context = "\n\n".join(
                f"[{e.type.value}] {e.content[:chars]}"
                for e in entries[:self.config["summary_entry_count"]]
            )
            try:
                return await self.provider.complete([
                    {"role": "system", "content": self.config["prompts"]["summary"]},
                    {"role": "user", "content": f"Query: {query}\n\nContext:\n{context}"},
                ])
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("Summary generation failed, using extractive summary", exc_info=True)

        chars = self.config["fallback_summary_chars"]
        return "\n".join(
            f"- {_truncate(e.content, chars)}"
            for e in entries[:self.config["fallback_summary_count"]]
        )

    async def enrich_prompt(self, prompt: str, context: MemoryContext | None = None) -> str:
        """Prefix ``prompt`` with a Relevant Context section when there is any."""
        context = context or await self.provide_context(prompt)
        if not context.entries:
            return prompt

        return f"## Relevant Context\n\n{self.format_context(context)}\n\n## Task\n\n{prompt}"

    def format_context(self, context: MemoryContext) -> str:
        sections = []
        if context.summary:
            sections.append(f"**Summary:** {context.summary}")

        chars = self.config["prompt_entry_chars"]
        for entry in context.entries[:self.config["prompt_context_entries"]]:
            source = entry.metadata.file_path or entry.metadata.page_id or "project"
            sections.append(f"### {entry.type.label} ({source})\n\n{_truncate(entry.content, chars)}")

        return "\n\n".join(sections)

    # ── Typed and task-aware context ──

    async def get_multi_dimensional_context(
        self, query: str, types: list[MemoryEntryType],
    ) -> MemoryContext:
        """Up to a few entries per requested type, under the assembler's token budget."""
        entries: list[MemoryEntry] = []
        total_tokens = 0

        for entry_type in types:
            results = self.store.query(MemoryQuery(
                text=query, types=[entry_type], limit=self.config["multi_dimensional_limit"],
            ))
            for result in results:
                tokens = estimate_tokens(result.entry.content)
                if total_tokens + tokens <= self.max_context_tokens:
                    entries.append(result.entry)
                    total_tokens += tokens

        return MemoryContext(
            entries=entries,
            summary=self._grouped_summary(entries, types),
            total_tokens=total_tokens,
            relevance_score=(
                sum(e.metadata.relevance for e in entries) / len(entries) if entries else 0.0
            ),
        )

    async def provide_context_for_task(self, description: str, task_type: str) -> MemoryContext:
        primary, secondary = type_priorities(task_type)
        keywords = extract_task_keywords(description, self.config["task_keyword_limit"])
        query = " ".join([*(t.value for t in primary), *keywords])

        context = await self.provide_context(query, self.max_context_tokens)
        if not secondary:
            return context

        extra = await self.get_multi_dimensional_context(description, secondary)
        merged = list({e.id: e for e in [*context.entries, *extra.entries]}.values())
        merged = merged[:self.config["task_context_max_entries"]]

        return MemoryContext(
            entries=merged,
            summary=context.summary,
            total_tokens=sum(estimate_tokens(e.content) for e in merged),
            relevance_score=context.relevance_score,
        )

    async def get_architecture_context(self) -> MemoryContext:
        return await self.provide_context("architecture pattern layers modules")

    async def get_api_context(self, symbol_name: str | None = None) -> MemoryContext:
        query = (
            f"API {symbol_name} function method class interface" if symbol_name
            else "API reference functions methods classes interfaces"
        )
        return await self.provide_context(query)

    async def get_module_context(self, module_name: str) -> MemoryContext:
        return await self.provide_context(f"module {module_name} components services types")

    async def get_decision_context(self, topic: str | None = None) -> MemoryContext:
        query = (
            f"decision {topic} ADR architecture choice" if topic
            else "architecture decision record ADR"
        )
        return await self.provide_context(query)

    # ── Symbol and file helpers ──

    async def store_knowledge(self, content: str, entry_type: MemoryEntryType, **metadata) -> MemoryEntry:
        """Store an entry and cache it under ``<type>:<file path | symbol | id>``."""
        entry = await self.store.store_knowledge(content, entry_type, **metadata)
        anchor = entry.metadata.file_path or entry.metadata.symbol_name or entry.id
        self.cache.cache(f"{entry.type.value}:{anchor}", entry)
        return entry

    def get_relevant_symbols(self, symbol_name: str) -> list[MemoryEntry]:
        cached = self.cache.get(f"symbol:{symbol_name}")
        if cached is not None:
            return [cached]

        results = self.store.query(MemoryQuery(text=symbol_name, symbol_name=symbol_name, limit=5))
        needle = symbol_name.lower()
        return [
            r.entry for r in results
            if r.entry.metadata.symbol_name == symbol_name or needle in r.entry.content.lower()
        ]

    def get_relevant_files(self, file_path: str) -> list[MemoryEntry]:
        cached = self.cache.get(f"file:{file_path}")
        if cached is not None:
            return [cached]

        results = self.store.query(MemoryQuery(text=file_path, file_path=file_path, limit=10))
        return [r.entry for r in results if r.entry.metadata.file_path == file_path]

    def invalidate_file_context(self, file_path: str) -> int:
        self.cache.invalidate_pattern(rf"^\w+:{re.escape(file_path)}$")
        return self.store.invalidate(file_path=file_path)

    def invalidate_symbol_context(self, symbol_name: str) -> int:
        self.cache.invalidate_pattern(rf"^\w+:{re.escape(symbol_name)}$")
        return self.store.invalidate(symbol_name=symbol_name)

    @staticmethod
    def _grouped_summary(entries: list[MemoryEntry], types: list[MemoryEntryType]) -> str:
        if not entries:
            return "No relevant information found."
        parts = []
        for entry_type in types:
            group = [e for e in entries if e.type == entry_type]
            if group:
                parts.append(f"{entry_type.label}: " + "; ".join(e.content[:100] for e in group))
        return "\n".join(parts)
