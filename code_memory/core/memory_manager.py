"""Knowledge Memory: wires store, cache, log, evolution and context assembly.

This is the primary interface for the agent runtime. The in-memory entry
store is authoritative; with ``persist=True`` entries are mirrored to a
SQLite snapshot and interactions to per-session JSONL files under the data
directory. Pass ``provider="default"`` for the litellm and
sentence-transformers backed provider.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from code_memory.config import DATA_DIR, MEMORY_CONFIG
from code_memory.core.context import ContextAssembler
from code_memory.core.entry_store import EntryStore
from code_memory.core.evolution import KnowledgeEvolution
from code_memory.core.interaction_log import InteractionLog
from code_memory.core.knowledge_cache import KnowledgeCache
from code_memory.llm.base import KnowledgeProvider
from code_memory.llm.provider import build_default_provider
from code_memory.models import (
    ContextSnapshot,
    EvolutionResult,
    InteractionMetadata,
    InteractionRecord,
    InteractionType,
    MemoryContext,
    MemoryEntry,
    MemoryEntryType,
)
from code_memory.storage.jsonl_log import JSONLInteractionWriter
from code_memory.storage.sqlite_store import SQLiteStore
from code_memory.tools.search_memory import SearchMemoryTool

logger = logging.getLogger(__name__)


class KnowledgeMemory:
    """Top-level orchestrator for the knowledge memory."""

    def __init__(
        self,
        data_dir: Path | None = None,
        provider: KnowledgeProvider | str | None = None,
        persist: bool = False,
    ) -> None:
        self.data_dir = data_dir or DATA_DIR
        self.config = MEMORY_CONFIG
        if provider == "default":
            provider = build_default_provider()
        self.provider = provider
        self.persist_enabled = persist

        # Storage collaborators, only when mirroring to disk
        self.sqlite: SQLiteStore | None = None
        writer: JSONLInteractionWriter | None = None
        if persist:
            self.sqlite = SQLiteStore(self.data_dir / "knowledge.db")
            writer = JSONLInteractionWriter(self.data_dir / "interactions")

        self.store = EntryStore(provider=provider)
        self.cache = KnowledgeCache(loader=lambda key, entry: self.store.get_by_id(entry.id))
        self.interactions = InteractionLog(writer=writer)
        self.evolution = KnowledgeEvolution(self.store, self.interactions, cache=self.cache)
        self.assembler = ContextAssembler(self.store, self.cache, provider=provider)
        self.search_tool = SearchMemoryTool(self.store, self.cache, self.assembler)

        self._initialized = False

    async def initialize(self) -> None:
        """Load persisted state. Must be called before any operations."""
        if self.sqlite is not None:
            await self.sqlite.initialize()
            restored = self.store.restore(await self.sqlite.load_entries())
            history = self.interactions.load(self.interactions.writer.iter_all())
            logger.info("Restored %d entries and %d interactions", restored, history)
        self._initialized = True

    async def persist(self) -> int:
        """Write the current entry set to the snapshot. Returns the entry count."""
        self._require_initialized()
        if self.sqlite is None:
            return 0
        await self.sqlite.clear()
        return await self.sqlite.save_entries(self.store.list_entries())

    async def close(self) -> None:
        if self.sqlite is not None and self._initialized:
            await self.persist()
            await self.sqlite.close()
        self._initialized = False

    # ── Core operations ──

    def record_interaction(
        self,
        type: InteractionType,
        input: str,
        output: str,
        metadata: InteractionMetadata | None = None,
        session_id: str | None = None,
        context_snapshot: ContextSnapshot | None = None,
    ) -> InteractionRecord:
        self._require_initialized()
        return self.interactions.record(
            type, input, output,
            metadata=metadata, session_id=session_id, context_snapshot=context_snapshot,
        )

    async def store_knowledge(
        self, content: str, entry_type: MemoryEntryType, **metadata,
    ) -> MemoryEntry:
        self._require_initialized()
        return await self.assembler.store_knowledge(content, entry_type, **metadata)

    async def provide_context(self, query: str, max_tokens: int | None = None) -> MemoryContext:
        self._require_initialized()
        return await self.assembler.provide_context(query, max_tokens)

    async def search_memory(self, params: dict[str, Any]) -> dict[str, Any]:
        """Run the agent-facing ``search_memory`` tool."""
        self._require_initialized()
        return await self.search_tool.execute(params)

    async def run_evolution(self) -> EvolutionResult:
        """Run one maintenance cycle, then refresh the snapshot when persisting."""
        self._require_initialized()
        result = await self.evolution.evolve()
        if self.sqlite is not None:
            await self.persist()
        return result

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("KnowledgeMemory not initialized, call initialize() first")
