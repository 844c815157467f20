"""In-memory knowledge entry store with inverted indices.

The store owns the id → entry map and five inverted indices (type, tag,
file path, symbol name, page id). Every write mutates the map and all
indices inside one synchronous step. The only suspension point is the
optional embedding call in ``store``, which completes before anything is
inserted.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import math
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable

from code_memory.config import MEMORY_CONFIG
from code_memory.core.scoring import highlight, score_entry
from code_memory.llm.base import KnowledgeProvider
from code_memory.models import (
    MemoryEntry,
    MemoryEntryType,
    MemoryMetadata,
    MemoryQuery,
    MemoryResult,
    clamp_unit,
    new_entry_id,
)

logger = logging.getLogger(__name__)

INDEX_NAMES = ("type", "tag", "file", "symbol", "page")

_PROTECTED_FIELDS = {"id", "created_at", "updated_at"}


def _index_keys(entry: MemoryEntry) -> Iterable[tuple[str, str]]:
    yield "type", entry.type.value
    for tag in entry.metadata.tags:
        yield "tag", tag
    if entry.metadata.file_path:
        yield "file", entry.metadata.file_path
    if entry.metadata.symbol_name:
        yield "symbol", entry.metadata.symbol_name
    if entry.metadata.page_id:
        yield "page", entry.metadata.page_id


class EntryStore:
    """Authoritative store of knowledge entries."""

    def __init__(
        self,
        provider: KnowledgeProvider | None = None,
        max_entries: int | None = None,
        enable_embeddings: bool | None = None,
    ) -> None:
        self.config = MEMORY_CONFIG
        self.provider = provider
        self.max_entries = (
            max_entries if max_entries is not None else self.config["max_entries"]
        )
        self.enable_embeddings = (
            enable_embeddings if enable_embeddings is not None
            else self.config["enable_embeddings"]
        )
        self._entries: dict[str, MemoryEntry] = {}
        self._index: dict[str, dict[str, set[str]]] = {
            name: defaultdict(set) for name in INDEX_NAMES
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._entries

    # ── Writes ──

    async def store(
        self,
        entry_type: MemoryEntryType,
        content: str,
        metadata: MemoryMetadata | None = None,
        expires_at: datetime | None = None,
    ) -> MemoryEntry:
        """Insert a new entry, embedding it first when a provider is available."""
        embedding = await self._embed(content)

        now = datetime.now(timezone.utc)
        entry = MemoryEntry(
            id=self._unused_id(),
            type=MemoryEntryType(entry_type),
            content=content,
            metadata=self._normalise(metadata or MemoryMetadata()),
            embedding=embedding,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
        )
        self._insert(entry)

        if len(self._entries) > self.max_entries:
            self._evict_oldest()

        return entry

    async def store_knowledge(
        self,
        content: str,
        entry_type: MemoryEntryType,
        *,
        source: str | None = None,
        page_id: str | None = None,
        file_path: str | None = None,
        symbol_name: str | None = None,
        tags: list[str] | None = None,
        relevance: float | None = None,
        confidence: float | None = None,
        expires_at: datetime | None = None,
    ) -> MemoryEntry:
        """Producer-facing shortcut around ``store``."""
        metadata = MemoryMetadata(
            source=source or "unknown",
            page_id=page_id,
            file_path=file_path,
            symbol_name=symbol_name,
            tags=list(tags or []),
            relevance=1.0 if relevance is None else relevance,
            confidence=1.0 if confidence is None else confidence,
        )
        return await self.store(entry_type, content, metadata, expires_at=expires_at)

    def update(self, entry_id: str, **changes) -> MemoryEntry | None:
        """Merge ``changes`` into an entry and re-index it. Unknown ids return None."""
        entry = self._entries.get(entry_id)
        if entry is None:
            return None

        ignored = _PROTECTED_FIELDS & changes.keys()
        if ignored:
            logger.debug("Ignoring protected fields on update of %s: %s", entry_id, sorted(ignored))
            changes = {k: v for k, v in changes.items() if k not in _PROTECTED_FIELDS}

        # Unindex while the old keys are still on the stored entry
        self._unindex(entry)
        updated = replace(entry, **changes, updated_at=datetime.now(timezone.utc))
        updated.type = MemoryEntryType(updated.type)
        updated.metadata = self._normalise(updated.metadata)

        self._entries[entry_id] = updated
        self._reindex(updated)
        return updated

    def delete(self, entry_id: str) -> bool:
        entry = self._entries.pop(entry_id, None)
        if entry is None:
            return False
        self._unindex(entry)
        return True

    def invalidate(
        self,
        *,
        types: list[MemoryEntryType] | None = None,
        file_path: str | None = None,
        symbol_name: str | None = None,
        tags: list[str] | None = None,
    ) -> int:
        """Remove every entry matching all of the given filters."""
        doomed = []
        for entry in self._entries.values():
            if types and entry.type not in types:
                continue
            if file_path and entry.metadata.file_path != file_path:
                continue
            if symbol_name and entry.metadata.symbol_name != symbol_name:
                continue
            if tags and not any(t in entry.metadata.tags for t in tags):
                continue
            doomed.append(entry.id)

        for entry_id in doomed:
            self.delete(entry_id)

        if doomed:
            logger.info("Invalidated %d knowledge entries", len(doomed))
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()
        for index in self._index.values():
            index.clear()

    def restore(self, entries: Iterable[MemoryEntry]) -> int:
        """Re-insert persisted entries, keeping their ids and timestamps."""
        count = 0
        for entry in entries:
            existing = self._entries.get(entry.id)
            if existing is not None:
                self._unindex(existing)
            entry = copy.deepcopy(entry)
            entry.metadata = self._normalise(entry.metadata)
            self._entries[entry.id] = entry
            self._reindex(entry)
            count += 1
        return count

    # ── Reads ──

    def get_by_id(self, entry_id: str) -> MemoryEntry | None:
        return self._entries.get(entry_id)

    def list_entries(self) -> list[MemoryEntry]:
        """All entries in insertion order. Does not count as an access."""
        return list(self._entries.values())

    def ids_for(self, index: str, key: str) -> set[str]:
        return set(self._index[index].get(key, ()))

    def query(self, query: MemoryQuery) -> list[MemoryResult]:
        """Score candidate entries against ``query`` and return the best matches."""
        now = datetime.now(timezone.utc)
        has_provider = self.provider is not None
        results: list[MemoryResult] = []

        for entry_id in self._candidate_ids(query):
            entry = self._entries.get(entry_id)
            if entry is None:
                continue
            if query.types and entry.type not in query.types:
                continue
            if not query.include_expired and entry.expires_at and entry.expires_at < now:
                continue

            score = score_entry(entry, query, has_provider=has_provider)
            if query.threshold and score < query.threshold:
                continue

            results.append(MemoryResult(entry=entry, score=score, highlights=highlight(entry, query)))

        results.sort(key=lambda r: r.score, reverse=True)
        limit = query.limit or self.config["default_query_limit"]
        results = results[:limit]

        for result in results:
            result.entry.access_count += 1
            result.entry.last_accessed_at = now

        return results

    def query_knowledge(
        self, text: str, types: list[MemoryEntryType] | None = None, limit: int | None = None,
    ) -> list[MemoryResult]:
        return self.query(MemoryQuery(text=text, types=types, limit=limit))

    def get_relevant(self, text: str, limit: int | None = None) -> list[MemoryEntry]:
        return [r.entry for r in self.query(MemoryQuery(text=text, limit=limit))]

    # ── Internals ──

    async def _embed(self, content: str) -> list[float] | None:
        if self.provider is None or not self.enable_embeddings:
            return None
        try:
            return await self.provider.create_embedding(content)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("Embedding failed, storing entry without one", exc_info=True)
            return None

    def _unused_id(self) -> str:
        entry_id = new_entry_id()
        while entry_id in self._entries:
            entry_id = new_entry_id()
        return entry_id

    @staticmethod
    def _normalise(metadata: MemoryMetadata) -> MemoryMetadata:
        """Clamped copy of ``metadata``; the caller keeps its own object."""
        metadata = copy.deepcopy(metadata)
        metadata.relevance = clamp_unit(metadata.relevance)
        metadata.confidence = clamp_unit(metadata.confidence)
        metadata.tags = list(dict.fromkeys(metadata.tags))
        return metadata

    def _insert(self, entry: MemoryEntry) -> None:
        self._entries[entry.id] = entry
        self._reindex(entry)

    def _reindex(self, entry: MemoryEntry) -> None:
        for name, key in _index_keys(entry):
            self._index[name][key].add(entry.id)

    def _unindex(self, entry: MemoryEntry) -> None:
        for name, key in _index_keys(entry):
            bucket = self._index[name].get(key)
            if bucket is None:
                continue
            bucket.discard(entry.id)
            if not bucket:
                del self._index[name][key]

    def _candidate_ids(self, query: MemoryQuery) -> list[str]:
        # Union across filter dimensions, not intersection
        candidates: set[str] = set()
        if query.file_path:
            candidates |= self._index["file"].get(query.file_path, set())
        if query.symbol_name:
            candidates |= self._index["symbol"].get(query.symbol_name, set())
        for tag in query.tags or ():
            candidates |= self._index["tag"].get(tag, set())

        if not candidates:
            return list(self._entries)
        # Insertion order keeps equal scores stable
        return [entry_id for entry_id in self._entries if entry_id in candidates]

    def _evict_oldest(self) -> None:
        count = max(1, math.floor(self.max_entries * self.config["eviction_fraction"]))
        oldest = sorted(self._entries.values(), key=lambda e: e.created_at)[:count]
        for entry in oldest:
            self.delete(entry.id)
        logger.info("Evicted %d oldest entries (max_entries=%d)", len(oldest), self.max_entries)
