"""TTL cache of single knowledge entries.

Sits in front of expensive context assembly. Keys are opaque strings
(``context:<hash>``, ``symbol:<name>``, ``file:<path>`` …). Expiry is
evaluated lazily on read; nothing runs in the background. The cache is
never the source of truth and can be dropped at any time: records hold
their own copy of the entry, so mutating a cache hit never reaches the store.
"""

from __future__ import annotations

import copy
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Callable

from code_memory.config import MEMORY_CONFIG
from code_memory.models import CacheRecord, CacheStats, MemoryEntry, MemoryEntryType

logger = logging.getLogger(__name__)

# (key, currently cached entry) -> fresh entry, or None if the source is gone
Loader = Callable[[str, MemoryEntry], "MemoryEntry | None"]


class KnowledgeCache:
    """Keyed entry cache with hit/miss accounting."""

    def __init__(self, default_ttl: float | None = None, loader: Loader | None = None) -> None:
        self.default_ttl = (
            default_ttl if default_ttl is not None else MEMORY_CONFIG["cache_default_ttl_seconds"]
        )
        self.loader = loader
        self._records: dict[str, CacheRecord] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def cache(self, key: str, entry: MemoryEntry, ttl: float | None = None) -> None:
        now = datetime.now(timezone.utc)
        ttl = ttl if ttl is not None else self.default_ttl
        self._records[key] = CacheRecord(
            key=key,
            entry=copy.deepcopy(entry),
            created_at=now,
            expires_at=now + timedelta(seconds=ttl),
        )

    def get(self, key: str) -> MemoryEntry | None:
        record = self._records.get(key)
        if record is None:
            self.misses += 1
            return None

        if record.expires_at <= datetime.now(timezone.utc):
            del self._records[key]
            self.misses += 1
            return None

        record.hits += 1
        self.hits += 1
        return record.entry

    def invalidate(self, key: str) -> bool:
        return self._records.pop(key, None) is not None

    def invalidate_pattern(self, pattern: str) -> int:
        regex = re.compile(pattern)
        doomed = [key for key in self._records if regex.search(key)]
        for key in doomed:
            del self._records[key]
        if doomed:
            logger.debug("Invalidated %d cache keys matching %r", len(doomed), pattern)
        return len(doomed)

    def refresh(self, key: str) -> MemoryEntry | None:
        """Re-read ``key`` through the loader and re-cache it with the default TTL."""
        record = self._records.get(key)
        if record is None:
            return None

        entry = record.entry
        if self.loader is not None:
            entry = self.loader(key, record.entry)
            if entry is None:
                del self._records[key]
                return None

        self.cache(key, entry)
        return self._records[key].entry

    def clear(self) -> None:
        self._records.clear()
        self.hits = 0
        self.misses = 0

    def get_stats(self) -> CacheStats:
        now = datetime.now(timezone.utc)
        records = list(self._records.values())
        requests = self.hits + self.misses

        return CacheStats(
            total_entries=len(records),
            total_size=sum(len(r.entry.content) for r in records),
            hit_rate=self.hits / requests if requests else 0.0,
            miss_rate=self.misses / requests if requests else 0.0,
            average_age=(
                sum((now - r.created_at).total_seconds() for r in records) / len(records)
                if records else 0.0
            ),
        )

    # ── Housekeeping ──

    def get_expired_keys(self) -> list[str]:
        now = datetime.now(timezone.utc)
        return [key for key, r in self._records.items() if r.expires_at <= now]

    def cleanup_expired(self) -> int:
        expired = self.get_expired_keys()
        for key in expired:
            del self._records[key]
        return len(expired)

    def get_keys_by_type(self, entry_type: MemoryEntryType) -> list[str]:
        return [key for key, r in self._records.items() if r.entry.type == entry_type]

    def get_hot_keys(self, threshold: int = 5) -> list[str]:
        hot = [r for r in self._records.values() if r.hits >= threshold]
        hot.sort(key=lambda r: r.hits, reverse=True)
        return [r.key for r in hot]
