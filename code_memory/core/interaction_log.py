"""Bounded log of agent interactions, newest first.

Knowledge evolution reads tool-usage statistics and failed interactions
from here. The log itself is append-only: records are only ever dropped
from the old end when the configured capacity is exceeded.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from typing import Iterable

from code_memory.config import MEMORY_CONFIG
from code_memory.models import (
    ContextSnapshot,
    InteractionMetadata,
    InteractionQuery,
    InteractionRecord,
    InteractionStats,
    InteractionType,
    ToolUsage,
    interaction_to_record,
)
from code_memory.storage.jsonl_log import JSONLInteractionWriter

logger = logging.getLogger(__name__)


def _words(text: str) -> list[str]:
    return [w for w in text.lower().split() if len(w) > 2]


class InteractionLog:
    """In-memory interaction history with an optional JSONL mirror."""

    def __init__(
        self,
        max_records: int | None = None,
        writer: JSONLInteractionWriter | None = None,
    ) -> None:
        self.max_records = (
            max_records if max_records is not None else MEMORY_CONFIG["interaction_max_records"]
        )
        self.writer = writer
        self._records: list[InteractionRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    def record(
        self,
        type: InteractionType,
        input: str,
        output: str,
        metadata: InteractionMetadata | None = None,
        session_id: str | None = None,
        context_snapshot: ContextSnapshot | None = None,
    ) -> InteractionRecord:
        record = InteractionRecord(
            type=InteractionType(type),
            input=input,
            output=output,
            metadata=metadata or InteractionMetadata(),
            session_id=session_id,
            context_snapshot=context_snapshot,
        )
        self._records.insert(0, record)
        if len(self._records) > self.max_records:
            del self._records[self.max_records:]

        if self.writer is not None:
            try:
                self.writer.append(record)
            except OSError:
                logger.exception("Failed to mirror interaction %s to disk", record.id)

        return record

    def load(self, records: Iterable[InteractionRecord]) -> int:
        """Seed the log from previously mirrored records (any order)."""
        merged = {r.id: r for r in self._records}
        for r in records:
            merged.setdefault(r.id, r)
        self._records = sorted(merged.values(), key=lambda r: r.timestamp, reverse=True)
        del self._records[self.max_records:]
        return len(self._records)

    def query(self, query: InteractionQuery) -> list[InteractionRecord]:
        results = self._records
        if query.type is not None:
            results = [r for r in results if r.type == query.type]
        if query.start_date:
            results = [r for r in results if r.timestamp >= query.start_date]
        if query.end_date:
            results = [r for r in results if r.timestamp <= query.end_date]
        if query.session_id is not None:
            results = [r for r in results if r.session_id == query.session_id]
        if query.success is not None:
            results = [r for r in results if r.metadata.success == query.success]
        if query.offset:
            results = results[query.offset:]
        if query.limit:
            results = results[:query.limit]
        return list(results)

    def get_recent(self, limit: int = 10) -> list[InteractionRecord]:
        return self._records[:limit]

    def replay(self, limit: int = 10) -> list[InteractionRecord]:
        """Most recent interactions, for restoring an agent's working context."""
        return self.get_recent(limit)

    def get_context(self, text: str) -> list[InteractionRecord]:
        """Up to five records whose input or output mention any query word."""
        keywords = _words(text)
        matches = []
        for record in self._records:
            haystacks = (record.input.lower(), record.output.lower())
            if any(k in h for k in keywords for h in haystacks):
                matches.append(record)
                if len(matches) == 5:
                    break
        return matches

    def find_similar(self, text: str) -> list[InteractionRecord]:
        query_words = _words(text)
        scored = []
        for record in self._records:
            input_words = record.input.lower().split()
            output_words = record.output.lower().split()
            score = 0
            for qw in query_words:
                for iw in input_words:
                    if iw in qw or qw in iw:
                        score += 2
                    if iw == qw:
                        score += 3
                for ow in output_words:
                    if ow in qw or qw in ow:
                        score += 1
            if score > 0:
                scored.append((score, record))

        scored.sort(key=lambda s: s[0], reverse=True)
        return [record for _, record in scored[:5]]

    def get_stats(self) -> InteractionStats:
        records = self._records
        by_type = {t: 0 for t in InteractionType}
        for r in records:
            by_type[r.type] += 1

        tool_usage = Counter(r.metadata.tool_name for r in records if r.metadata.tool_name)
        durations = [r.metadata.duration for r in records if r.metadata.duration is not None]

        return InteractionStats(
            total_interactions=len(records),
            by_type=by_type,
            success_rate=(
                sum(1 for r in records if r.metadata.success) / len(records) if records else 0.0
            ),
            total_tokens_used=sum(r.metadata.tokens_used or 0 for r in records),
            average_duration=sum(durations) / len(durations) if durations else None,
            most_used_tools=[ToolUsage(name, count) for name, count in tool_usage.most_common(5)],
            tool_usage=dict(tool_usage),
        )

    def clear(self) -> None:
        self._records = []

    def export(self) -> str:
        return json.dumps([interaction_to_record(r) for r in self._records], indent=2)
