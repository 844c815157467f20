"""Data models for the code knowledge memory."""

from __future__ import annotations

import secrets
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


def new_entry_id() -> str:
    return secrets.token_hex(8)


def new_interaction_id() -> str:
    suffix = uuid.uuid4().hex[:7]
    return f"int_{int(time.time() * 1000)}_{suffix}"


def clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


class MemoryEntryType(str, Enum):
    CODE = "code"
    DOCUMENTATION = "documentation"
    ARCHITECTURE = "architecture"
    DECISION = "decision"
    PATTERN = "pattern"
    API = "api"
    MODULE = "module"
    CONFIG = "config"
    TEST = "test"
    EXAMPLE = "example"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class InteractionType(str, Enum):
    QUERY = "query"
    TOOL_CALL = "tool_call"
    CODE_GENERATION = "code_generation"
    CODE_MODIFICATION = "code_modification"
    DECISION = "decision"
    LEARNING = "learning"


# ── Knowledge entries ──

@dataclass
class MemoryMetadata:
    source: str = "unknown"
    page_id: str | None = None
    file_path: str | None = None
    symbol_name: str | None = None
    tags: list[str] = field(default_factory=list)
    relevance: float = 1.0
    confidence: float = 1.0
    # Provider-specific fields that have no dedicated attribute
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.tags = list(dict.fromkeys(self.tags))
        self.relevance = clamp_unit(self.relevance)
        self.confidence = clamp_unit(self.confidence)


@dataclass
class MemoryEntry:
    type: MemoryEntryType
    content: str
    metadata: MemoryMetadata = field(default_factory=MemoryMetadata)
    id: str = field(default_factory=new_entry_id)
    embedding: list[float] | None = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    expires_at: datetime | None = None
    access_count: int = 0
    last_accessed_at: datetime | None = None


@dataclass
class MemoryQuery:
    text: str = ""
    types: list[MemoryEntryType] | None = None
    tags: list[str] | None = None
    file_path: str | None = None
    symbol_name: str | None = None
    limit: int | None = None
    threshold: float | None = None
    include_expired: bool = False


@dataclass
class MemoryHighlight:
    field: str
    snippet: str
    positions: list[tuple[int, int]] = field(default_factory=list)


@dataclass
class MemoryResult:
    entry: MemoryEntry
    score: float
    highlights: list[MemoryHighlight] = field(default_factory=list)


@dataclass
class MemoryContext:
    entries: list[MemoryEntry] = field(default_factory=list)
    summary: str = ""
    total_tokens: int = 0
    relevance_score: float = 0.0


# ── Cache ──

@dataclass
class CacheRecord:
    key: str
    entry: MemoryEntry
    expires_at: datetime
    created_at: datetime = field(default_factory=_now)
    hits: int = 0


@dataclass
class CacheStats:
    total_entries: int = 0
    total_size: int = 0
    hit_rate: float = 0.0
    miss_rate: float = 0.0
    average_age: float = 0.0  # seconds


# ── Interaction log ──

@dataclass
class InteractionMetadata:
    success: bool = True
    model: str | None = None
    tokens_used: int | None = None
    tool_name: str | None = None
    tool_args: dict[str, Any] | None = None
    files_affected: list[str] | None = None
    lines_generated: int | None = None
    duration: float | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class ContextSnapshot:
    relevant_files: list[str] | None = None
    relevant_symbols: list[str] | None = None
    wiki_context: str | None = None


@dataclass
class InteractionRecord:
    type: InteractionType
    input: str
    output: str
    metadata: InteractionMetadata = field(default_factory=InteractionMetadata)
    id: str = field(default_factory=new_interaction_id)
    timestamp: datetime = field(default_factory=_now)
    session_id: str | None = None
    context_snapshot: ContextSnapshot | None = None


@dataclass
class InteractionQuery:
    type: InteractionType | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    session_id: str | None = None
    success: bool | None = None
    limit: int | None = None
    offset: int | None = None


@dataclass
class ToolUsage:
    name: str
    count: int


@dataclass
class InteractionStats:
    total_interactions: int = 0
    by_type: dict[InteractionType, int] = field(default_factory=dict)
    success_rate: float = 0.0
    total_tokens_used: int = 0
    average_duration: float | None = None
    most_used_tools: list[ToolUsage] = field(default_factory=list)
    tool_usage: dict[str, int] = field(default_factory=dict)


# ── Evolution ──

@dataclass
class KnowledgeUpdateResult:
    updated: bool = False
    created: bool = False
    entry: MemoryEntry | None = None


@dataclass
class CleanupResult:
    removed_count: int = 0
    removed_entries: list[str] = field(default_factory=list)


@dataclass
class MergeGroup:
    kept: str
    removed: list[str] = field(default_factory=list)


@dataclass
class ConsolidationResult:
    merged_count: int = 0
    merged_entries: list[MergeGroup] = field(default_factory=list)


@dataclass
class BoostResult:
    boosted_count: int = 0
    boosted_entries: list[str] = field(default_factory=list)


@dataclass
class EvolutionChanges:
    updated: int = 0
    created: int = 0
    removed: int = 0
    merged: int = 0
    boosted: int = 0


@dataclass
class EvolutionResult:
    id: str = field(default_factory=_uuid)
    timestamp: datetime = field(default_factory=_now)
    changes: EvolutionChanges = field(default_factory=EvolutionChanges)
    patterns_learned: int = 0
    gaps_detected: list[str] = field(default_factory=list)
    cache_expired: int = 0


# ── Flat records ──

def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def entry_to_record(entry: MemoryEntry) -> dict[str, Any]:
    """Flatten an entry into a JSON-safe record (one level, scalars and lists)."""
    meta = entry.metadata
    return {
        "id": entry.id,
        "type": entry.type.value,
        "content": entry.content,
        "source": meta.source,
        "page_id": meta.page_id,
        "file_path": meta.file_path,
        "symbol_name": meta.symbol_name,
        "tags": list(meta.tags),
        "relevance": meta.relevance,
        "confidence": meta.confidence,
        "extra": dict(meta.extra),
        "embedding": list(entry.embedding) if entry.embedding is not None else None,
        "created_at": _iso(entry.created_at),
        "updated_at": _iso(entry.updated_at),
        "expires_at": _iso(entry.expires_at),
        "access_count": entry.access_count,
        "last_accessed_at": _iso(entry.last_accessed_at),
    }


def entry_from_record(data: dict[str, Any]) -> MemoryEntry:
    return MemoryEntry(
        id=data["id"],
        type=MemoryEntryType(data["type"]),
        content=data.get("content", ""),
        metadata=MemoryMetadata(
            source=data.get("source") or "unknown",
            page_id=data.get("page_id"),
            file_path=data.get("file_path"),
            symbol_name=data.get("symbol_name"),
            tags=list(data.get("tags") or []),
            relevance=data.get("relevance", 1.0),
            confidence=data.get("confidence", 1.0),
            extra=dict(data.get("extra") or {}),
        ),
        embedding=data.get("embedding"),
        created_at=_parse(data.get("created_at")) or _now(),
        updated_at=_parse(data.get("updated_at")) or _now(),
        expires_at=_parse(data.get("expires_at")),
        access_count=int(data.get("access_count", 0)),
        last_accessed_at=_parse(data.get("last_accessed_at")),
    )


def interaction_to_record(record: InteractionRecord) -> dict[str, Any]:
    meta = record.metadata
    snapshot = record.context_snapshot
    return {
        "id": record.id,
        "type": record.type.value,
        "timestamp": _iso(record.timestamp),
        "input": record.input,
        "output": record.output,
        "session_id": record.session_id,
        "success": meta.success,
        "model": meta.model,
        "tokens_used": meta.tokens_used,
        "tool_name": meta.tool_name,
        "tool_args": meta.tool_args,
        "files_affected": meta.files_affected,
        "lines_generated": meta.lines_generated,
        "duration": meta.duration,
        "extra": dict(meta.extra),
        "relevant_files": snapshot.relevant_files if snapshot else None,
        "relevant_symbols": snapshot.relevant_symbols if snapshot else None,
        "wiki_context": snapshot.wiki_context if snapshot else None,
    }


def interaction_from_record(data: dict[str, Any]) -> InteractionRecord:
    snapshot = None
    if any(data.get(k) is not None for k in ("relevant_files", "relevant_symbols", "wiki_context")):
        snapshot = ContextSnapshot(
            relevant_files=data.get("relevant_files"),
            relevant_symbols=data.get("relevant_symbols"),
            wiki_context=data.get("wiki_context"),
        )
    return InteractionRecord(
        id=data["id"],
        type=InteractionType(data["type"]),
        timestamp=_parse(data.get("timestamp")) or _now(),
        input=data.get("input", ""),
        output=data.get("output", ""),
        session_id=data.get("session_id"),
        metadata=InteractionMetadata(
            success=bool(data.get("success", True)),
            model=data.get("model"),
            tokens_used=data.get("tokens_used"),
            tool_name=data.get("tool_name"),
            tool_args=data.get("tool_args"),
            files_affected=data.get("files_affected"),
            lines_generated=data.get("lines_generated"),
            duration=data.get("duration"),
            extra=dict(data.get("extra") or {}),
        ),
        context_snapshot=snapshot,
    )
