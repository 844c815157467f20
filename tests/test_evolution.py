"""Tests for knowledge evolution."""

from datetime import datetime, timedelta, timezone

import pytest

from code_memory.core.entry_store import EntryStore
from code_memory.core.evolution import (
    KnowledgeEvolution,
    extract_gap_keywords,
    jaccard_similarity,
)
from code_memory.core.interaction_log import InteractionLog
from code_memory.core.knowledge_cache import KnowledgeCache
from code_memory.models import (
    InteractionMetadata,
    InteractionType,
    MemoryEntry,
    MemoryEntryType,
    MemoryMetadata,
)

T = MemoryEntryType


def _engine(cache: KnowledgeCache | None = None) -> KnowledgeEvolution:
    return KnowledgeEvolution(EntryStore(), InteractionLog(), cache=cache)


def _age(entry: MemoryEntry, days: float) -> None:
    entry.updated_at = datetime.now(timezone.utc) - timedelta(days=days)


def test_jaccard_similarity():
    assert jaccard_similarity("a b c", "a b c") == 1.0
    assert jaccard_similarity("a b", "c d") == 0.0
    assert jaccard_similarity("A b", "a B c d") == pytest.approx(0.5)
    assert jaccard_similarity("", "") == 1.0


def test_extract_gap_keywords():
    assert extract_gap_keywords("how do we deploy the service?") == ["deploy", "service"]
    assert extract_gap_keywords("one two three four five six seven eight", limit=3) == [
        "three", "four", "five",
    ]


# ── update_knowledge ──

@pytest.mark.asyncio
async def test_update_knowledge_updates_best_match():
    engine = _engine()
    entry = await engine.store.store_knowledge(
        "Auth uses JWT tokens", T.ARCHITECTURE, tags=["auth"], confidence=0.95,
    )

    result = await engine.update_knowledge(
        "auth tokens", "Auth uses opaque session tokens", source="review", tags=["session"],
    )

    assert result.updated and not result.created
    updated = engine.store.get_by_id(entry.id)
    assert updated.content == "Auth uses opaque session tokens"
    assert updated.metadata.source == "review"
    assert updated.metadata.confidence == 1.0
    assert updated.metadata.tags == ["auth", "session"]
    assert engine.store.ids_for("tag", "session") == {entry.id}


@pytest.mark.asyncio
async def test_update_knowledge_creates_when_nothing_matches():
    engine = _engine()
    await engine.store.store_knowledge("Database schema", T.CODE)

    result = await engine.update_knowledge("frontend routing", "Routes live in app.tsx", source="scan")

    assert result.created and not result.updated
    assert result.entry.type == T.DOCUMENTATION
    assert result.entry.metadata.relevance == pytest.approx(0.8)
    assert result.entry.metadata.confidence == pytest.approx(0.7)
    assert len(engine.store) == 2


# ── cleanup ──

@pytest.mark.asyncio
async def test_cleanup_requires_all_three_conditions():
    engine = _engine()
    doomed = await engine.store.store_knowledge("old and weak", T.CODE, relevance=0.1)
    recent = await engine.store.store_knowledge("new and weak", T.CODE, relevance=0.1)
    strong = await engine.store.store_knowledge("old and strong", T.CODE, relevance=0.9)
    used = await engine.store.store_knowledge("old weak but used", T.CODE, relevance=0.1)
    for entry in (doomed, strong, used):
        _age(entry, 100)
    used.access_count = 3

    result = engine.cleanup_outdated(max_age_days=90, min_relevance=0.3, min_access_count=0)

    assert result.removed_entries == [doomed.id]
    assert {e.id for e in engine.store.list_entries()} == {recent.id, strong.id, used.id}


@pytest.mark.asyncio
async def test_cleanup_never_removes_mid_relevance():
    engine = _engine()
    entry = await engine.store.store_knowledge("kept", T.CODE, relevance=0.5)
    _age(entry, 365)

    assert engine.cleanup_outdated(max_age_days=60, min_relevance=0.2).removed_count == 0
    assert entry.id in engine.store


# ── consolidation ──

@pytest.mark.asyncio
async def test_consolidation_keeps_most_accessed():
    engine = _engine()
    store = engine.store
    text = "the deployment pipeline builds images and pushes them to the registry"
    low = await store.store(T.DOCUMENTATION, text + " nightly")
    high = await store.store(T.DOCUMENTATION, text)
    store.update(low.id, access_count=2)
    store.update(high.id, access_count=5)

    result = engine.consolidate_knowledge()

    assert result.merged_count == 1
    assert result.merged_entries[0].kept == high.id
    assert result.merged_entries[0].removed == [low.id]
    assert [e.id for e in store.list_entries()] == [high.id]


@pytest.mark.asyncio
async def test_consolidation_ignores_other_types():
    engine = _engine()
    text = "shared content about the build system"
    await engine.store.store(T.DOCUMENTATION, text)
    await engine.store.store(T.CODE, text)

    assert engine.consolidate_knowledge().merged_count == 0
    assert len(engine.store) == 2


@pytest.mark.asyncio
async def test_consolidation_is_idempotent():
    engine = _engine()
    for _ in range(3):
        await engine.store.store(T.PATTERN, "retry with exponential backoff on failure")
    await engine.store.store(T.PATTERN, "something completely different")

    first = engine.consolidate_knowledge()
    second = engine.consolidate_knowledge()

    assert first.merged_count == 2
    assert second.merged_count == 0
    assert len(engine.store) == 2


# ── boosting ──

@pytest.mark.asyncio
async def test_boost_relevance_caps_at_one():
    engine = _engine()
    busy = await engine.store.store_knowledge("busy", T.API, relevance=0.95)
    quiet = await engine.store.store_knowledge("quiet", T.API, relevance=0.5)
    engine.store.update(busy.id, access_count=12)

    result = engine.boost_relevance(min_access_count=10, boost_factor=1.1)

    assert result.boosted_entries == [busy.id]
    assert engine.store.get_by_id(busy.id).metadata.relevance == 1.0
    assert engine.store.get_by_id(quiet.id).metadata.relevance == 0.5


# ── learning and gaps ──

@pytest.mark.asyncio
async def test_learn_from_interactions():
    engine = _engine()
    for _ in range(11):
        engine.interactions.record(
            InteractionType.TOOL_CALL, "grep", "ok", InteractionMetadata(tool_name="grep"),
        )
    for _ in range(10):
        engine.interactions.record(
            InteractionType.TOOL_CALL, "read", "ok", InteractionMetadata(tool_name="read_file"),
        )

    assert await engine.learn_from_interactions() == 1
    [pattern] = engine.store.list_entries()
    assert pattern.type == T.PATTERN
    assert pattern.content == "Frequently used tool: grep (11 times)"
    assert pattern.metadata.source == "interaction-analysis"
    assert pattern.metadata.tags == ["tool-usage", "pattern"]


def test_detect_knowledge_gaps():
    engine = _engine()
    engine.interactions.record(
        InteractionType.QUERY,
        "how do we deploy the service",
        "I do not have information about deployment",
        InteractionMetadata(success=False),
    )

    gaps = engine.detect_knowledge_gaps()

    assert len(gaps) == 1
    assert "deploy" in gaps[0]
    assert "service" in gaps[0]


def test_gaps_ignore_successes_and_other_failures():
    engine = _engine()
    engine.interactions.record(
        InteractionType.QUERY, "deploy service", "I do not have that", InteractionMetadata(success=True),
    )
    engine.interactions.record(
        InteractionType.QUERY, "deploy service", "timeout", InteractionMetadata(success=False),
    )
    assert engine.detect_knowledge_gaps() == []


def test_gaps_are_deduplicated():
    engine = _engine()
    for _ in range(3):
        engine.interactions.record(
            InteractionType.QUERY, "billing export", "Not found", InteractionMetadata(success=False),
        )
    assert engine.detect_knowledge_gaps() == ["Missing knowledge about: billing, export"]


# ── evolve ──

@pytest.mark.asyncio
async def test_evolve_runs_full_cycle():
    cache = KnowledgeCache()
    engine = _engine(cache=cache)
    store = engine.store

    stale = await store.store_knowledge("stale weak note", T.CODE, relevance=0.1)
    _age(stale, 70)
    await store.store(T.DOCUMENTATION, "duplicate text about logging setup")
    await store.store(T.DOCUMENTATION, "duplicate text about logging setup")
    popular = await store.store_knowledge("popular api", T.API, relevance=0.5)
    store.update(popular.id, access_count=20)
    for _ in range(11):
        engine.interactions.record(
            InteractionType.TOOL_CALL, "x", "ok", InteractionMetadata(tool_name="search_memory"),
        )
    engine.interactions.record(
        InteractionType.QUERY, "billing export", "no information", InteractionMetadata(success=False),
    )
    cache.cache("old", MemoryEntry(type=T.CODE, content="x"), ttl=0)

    result = await engine.evolve()

    assert result.changes.removed == 1
    assert result.changes.merged == 1
    assert result.changes.boosted == 1
    assert result.changes.created == 1
    assert result.patterns_learned == 1
    assert result.gaps_detected == ["Missing knowledge about: billing, export"]
    assert result.cache_expired == 1
    assert stale.id not in store
    assert store.get_by_id(popular.id).metadata.relevance == pytest.approx(0.55)
