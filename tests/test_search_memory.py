"""Tests for the search_memory agent tool."""

import pytest

from code_memory.core.context import hash_query
from code_memory.core.entry_store import EntryStore
from code_memory.core.knowledge_cache import KnowledgeCache
from code_memory.models import MemoryEntryType
from code_memory.tools.search_memory import NO_RESULTS_SUMMARY, SearchMemoryTool

T = MemoryEntryType


def _tool() -> SearchMemoryTool:
    return SearchMemoryTool(EntryStore(), KnowledgeCache())


def test_tool_schema():
    tool = _tool()
    assert tool.name == "search_memory"
    assert tool.parameters["required"] == ["query"]
    assert "architecture" in tool.parameters["properties"]["type"]["enum"]


@pytest.mark.parametrize("params", [
    {},
    {"query": "   "},
    {"query": "auth", "type": "nonsense"},
    {"query": "auth", "limit": 0},
    {"query": "auth", "limit": "5"},
])
@pytest.mark.asyncio
async def test_invalid_params(params):
    result = await _tool().execute(params)
    assert result["success"] is False
    assert result["error"].startswith("Parameter validation failed")


@pytest.mark.asyncio
async def test_search_returns_entries_and_caches_summary():
    tool = _tool()
    await tool.store.store_knowledge("auth module issues tokens", T.ARCHITECTURE, relevance=0.8)

    result = await tool.execute({"query": "auth tokens"})

    assert result["success"] is True
    data = result["data"]
    assert data["from_cache"] is False
    assert len(data["entries"]) == 1
    assert data["summary"] == (
        "Found 1 relevant items:\n\n1. [Architecture] auth module issues tokens"
    )
    assert data["relevance_score"] == pytest.approx(0.8)
    assert data["total_tokens"] == 7

    cached = tool.cache.get(f"search:all:5:{hash_query('auth tokens')}")
    assert cached.metadata.source == "search-memory-tool"
    assert cached.metadata.tags == ["search-result", "summary"]


@pytest.mark.asyncio
async def test_second_search_is_served_from_cache():
    tool = _tool()
    await tool.store.store_knowledge("auth module issues tokens", T.ARCHITECTURE)
    first = await tool.execute({"query": "auth tokens"})

    second = await tool.execute({"query": "auth tokens"})

    assert second["data"]["from_cache"] is True
    assert second["data"]["summary"] == first["data"]["summary"]


@pytest.mark.asyncio
async def test_type_filter_and_limit():
    tool = _tool()
    for i in range(3):
        await tool.store.store_knowledge(f"cache api {i}", T.API)
    await tool.store.store_knowledge("cache code", T.CODE)

    result = await tool.execute({"query": "cache", "type": "api", "limit": 2})

    entries = result["data"]["entries"]
    assert len(entries) == 2
    assert all(e.type == T.API for e in entries)
    assert tool.cache.get(f"search:api:2:{hash_query('cache')}") is not None


@pytest.mark.asyncio
async def test_empty_store_is_not_cached():
    tool = _tool()
    result = await tool.execute({"query": "anything"})

    assert result["success"] is True
    assert result["data"]["entries"] == []
    assert result["data"]["summary"] == NO_RESULTS_SUMMARY
    assert len(tool.cache) == 0


@pytest.mark.asyncio
async def test_long_entries_are_truncated_in_summary():
    tool = _tool()
    await tool.store.store_knowledge("retry " + "z" * 300, T.PATTERN)

    result = await tool.execute({"query": "retry"})

    assert result["data"]["summary"].endswith("z" * 194 + "...")


@pytest.mark.asyncio
async def test_enrich_prompt_delegates_to_assembler():
    tool = _tool()
    await tool.store.store_knowledge("the billing module exports invoices", T.MODULE)

    prompt = await tool.enrich_prompt("billing invoices")

    assert prompt.startswith("## Relevant Context")
    assert prompt.endswith("## Task\n\nbilling invoices")
