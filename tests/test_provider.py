"""Tests for the litellm / sentence-transformers provider."""

import asyncio
import threading
from types import SimpleNamespace

import litellm
import pytest

from code_memory.config import MEMORY_CONFIG
from code_memory.core.context import ContextAssembler
from code_memory.core.entry_store import EntryStore
from code_memory.core.knowledge_cache import KnowledgeCache
from code_memory.embeddings import text_embedder
from code_memory.embeddings.text_embedder import TextEmbedder
from code_memory.llm.base import ProviderUnavailableError
from code_memory.llm.provider import LiteLLMProvider, build_default_provider
from code_memory.models import MemoryEntryType

T = MemoryEntryType


class FakeEmbedder:
    def __init__(self, vector=None, release: threading.Event | None = None) -> None:
        self.vector = vector or [0.5, 0.5]
        self.release = release
        self.texts: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.texts.append(text)
        if self.release is not None:
            self.release.wait(timeout=2)
        return self.vector


class FakeModel:
    loaded: list[str] = []

    def __init__(self, name: str) -> None:
        FakeModel.loaded.append(name)

    def encode(self, text, convert_to_numpy=True):
        return SimpleNamespace(tolist=lambda: [float(len(text)), 1.0])

    def get_sentence_embedding_dimension(self) -> int:
        return 2


def _completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def _patch_acompletion(monkeypatch, reply="litellm summary", delay=0.0):
    calls = []

    async def fake_acompletion(**kwargs):
        calls.append(kwargs)
        if delay:
            await asyncio.sleep(delay)
        return _completion(reply)

    monkeypatch.setattr(litellm, "acompletion", fake_acompletion)
    return calls


# ── Embeddings ──

@pytest.mark.asyncio
async def test_embedding_runs_through_embedder():
    embedder = FakeEmbedder([0.1, 0.2])
    provider = LiteLLMProvider(embedder=embedder)

    assert await provider.create_embedding("auth flow") == [0.1, 0.2]
    assert embedder.texts == ["auth flow"]


@pytest.mark.asyncio
async def test_embedding_without_embedder_is_unavailable():
    with pytest.raises(ProviderUnavailableError):
        await LiteLLMProvider().create_embedding("anything")


@pytest.mark.asyncio
async def test_slow_embedding_times_out():
    release = threading.Event()
    provider = LiteLLMProvider(embedder=FakeEmbedder(release=release), timeout=0.05)
    try:
        with pytest.raises(asyncio.TimeoutError):
            await provider.create_embedding("slow")
    finally:
        release.set()


@pytest.mark.asyncio
async def test_store_degrades_when_embedding_times_out():
    release = threading.Event()
    provider = LiteLLMProvider(embedder=FakeEmbedder(release=release), timeout=0.05)
    store = EntryStore(provider=provider, enable_embeddings=True)
    try:
        entry = await store.store(T.CODE, "stored without a vector")
    finally:
        release.set()

    assert entry.embedding is None
    assert store.get_by_id(entry.id) is entry


# ── Completions ──

@pytest.mark.asyncio
async def test_complete_calls_litellm(monkeypatch):
    calls = _patch_acompletion(monkeypatch)
    provider = LiteLLMProvider(model="test-model", timeout=5)
    messages = [{"role": "user", "content": "hi"}]

    assert await provider.complete(messages) == "litellm summary"
    [call] = calls
    assert call["model"] == "test-model"
    assert call["messages"] == messages
    assert call["timeout"] == 5


@pytest.mark.asyncio
async def test_empty_completion_content_becomes_empty_string(monkeypatch):
    _patch_acompletion(monkeypatch, reply=None)
    assert await LiteLLMProvider().complete([{"role": "user", "content": "hi"}]) == ""


@pytest.mark.asyncio
async def test_disabled_completions_are_unavailable(monkeypatch):
    calls = _patch_acompletion(monkeypatch)
    with pytest.raises(ProviderUnavailableError):
        await LiteLLMProvider(enable_completions=False).complete([])
    assert calls == []


@pytest.mark.asyncio
async def test_slow_completion_falls_back_to_extractive_summary(monkeypatch):
    _patch_acompletion(monkeypatch, delay=1.0)
    provider = LiteLLMProvider(timeout=0.05)
    with pytest.raises(asyncio.TimeoutError):
        await provider.complete([{"role": "user", "content": "hi"}])

    assembler = ContextAssembler(EntryStore(), KnowledgeCache(), provider=provider)
    await assembler.store.store(T.API, "login endpoint returns a session token")
    context = await assembler.provide_context("login session")

    assert context.summary == "- login endpoint returns a session token"


@pytest.mark.asyncio
async def test_context_summary_through_litellm(monkeypatch):
    _patch_acompletion(monkeypatch, reply="the login endpoint issues tokens")
    assembler = ContextAssembler(EntryStore(), KnowledgeCache(), provider=LiteLLMProvider())
    await assembler.store.store(T.API, "login endpoint returns a session token")

    context = await assembler.provide_context("login session")

    assert context.summary == "the login endpoint issues tokens"


# ── Text embedder ──

def test_text_embedder_loads_lazily(monkeypatch):
    monkeypatch.setattr(text_embedder, "SentenceTransformer", FakeModel)
    FakeModel.loaded = []
    embedder = TextEmbedder(model_name="tiny-model")

    assert FakeModel.loaded == []
    assert embedder.embed("abcd") == [4.0, 1.0]
    assert embedder.dimension == 2
    assert FakeModel.loaded == ["tiny-model"]


def test_default_provider_has_unloaded_embedder(monkeypatch):
    monkeypatch.setattr(text_embedder, "SentenceTransformer", FakeModel)
    FakeModel.loaded = []

    provider = build_default_provider()

    assert isinstance(provider.embedder, TextEmbedder)
    assert provider.embedder._model is None
    assert FakeModel.loaded == []


def test_default_provider_without_embeddings(monkeypatch):
    monkeypatch.setitem(MEMORY_CONFIG, "enable_embeddings", False)
    assert build_default_provider().embedder is None
