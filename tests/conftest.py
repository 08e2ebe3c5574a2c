"""
Shared pytest fixtures for personal-brain tests.

Uses ChromaDB in ephemeral (in-memory) mode, a deterministic fake
embedding provider and scripted summarizers so that tests run fast
without downloading any ML models or calling an LLM.
"""

from __future__ import annotations

import hashlib
import uuid

import chromadb
import pytest

from personal_brain.config import ChunkingConfig, MemoryConfig
from personal_brain.embeddings import EmbeddingOrchestrator
from personal_brain.errors import TransientProviderError
from personal_brain.memory import MemoryRegistry, TieredMemoryManager
from personal_brain.pipeline import ContentProcessingPipeline
from personal_brain.retry import RetryPolicy
from personal_brain.services import BrainServices
from personal_brain.store import ChromaChunkStore, InMemoryConversationStore

FAKE_DIMENSION = 16


class FakeEmbeddingProvider:
    """
    Deterministic provider that maps text to a unit vector derived from its
    MD5 hash.  Fast and reproducible – no model download.  Texts listed in
    *failing* always raise ``TransientProviderError``.
    """

    model_name = "fake-md5-embedding"

    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if text in self.failing:
            raise TransientProviderError("rate limited")
        digest = hashlib.md5(text.encode()).digest()
        # 16-byte digest → 16-dim float vector in [-1, 1]
        vec = [(b - 128) / 128.0 for b in digest]
        norm = sum(x * x for x in vec) ** 0.5 or 1.0
        return [x / norm for x in vec]


class ScriptedSummarizer:
    """
    Summarizer whose outcome per call is scripted.

    ``failures`` transient failures are raised before calls start to
    succeed; ``always_fail=True`` fails every call.
    """

    def __init__(self, failures: int = 0, always_fail: bool = False) -> None:
        self.failures = failures
        self.always_fail = always_fail
        self.calls: list[list[str]] = []

    def summarize(self, turns) -> str:
        self.calls.append([t.id for t in turns])
        if self.always_fail or self.failures > 0:
            self.failures -= 1
            raise TransientProviderError("summarizer timed out")
        return "Summary of " + ", ".join(t.text for t in turns)


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# A single shared EphemeralClient instance for the test session.
# Each fixture call creates a uniquely named collection so tests are isolated.
_EPHEMERAL_CLIENT = chromadb.EphemeralClient()


def make_chunk_store() -> ChromaChunkStore:
    return ChromaChunkStore(
        _client=_EPHEMERAL_CLIENT,
        collection_name=f"test_{uuid.uuid4().hex}",
        dimension=FAKE_DIMENSION,
    )


@pytest.fixture()
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
def retry_policy(sleeper: SleepRecorder) -> RetryPolicy:
    """Three attempts, no real sleeping, no helper-thread timeout."""
    return RetryPolicy(max_attempts=3, base_delay=0.1, factor=2.0, timeout=None, sleep=sleeper)


@pytest.fixture()
def provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture()
def orchestrator(provider: FakeEmbeddingProvider, retry_policy: RetryPolicy) -> EmbeddingOrchestrator:
    return EmbeddingOrchestrator(provider, retry_policy=retry_policy)


@pytest.fixture()
def chunk_store() -> ChromaChunkStore:
    """In-memory chunk store on a fresh collection."""
    return make_chunk_store()


@pytest.fixture()
def pipeline(
    chunk_store: ChromaChunkStore, orchestrator: EmbeddingOrchestrator
) -> ContentProcessingPipeline:
    return ContentProcessingPipeline(
        chunk_store,
        orchestrator,
        chunking=ChunkingConfig(max_chunk_size=200, overlap=40),
    )


@pytest.fixture()
def conversation_store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture()
def summarizer() -> ScriptedSummarizer:
    return ScriptedSummarizer()


@pytest.fixture()
def memory_config() -> MemoryConfig:
    return MemoryConfig(max_active_turns=5, min_block_size=2, max_active_tokens=10_000)


@pytest.fixture()
def manager(
    conversation_store: InMemoryConversationStore,
    summarizer: ScriptedSummarizer,
    memory_config: MemoryConfig,
    retry_policy: RetryPolicy,
) -> TieredMemoryManager:
    return TieredMemoryManager(
        "conv-1",
        store=conversation_store,
        summarizer=summarizer,
        config=memory_config,
        retry_policy=retry_policy,
    )


@pytest.fixture()
def registry(
    conversation_store: InMemoryConversationStore,
    summarizer: ScriptedSummarizer,
    memory_config: MemoryConfig,
    retry_policy: RetryPolicy,
) -> MemoryRegistry:
    return MemoryRegistry(
        conversation_store, summarizer, config=memory_config, retry_policy=retry_policy
    )


@pytest.fixture()
def services(pipeline: ContentProcessingPipeline, registry: MemoryRegistry) -> BrainServices:
    """Services wired to the in-memory fixtures instead of disk and models."""
    return BrainServices(pipeline, registry)
