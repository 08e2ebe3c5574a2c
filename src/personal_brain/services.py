"""Wiring of the pipeline and memory registry from a ``BrainConfig``."""

from __future__ import annotations

import logging

from .config import BrainConfig, load_config
from .embeddings import EmbeddingCache, EmbeddingOrchestrator, SentenceTransformerProvider
from .memory import MemoryRegistry
from .pipeline import ContentProcessingPipeline
from .retry import RetryPolicy
from .store import ChromaChunkStore, JsonConversationStore
from .summarizer import ExtractiveSummarizer, Summarizer

logger = logging.getLogger(__name__)


class BrainServices:
    """The two produced interfaces, built once and passed to front ends."""

    def __init__(self, pipeline: ContentProcessingPipeline, memory: MemoryRegistry) -> None:
        self.pipeline = pipeline
        self.memory = memory

    @classmethod
    def from_config(
        cls,
        config: BrainConfig | None = None,
        summarizer: Summarizer | None = None,
    ) -> BrainServices:
        """
        Build services backed by ChromaDB, local sentence-transformers and
        JSON conversation files.

        Without an explicit *summarizer* the offline ``ExtractiveSummarizer``
        is used.
        """
        config = config or load_config()
        retry_policy = RetryPolicy.from_config(config.retry)

        provider = SentenceTransformerProvider(config.embedding.model_name)
        orchestrator = EmbeddingOrchestrator(
            provider,
            retry_policy=retry_policy,
            cache=EmbeddingCache(config.embedding.cache_size),
        )
        chunk_store = ChromaChunkStore(
            path=config.storage.db_path,
            collection_name=config.storage.collection_name,
            dimension=config.embedding.dimension,
        )
        pipeline = ContentProcessingPipeline(chunk_store, orchestrator, chunking=config.chunking)

        registry = MemoryRegistry(
            JsonConversationStore(config.storage.conversations_path),
            summarizer or ExtractiveSummarizer(),
            config=config.memory,
            retry_policy=retry_policy,
        )
        logger.debug("Built services with store at %s", config.storage.db_path)
        return cls(pipeline, registry)
