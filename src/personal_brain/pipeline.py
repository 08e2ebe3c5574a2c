"""
ContentProcessingPipeline: chunk, embed and store content; search it back.

This is the main entry-point for applications that want semantic search
over notes and profiles.

Usage example::

    from personal_brain import ContentProcessingPipeline

    pipeline = ContentProcessingPipeline(store, orchestrator)
    pipeline.process_content("note-42", note_text)

    for result in pipeline.search("What did I write about sourdough?"):
        print(result.parent_id, result.score)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

import numpy as np

from .chunking import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, prepare_text, split_text
from .config import ChunkingConfig
from .embeddings import EmbeddingOrchestrator
from .errors import ValidationError
from .models import ContentChunk, ProcessResult, SearchOptions, SimilarityResult
from .similarity import SimilarityIndex
from .store import ChunkStore

logger = logging.getLogger(__name__)


class ContentProcessingPipeline:
    """
    Drives chunking → embedding → storage for content entities.

    Regenerations of the same parent are serialized by a per-parent lock;
    different parents never wait on each other.

    Parameters
    ----------
    store:
        Where chunk sets are persisted.
    orchestrator:
        Embeds chunk and query text.
    chunking:
        Chunk size and overlap; defaults to 1000 / 200 characters.
    index:
        Ranks candidates; a ``SimilarityIndex`` full scan by default.
    """

    def __init__(
        self,
        store: ChunkStore,
        orchestrator: EmbeddingOrchestrator,
        chunking: ChunkingConfig | None = None,
        index: SimilarityIndex | None = None,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.chunking = chunking or ChunkingConfig(
            max_chunk_size=DEFAULT_CHUNK_SIZE, overlap=DEFAULT_CHUNK_OVERLAP
        )
        self.index = index or SimilarityIndex()
        self._parent_locks: dict[str, _ParentLock] = {}
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process_content(
        self,
        parent_id: str,
        raw_text: str,
        content_type: str = "note",
    ) -> ProcessResult:
        """
        Regenerate the chunk set of *parent_id* from *raw_text*.

        The previous chunk set is replaced as a whole.  Chunk text is
        whitespace-normalised for embedding but stored as written.  Chunks whose
        embedding could not be produced are still stored (without a vector)
        and are simply invisible to search until the content is processed
        again.
        """
        _check_parent_id(parent_id)
        pieces = split_text(raw_text, self.chunking.max_chunk_size, self.chunking.overlap)

        with self._parent_lock(parent_id):
            results = self.orchestrator.embed_batch([prepare_text(p) for p in pieces])
            chunks = [
                ContentChunk(
                    parent_id=parent_id,
                    index=i,
                    text=piece,
                    embedding=result.vector,
                    content_type=content_type,
                )
                for i, (piece, result) in enumerate(zip(pieces, results))
            ]
            self.store.replace_chunks(parent_id, chunks)

        embedded = sum(1 for c in chunks if c.embedding is not None)
        failed = len(chunks) - embedded
        if failed:
            logger.warning(
                "Stored %d chunk(s) for %s without embeddings", failed, parent_id
            )
        logger.info("Processed %s into %d chunk(s)", parent_id, len(chunks))
        return ProcessResult(
            parent_id=parent_id,
            chunk_ids=tuple(c.id for c in chunks),
            embedded=embedded,
            failed=failed,
        )

    def delete_content(self, parent_id: str) -> int:
        """Remove every chunk of *parent_id*; returns the number removed."""
        _check_parent_id(parent_id)
        with self._parent_lock(parent_id):
            return self.store.delete_chunks(parent_id)

    def search(
        self, query_text: str, options: SearchOptions | None = None
    ) -> list[SimilarityResult]:
        """
        Return the chunks most similar to *query_text*, best first.

        If the query itself cannot be embedded the search degrades to an
        empty result rather than raising.
        """
        options = options or SearchOptions()
        if not query_text or not query_text.strip():
            raise ValidationError("search query must not be empty")

        query = self.orchestrator.embed(prepare_text(query_text))
        if not query.ok:
            logger.warning("Search degraded: query could not be embedded (%s)", query.error)
            return []

        return self.index.search(
            query.vector,
            self._candidates(options),
            limit=options.limit,
            type_filter=options.type_filter,
            min_score=options.min_score,
        )

    def find_related(self, parent_id: str, limit: int = 5) -> list[SimilarityResult]:
        """
        Find chunks of *other* parents related to *parent_id*.

        The parent is represented by the mean of its chunk embeddings.
        Returns ``[]`` when the parent has no embedded chunks.
        """
        _check_parent_id(parent_id)
        vectors = [c.embedding for c in self.store.get_chunks(parent_id).chunks if c.embedding]
        if not vectors:
            logger.debug("No embedded chunks for %s; nothing to relate", parent_id)
            return []

        centroid = np.mean(np.asarray(vectors, dtype=np.float64), axis=0)
        others = (c for c in self.store.all_chunks() if c.parent_id != parent_id)
        return self.index.search(centroid.tolist(), others, limit=limit)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _candidates(self, options: SearchOptions) -> Iterator[ContentChunk]:
        if options.parent_ids is None:
            yield from self.store.all_chunks()
            return
        for parent_id in options.parent_ids:
            yield from self.store.get_chunks(parent_id).chunks

    @contextmanager
    def _parent_lock(self, parent_id: str) -> Iterator[None]:
        """Hold the lock of *parent_id*; the entry is dropped once nobody uses it."""
        with self._registry_lock:
            entry = self._parent_locks.get(parent_id)
            if entry is None:
                entry = self._parent_locks[parent_id] = _ParentLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._registry_lock:
                entry.users -= 1
                if entry.users == 0:
                    del self._parent_locks[parent_id]


class _ParentLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


def _check_parent_id(parent_id: str) -> None:
    if not parent_id or not parent_id.strip():
        raise ValidationError("parent_id must not be empty")
