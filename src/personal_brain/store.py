"""
Persistence collaborators: a chunk store backed by ChromaDB and
conversation stores for tiered history.

The memory and retrieval layers only depend on the ``ChunkStore`` and
``ConversationStore`` protocols; the classes here are the implementations
shipped with the package.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import chromadb

from .errors import ConsistencyError
from .models import ChunkSet, ContentChunk, TieredHistory

logger = logging.getLogger(__name__)


class ChunkStore(Protocol):
    def replace_chunks(self, parent_id: str, chunks: list[ContentChunk]) -> None: ...

    def get_chunks(self, parent_id: str) -> ChunkSet: ...

    def all_chunks(self) -> list[ContentChunk]: ...

    def delete_chunks(self, parent_id: str) -> int: ...

    def count(self) -> int: ...


class ConversationStore(Protocol):
    def load(self, conversation_id: str) -> TieredHistory: ...

    def save(self, history: TieredHistory) -> None: ...


# ---------------------------------------------------------------------------
# Chunks
# ---------------------------------------------------------------------------


class ChromaChunkStore:
    """
    Chunk store backed by a ChromaDB collection.

    Similarity ranking is done by ``SimilarityIndex`` over the stored
    vectors, so the collection is only used as durable storage.  ChromaDB
    requires a vector on every record, so chunks whose embedding failed are
    written with a zero vector and ``has_embedding=False`` and are read back
    with ``embedding=None``.

    Replacing a parent's chunk set and reading chunks take the same lock, so
    a reader never sees a half-replaced set.
    """

    def __init__(
        self,
        path: str = "./chroma_db",
        collection_name: str = "chunks",
        dimension: int = 384,
        _client: chromadb.ClientAPI | None = None,
    ) -> None:
        self.client = _client or chromadb.PersistentClient(path=path)
        self.dimension = dimension
        self.collection = self.client.get_or_create_collection(
            name=collection_name,
            embedding_function=None,
            metadata={"hnsw:space": "cosine"},
        )
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def replace_chunks(self, parent_id: str, chunks: list[ContentChunk]) -> None:
        """Atomically swap the chunk set of *parent_id* for *chunks*."""
        chunk_set = ChunkSet(parent_id=parent_id, chunks=tuple(chunks))
        chunk_set.verify()
        embeddings = [self._stored_vector(chunk) for chunk in chunks]

        new_ids = [c.id for c in chunks]
        with self._lock:
            existing = self.collection.get(where={"parent_id": parent_id}, include=[])
            # New set first: a failed write must leave the previous set intact.
            if chunks:
                self.collection.upsert(
                    ids=new_ids,
                    documents=[c.text for c in chunks],
                    embeddings=embeddings,
                    metadatas=[self._metadata(c) for c in chunks],
                )
            keep = set(new_ids)
            stale = [i for i in existing.get("ids") or [] if i not in keep]
            if stale:
                self.collection.delete(ids=stale)
        logger.debug("Stored %d chunk(s) for %s", len(chunks), parent_id)

    def delete_chunks(self, parent_id: str) -> int:
        """Delete every chunk of *parent_id*; returns how many were removed."""
        with self._lock:
            existing = self.collection.get(where={"parent_id": parent_id}, include=[])
            ids = existing.get("ids") or []
            if ids:
                self.collection.delete(ids=ids)
        return len(ids)

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get_chunks(self, parent_id: str) -> ChunkSet:
        with self._lock:
            result = self.collection.get(
                where={"parent_id": parent_id},
                include=["documents", "metadatas", "embeddings"],
            )
        chunks = sorted(self._to_chunks(result), key=lambda c: c.index)
        return ChunkSet(parent_id=parent_id, chunks=tuple(chunks))

    def all_chunks(self) -> list[ContentChunk]:
        with self._lock:
            result = self.collection.get(include=["documents", "metadatas", "embeddings"])
        return sorted(self._to_chunks(result), key=lambda c: (c.parent_id, c.index))

    def count(self) -> int:
        """Return the total number of stored chunks."""
        return self.collection.count()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _stored_vector(self, chunk: ContentChunk) -> list[float]:
        if chunk.embedding is None:
            return [0.0] * self.dimension
        if len(chunk.embedding) != self.dimension:
            raise ConsistencyError(
                f"chunk {chunk.id} has a {len(chunk.embedding)}-d embedding, "
                f"store expects {self.dimension}"
            )
        return list(chunk.embedding)

    @staticmethod
    def _metadata(chunk: ContentChunk) -> dict[str, Any]:
        return {
            "parent_id": chunk.parent_id,
            "index": chunk.index,
            "created_at": chunk.created_at.isoformat(),
            "content_type": chunk.content_type,
            "has_embedding": chunk.embedding is not None,
        }

    @staticmethod
    def _to_chunks(result: dict) -> list[ContentChunk]:
        ids = result.get("ids") or []
        docs = result.get("documents") or [""] * len(ids)
        metas = result.get("metadatas") or [{}] * len(ids)
        # Newer ChromaDB releases return a numpy array here; avoid truthiness.
        embeddings = result.get("embeddings")
        if embeddings is None:
            embeddings = [None] * len(ids)

        chunks = []
        for i, chunk_id in enumerate(ids):
            meta = metas[i] or {}
            vector = embeddings[i]
            has_embedding = bool(meta.get("has_embedding")) and vector is not None
            chunks.append(
                ContentChunk(
                    id=chunk_id,
                    parent_id=meta["parent_id"],
                    index=int(meta["index"]),
                    text=docs[i] or "",
                    embedding=tuple(float(x) for x in vector) if has_embedding else None,
                    created_at=datetime.fromisoformat(meta["created_at"]),
                    content_type=meta.get("content_type", "note"),
                )
            )
        return chunks


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


class InMemoryConversationStore:
    """Conversation store that keeps snapshots in a dict; for tests and the MCP server."""

    def __init__(self) -> None:
        self._histories: dict[str, TieredHistory] = {}
        self._lock = threading.Lock()

    def load(self, conversation_id: str) -> TieredHistory:
        with self._lock:
            return self._histories.get(
                conversation_id, TieredHistory(conversation_id=conversation_id)
            )

    def save(self, history: TieredHistory) -> None:
        # Snapshots are frozen, so storing the object itself is safe.
        with self._lock:
            self._histories[history.conversation_id] = history

    def conversation_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._histories)


class JsonConversationStore:
    """
    One JSON document per conversation under *directory*.

    Writes go to a temporary file that is then renamed over the old one, so
    a crash mid-write leaves the previous snapshot intact.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, conversation_id: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in conversation_id)
        return self.directory / f"{safe}.json"

    def load(self, conversation_id: str) -> TieredHistory:
        path = self._path(conversation_id)
        with self._lock:
            if not path.exists():
                return TieredHistory(conversation_id=conversation_id)
            return TieredHistory.model_validate_json(path.read_text(encoding="utf-8"))

    def save(self, history: TieredHistory) -> None:
        path = self._path(history.conversation_id)
        tmp = path.with_suffix(".json.tmp")
        with self._lock:
            tmp.write_text(history.model_dump_json(indent=2), encoding="utf-8")
            tmp.replace(path)
