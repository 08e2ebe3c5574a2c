"""
Embedding orchestration: caching, batching and retries around a provider.

The provider itself is an opaque external service.  The orchestrator makes
sure that identical chunk text is only embedded once, that every provider
call goes through the shared retry policy, and that one failing text never
sinks the rest of its batch.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from collections import OrderedDict
from typing import Any, Protocol, runtime_checkable

from chromadb.utils import embedding_functions

from .errors import TransientProviderError
from .models import EmbeddingResult
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "all-MiniLM-L6-v2"


@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Anything that turns one text into one vector.

    Implementations raise ``TransientProviderError`` for timeouts and rate
    limits so the orchestrator knows the call is worth retrying.
    """

    model_name: str

    def embed(self, text: str) -> list[float]: ...


def get_embedding_function(
    model_name: str = DEFAULT_MODEL,
) -> embedding_functions.SentenceTransformerEmbeddingFunction:
    """Return a sentence-transformer embedding function for ChromaDB."""
    return embedding_functions.SentenceTransformerEmbeddingFunction(
        model_name=model_name
    )


class SentenceTransformerProvider:
    """Local sentence-transformers model exposed as an ``EmbeddingProvider``."""

    def __init__(self, model_name: str = DEFAULT_MODEL, _function: Any | None = None) -> None:
        self.model_name = model_name
        self._function = _function or get_embedding_function(model_name)

    def embed(self, text: str) -> list[float]:
        try:
            vectors = self._function([text])
        except TimeoutError as exc:
            raise TransientProviderError(str(exc)) from exc
        return [float(x) for x in vectors[0]]


class EmbeddingCache:
    """
    Thread-safe LRU cache of vectors keyed by a hash of model + text.

    The model name is part of the key so switching models never serves a
    vector produced by the previous one.
    """

    def __init__(self, max_entries: int = 10_000) -> None:
        self.max_entries = max_entries
        self._entries: OrderedDict[str, tuple[float, ...]] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def key(model_name: str, text: str) -> str:
        return hashlib.sha256(f"{model_name}::{text}".encode()).hexdigest()

    def get(self, key: str) -> tuple[float, ...] | None:
        with self._lock:
            vector = self._entries.get(key)
            if vector is not None:
                self._entries.move_to_end(key)
            return vector

    def put(self, key: str, vector: tuple[float, ...]) -> None:
        if self.max_entries <= 0:
            return
        with self._lock:
            self._entries[key] = vector
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class EmbeddingOrchestrator:
    """
    Embed batches of texts with caching, retries and partial success.

    Parameters
    ----------
    provider:
        The external embedding provider.
    retry_policy:
        Shared bounded-retry policy applied to each provider call.
    cache:
        Vector cache; a fresh ``EmbeddingCache`` is created when omitted.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        retry_policy: RetryPolicy | None = None,
        cache: EmbeddingCache | None = None,
    ) -> None:
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.cache = cache if cache is not None else EmbeddingCache()

    @property
    def model_name(self) -> str:
        return getattr(self.provider, "model_name", type(self.provider).__name__)

    def embed(self, text: str) -> EmbeddingResult:
        """Embed a single text; see :meth:`embed_batch`."""
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        """
        Return one ``EmbeddingResult`` per input text, in input order.

        Identical texts are embedded once.  A text whose provider call keeps
        failing after all retries is returned with ``vector=None`` and an
        ``error`` message; the other texts are unaffected.
        """
        resolved: dict[str, EmbeddingResult] = {}
        for text in texts:
            if text in resolved:
                continue
            resolved[text] = self._embed_one(text)

        failed = sum(1 for r in resolved.values() if not r.ok)
        if failed:
            logger.warning(
                "Embedding batch finished with %d failure(s) out of %d distinct text(s)",
                failed,
                len(resolved),
            )
        return [resolved[text] for text in texts]

    def _embed_one(self, text: str) -> EmbeddingResult:
        if not text.strip():
            return EmbeddingResult(text=text, error="cannot embed empty text")

        key = EmbeddingCache.key(self.model_name, text)
        cached = self.cache.get(key)
        if cached is not None:
            return EmbeddingResult(text=text, vector=cached, cached=True)

        try:
            raw = self.retry_policy.call(self.provider.embed, text)
        except TransientProviderError as exc:
            logger.warning("Giving up on embedding %d chars of text: %s", len(text), exc)
            return EmbeddingResult(text=text, error=str(exc))
        except Exception as exc:
            logger.warning(
                "Provider failed on %d chars of text: %s", len(text), exc, exc_info=True
            )
            return EmbeddingResult(text=text, error=f"{type(exc).__name__}: {exc}")

        vector = tuple(float(x) for x in raw)
        if not vector:
            return EmbeddingResult(text=text, error="provider returned an empty vector")

        self.cache.put(key, vector)
        return EmbeddingResult(text=text, vector=vector)
