"""
Cosine-similarity ranking over chunk embeddings.

Every candidate is scored (a full linear scan).  A replacement index must
keep the ``search`` signature and ordering.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

import numpy as np

from .models import ContentChunk, SimilarityResult

logger = logging.getLogger(__name__)


def _as_vector(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=np.float64).ravel()


def _score(query: np.ndarray, query_norm: float, candidate: Sequence[float]) -> tuple[float, bool]:
    """Return ``(score, valid)``; invalid vectors score 0.0."""
    vec = _as_vector(candidate)
    if vec.size == 0 or vec.shape != query.shape:
        return 0.0, False
    norm = float(np.linalg.norm(vec))
    if norm == 0.0 or query_norm == 0.0:
        return 0.0, False
    value = float(np.dot(query, vec) / (query_norm * norm))
    if not np.isfinite(value):
        return 0.0, False
    return float(np.clip(value, -1.0, 1.0)), True


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of *a* and *b* in [-1, 1].

    Empty, zero-norm and dimension-mismatched inputs score 0.0 rather than
    raising.
    """
    query = _as_vector(a)
    if query.size == 0:
        return 0.0
    score, _ = _score(query, float(np.linalg.norm(query)), b)
    return score


class SimilarityIndex:
    """Rank chunks against a query vector by cosine similarity."""

    def search(
        self,
        query_vector: Sequence[float],
        candidates: Iterable[ContentChunk],
        limit: int = 10,
        type_filter: str | None = None,
        min_score: float | None = None,
    ) -> list[SimilarityResult]:
        """
        Return up to *limit* results, best first.

        Ordering is by descending score, then by most recent ``created_at``.
        Chunks without an embedding are skipped; chunks whose embedding is
        zero or of the wrong dimension score 0.0 and sort after every valid
        candidate.
        """
        if limit <= 0:
            return []

        query = _as_vector(query_vector)
        query_norm = float(np.linalg.norm(query)) if query.size else 0.0

        scored: list[tuple[bool, float, float, ContentChunk]] = []
        skipped = 0
        for chunk in candidates:
            if type_filter is not None and chunk.content_type != type_filter:
                continue
            if chunk.embedding is None:
                skipped += 1
                continue
            score, valid = _score(query, query_norm, chunk.embedding)
            if min_score is not None and score < min_score:
                continue
            scored.append((valid, score, chunk.created_at.timestamp(), chunk))

        if skipped:
            logger.debug("Skipped %d chunk(s) without embeddings", skipped)

        scored.sort(key=lambda item: (item[0], item[1], item[2]), reverse=True)
        return [
            SimilarityResult(
                chunk_id=chunk.id,
                parent_id=chunk.parent_id,
                score=score,
                text=chunk.text,
            )
            for _, score, _, chunk in scored[:limit]
        ]
