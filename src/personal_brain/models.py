"""Typed records shared across the memory and retrieval layers."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .errors import ConsistencyError

Role = Literal["user", "assistant", "system"]


def generate_id() -> str:
    """Return a new unique record ID."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Conversation memory
# ---------------------------------------------------------------------------


class ConversationTurn(_Record):
    """One role-tagged message within a conversation."""

    id: str = Field(default_factory=generate_id)
    role: Role = "user"
    text: str
    created_at: datetime = Field(default_factory=utc_now)
    # Filled in by the memory manager's token counter when left unset.
    token_count: int | None = Field(default=None, ge=0)


class ConversationSummary(_Record):
    """Condensed text standing in for a contiguous block of archived turns."""

    id: str = Field(default_factory=generate_id)
    turn_ids: tuple[str, ...]
    summary_text: str
    created_at: datetime = Field(default_factory=utc_now)
    token_count: int = Field(default=0, ge=0)


class TieredHistory(_Record):
    """Read-only snapshot of a conversation's active, summary and archived tiers."""

    conversation_id: str
    active_turns: tuple[ConversationTurn, ...] = ()
    summaries: tuple[ConversationSummary, ...] = ()
    archived_turns: tuple[ConversationTurn, ...] = ()

    @property
    def active_token_count(self) -> int:
        return sum(t.token_count or 0 for t in self.active_turns)

    def turn_ids(self) -> list[str]:
        """All turn IDs in conversation order (archived first, then active)."""
        return [t.id for t in self.archived_turns] + [t.id for t in self.active_turns]

    def verify(self) -> None:
        """
        Raise ``ConsistencyError`` unless the tier invariants hold:

        * a turn ID appears in exactly one of active / archived;
        * a turn is archived iff some summary covers it;
        * summaries cover ordered, non-overlapping, contiguous ranges.
        """
        ids = self.turn_ids()
        if len(ids) != len(set(ids)):
            raise ConsistencyError(
                f"conversation {self.conversation_id}: a turn is present in two tiers"
            )

        covered: list[str] = []
        for summary in self.summaries:
            if not summary.turn_ids:
                raise ConsistencyError(f"summary {summary.id} covers no turns")
            covered.extend(summary.turn_ids)

        if len(covered) != len(set(covered)):
            raise ConsistencyError(
                f"conversation {self.conversation_id}: overlapping summary ranges"
            )
        # Summaries are ordered and each covers a contiguous run, so their
        # concatenation must reproduce the archived tier exactly.
        if covered != [t.id for t in self.archived_turns]:
            raise ConsistencyError(
                f"conversation {self.conversation_id}: archived turns do not match "
                "summary coverage"
            )


class AddTurnResult(_Record):
    """Outcome of ``TieredMemoryManager.add_turn``."""

    turn: ConversationTurn
    summary: ConversationSummary | None = None
    degraded: bool = False
    warning: str | None = None


# ---------------------------------------------------------------------------
# Content chunks and retrieval
# ---------------------------------------------------------------------------


class ContentChunk(_Record):
    """A bounded substring of a content entity; the unit of embedding."""

    id: str = Field(default_factory=generate_id)
    parent_id: str
    index: int = Field(ge=0)
    text: str
    embedding: tuple[float, ...] | None = None
    created_at: datetime = Field(default_factory=utc_now)
    content_type: str = "note"


class ChunkSet(_Record):
    """
    The full, ordered chunk set of one parent.

    The parent owns the chunk-ID list; chunks only carry ``parent_id`` as a
    lookup back-reference.
    """

    parent_id: str
    chunks: tuple[ContentChunk, ...] = ()

    @property
    def chunk_ids(self) -> list[str]:
        return [c.id for c in self.chunks]

    def verify(self) -> None:
        """Raise ``ConsistencyError`` on a foreign chunk or an index gap."""
        for expected, chunk in enumerate(self.chunks):
            if chunk.parent_id != self.parent_id:
                raise ConsistencyError(
                    f"chunk {chunk.id} belongs to {chunk.parent_id}, not {self.parent_id}"
                )
            if chunk.index != expected:
                raise ConsistencyError(
                    f"chunk index gap for {self.parent_id}: expected {expected}, "
                    f"got {chunk.index}"
                )


class SimilarityResult(_Record):
    chunk_id: str
    parent_id: str
    score: float = Field(ge=-1.0, le=1.0)
    text: str = ""


class SearchOptions(_Record):
    """Parameters accepted by ``ContentProcessingPipeline.search``."""

    limit: int = Field(default=10, ge=1, le=100)
    type_filter: str | None = None
    parent_ids: tuple[str, ...] | None = None
    min_score: float | None = Field(default=None, ge=-1.0, le=1.0)


class EmbeddingResult(_Record):
    """Per-text outcome of an embedding batch: a vector or a failure."""

    text: str
    vector: tuple[float, ...] | None = None
    error: str | None = None
    cached: bool = False

    @property
    def ok(self) -> bool:
        return self.vector is not None


class ProcessResult(_Record):
    """Outcome of ``ContentProcessingPipeline.process_content``."""

    parent_id: str
    chunk_ids: tuple[str, ...] = ()
    embedded: int = 0
    failed: int = 0
