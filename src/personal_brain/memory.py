"""
Tiered conversation memory: active turns, summaries and archived turns.

Each conversation keeps its most recent turns verbatim in the *active*
tier.  Once the active tier grows past its turn or token budget, the oldest
block of active turns is handed to a summarizer; on success the block moves
to the *archived* tier and a summary covering exactly that block is added.

Usage example::

    from personal_brain import MemoryRegistry, ConversationTurn
    from personal_brain.store import InMemoryConversationStore
    from personal_brain.summarizer import ExtractiveSummarizer

    registry = MemoryRegistry(InMemoryConversationStore(), ExtractiveSummarizer())
    memory = registry.get("conversation-1")
    memory.add_turn(ConversationTurn(role="user", text="Hi, I'm planning a trip."))
    prompt_context = memory.format_history_for_prompt(max_tokens=1500)
"""

from __future__ import annotations

import enum
import logging
import math
import threading
from collections.abc import Callable, Sequence

from .config import MemoryConfig
from .errors import BrainError, OperationCancelled, TransientProviderError, ValidationError
from .models import AddTurnResult, ConversationSummary, ConversationTurn, TieredHistory
from .retry import RetryPolicy
from .store import ConversationStore
from .summarizer import Summarizer, format_turn

logger = logging.getLogger(__name__)

TokenCounter = Callable[[str], int]


def estimate_tokens(text: str) -> int:
    """
    Rough token estimate of about four characters per token.

    Only a default: pass a counter that matches the target model's tokenizer
    when budgets have to be exact.
    """
    if not text:
        return 0
    return math.ceil(len(text) / 4)


class MemoryState(str, enum.Enum):
    NORMAL = "normal"
    SUMMARIZING = "summarizing"


class TieredMemoryManager:
    """
    Owns the tier lifecycle of a single conversation.

    All thresholds are checked synchronously inside :meth:`add_turn`; there
    is no background task.  Mutations are serialized by a per-conversation
    lock, and a new snapshot is only committed once every step (including
    the summarizer call) has finished, so a failed or cancelled call leaves
    the previous snapshot in place.

    Parameters
    ----------
    conversation_id:
        Key of the conversation in *store*.
    store:
        Persists ``TieredHistory`` snapshots.
    summarizer:
        Condenses a block of turns into text.
    config:
        Turn/token budgets and the minimum summary block size.
    retry_policy:
        Bounded retry applied to summarizer calls.
    token_counter:
        Counts tokens in a text; defaults to :func:`estimate_tokens`.
    """

    def __init__(
        self,
        conversation_id: str,
        store: ConversationStore,
        summarizer: Summarizer,
        config: MemoryConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        token_counter: TokenCounter = estimate_tokens,
    ) -> None:
        self.conversation_id = conversation_id
        self.config = config or MemoryConfig()
        self._store = store
        self._summarizer = summarizer
        self._retry = retry_policy or RetryPolicy()
        self._count_tokens = token_counter
        self._lock = threading.Lock()
        self._state = MemoryState.NORMAL

        history = store.load(conversation_id)
        history.verify()
        self._history = history

    @property
    def state(self) -> MemoryState:
        return self._state

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add_turn(
        self,
        turn: ConversationTurn,
        cancel_event: threading.Event | None = None,
    ) -> AddTurnResult:
        """
        Append *turn* to the active tier, summarizing the oldest turns if
        the active tier is now over budget.

        If the summarizer keeps failing or raises an unexpected error, the
        turn is still stored, the oldest turns stay active and the result
        has ``degraded=True``.
        Raises ``ValidationError`` for empty text or a duplicate turn ID and
        ``OperationCancelled`` if *cancel_event* is set before the commit.
        """
        with self._lock:
            turn = self._ingest(turn)
            before = self._history
            active = [*before.active_turns, turn]
            candidate = before.model_copy(update={"active_turns": tuple(active)})

            summary: ConversationSummary | None = None
            warning: str | None = None
            block_size = self._block_size(active)
            if block_size:
                _raise_if_cancelled(cancel_event)
                block = active[:block_size]
                try:
                    summary = self._summarize(block)
                except TransientProviderError as exc:
                    warning = self._defer(block, exc)
                except BrainError:
                    raise
                except Exception as exc:
                    warning = self._defer(block, exc, unexpected=True)
                else:
                    candidate = self._migrate(before, active, block, summary)

            candidate.verify()
            _raise_if_cancelled(cancel_event)
            self._commit(candidate)

        if summary is not None:
            logger.info(
                "Archived %d turn(s) under summary %s for conversation %s",
                len(summary.turn_ids),
                summary.id,
                self.conversation_id,
            )
        return AddTurnResult(
            turn=turn, summary=summary, degraded=warning is not None, warning=warning
        )

    def force_summarize(self) -> ConversationSummary | None:
        """
        Summarize the oldest active turns even if no budget is exceeded.

        At least ``min_block_size`` turns are summarized and the newest turn
        always stays active.  Returns ``None`` when there are too few turns
        or the summarizer keeps failing.
        """
        with self._lock:
            before = self._history
            active = list(before.active_turns)
            eligible = len(active) - 1
            if eligible < self.config.min_block_size:
                logger.warning(
                    "Not enough active turns to summarize for conversation %s",
                    self.conversation_id,
                )
                return None

            block = active[: max(self._block_size(active), self.config.min_block_size)]
            try:
                summary = self._summarize(block)
            except TransientProviderError as exc:
                self._defer(block, exc)
                return None
            except BrainError:
                raise
            except Exception as exc:
                self._defer(block, exc, unexpected=True)
                return None

            candidate = self._migrate(before, active, block, summary)
            candidate.verify()
            self._commit(candidate)
            return summary

    def get_tiered_history(self) -> TieredHistory:
        """
        Return the current read-only snapshot of all three tiers.

        ``max_summaries`` and ``max_archived_turns`` from the config limit the
        view to the newest entries.  The stored history is never trimmed, so
        a capped view need not pass :meth:`TieredHistory.verify`.
        """
        history = self._history
        update = {}
        if self.config.max_summaries is not None:
            update["summaries"] = history.summaries[-self.config.max_summaries :]
        if self.config.max_archived_turns is not None:
            update["archived_turns"] = history.archived_turns[-self.config.max_archived_turns :]
        return history.model_copy(update=update) if update else history

    def format_history_for_prompt(self, max_tokens: int | None = None) -> str:
        """
        Render summaries (oldest first) followed by the active turns.

        When the result exceeds *max_tokens*, the oldest summaries are
        dropped one at a time.  Active turns are never truncated, so the
        result can still exceed the limit when they alone are too long.
        """
        limit = max_tokens if max_tokens is not None else self.config.prompt_max_tokens
        history = self.get_tiered_history()
        summaries = list(history.summaries)
        turn_lines = [format_turn(t) for t in history.active_turns]

        text = _render(summaries, turn_lines)
        while summaries and self._count_tokens(text) > limit:
            summaries.pop(0)
            text = _render(summaries, turn_lines)
        return text

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ingest(self, turn: ConversationTurn) -> ConversationTurn:
        if not turn.text or not turn.text.strip():
            raise ValidationError("turn text must not be empty")
        if turn.id in set(self._history.turn_ids()):
            raise ValidationError(
                f"turn {turn.id} already exists in conversation {self.conversation_id}"
            )
        if turn.token_count is None:
            turn = turn.model_copy(update={"token_count": self._count_tokens(turn.text)})
        return turn

    def _block_size(self, active: Sequence[ConversationTurn]) -> int:
        """
        Size of the oldest block that brings *active* back within budget,
        or 0 when no summarization is needed or possible.
        """
        eligible = len(active) - 1
        if eligible < self.config.min_block_size:
            return 0

        needed = max(0, len(active) - self.config.max_active_turns)
        tokens = sum(t.token_count or 0 for t in active)
        if tokens > self.config.max_active_tokens:
            released = 0
            count = 0
            while tokens - released > self.config.max_active_tokens and count < eligible:
                released += active[count].token_count or 0
                count += 1
            needed = max(needed, count)

        if needed == 0:
            return 0
        return min(max(needed, self.config.min_block_size), eligible)

    def _defer(
        self, block: Sequence[ConversationTurn], exc: Exception, unexpected: bool = False
    ) -> str:
        """Log that *block* stays active after a failed summarization; return the warning."""
        warning = (
            f"summarization of {len(block)} turn(s) deferred for "
            f"conversation {self.conversation_id}: {exc}"
        )
        logger.warning(warning, exc_info=unexpected)
        return warning

    def _summarize(self, block: Sequence[ConversationTurn]) -> ConversationSummary:
        self._state = MemoryState.SUMMARIZING
        try:
            text = self._retry.call(self._summarizer.summarize, list(block))
        finally:
            self._state = MemoryState.NORMAL
        return ConversationSummary(
            turn_ids=tuple(t.id for t in block),
            summary_text=text,
            token_count=self._count_tokens(text),
        )

    @staticmethod
    def _migrate(
        before: TieredHistory,
        active: Sequence[ConversationTurn],
        block: Sequence[ConversationTurn],
        summary: ConversationSummary,
    ) -> TieredHistory:
        return TieredHistory(
            conversation_id=before.conversation_id,
            active_turns=tuple(active[len(block):]),
            summaries=(*before.summaries, summary),
            archived_turns=(*before.archived_turns, *block),
        )

    def _commit(self, history: TieredHistory) -> None:
        self._store.save(history)
        self._history = history


def _raise_if_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelled("add_turn cancelled before commit")


def _render(summaries: Sequence[ConversationSummary], turn_lines: Sequence[str]) -> str:
    parts = []
    if summaries:
        body = "\n\n".join(f"Summary: {s.summary_text}" for s in summaries)
        parts.append(f"CONVERSATION SUMMARIES:\n{body}")
    if turn_lines:
        body = "\n\n".join(turn_lines)
        parts.append(f"RECENT CONVERSATION:\n{body}" if summaries else body)
    return "\n\n".join(parts)


class MemoryRegistry:
    """
    Creates and owns one ``TieredMemoryManager`` per conversation ID.

    Managers for different conversations share collaborators but no locks,
    so they proceed fully in parallel.
    """

    def __init__(
        self,
        store: ConversationStore,
        summarizer: Summarizer,
        config: MemoryConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        token_counter: TokenCounter = estimate_tokens,
    ) -> None:
        self.store = store
        self.summarizer = summarizer
        self.config = config or MemoryConfig()
        self.retry_policy = retry_policy or RetryPolicy()
        self.token_counter = token_counter
        self._managers: dict[str, TieredMemoryManager] = {}
        self._lock = threading.Lock()

    def get(self, conversation_id: str) -> TieredMemoryManager:
        if not conversation_id or not conversation_id.strip():
            raise ValidationError("conversation_id must not be empty")
        with self._lock:
            manager = self._managers.get(conversation_id)
            if manager is None:
                manager = TieredMemoryManager(
                    conversation_id,
                    store=self.store,
                    summarizer=self.summarizer,
                    config=self.config,
                    retry_policy=self.retry_policy,
                    token_counter=self.token_counter,
                )
                self._managers[conversation_id] = manager
            return manager

    def add_turn(
        self,
        conversation_id: str,
        turn: ConversationTurn,
        cancel_event: threading.Event | None = None,
    ) -> AddTurnResult:
        return self.get(conversation_id).add_turn(turn, cancel_event=cancel_event)

    def conversation_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._managers)
