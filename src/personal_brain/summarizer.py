"""
Summarizers that condense a block of conversation turns into one text.

The LLM behind ``LLMSummarizer`` is an opaque external service reached
through a ``complete(system_prompt, prompt)`` callable.
``ExtractiveSummarizer`` needs no model.  It is used when none is configured
and as the fallback of ``LLMSummarizer``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from typing import Protocol

from .errors import TransientProviderError, ValidationError
from .models import ConversationTurn
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = (
    "You are a specialized AI assistant that creates concise, informative summaries "
    "of conversations. Extract the key points, main topics and important details from "
    "a conversation between a user and an assistant.\n"
    "Your summary should:\n"
    "- Be under 250 words\n"
    "- Highlight the main topics discussed\n"
    "- Note any important decisions, information or action items\n"
    "- Capture the overall flow of the conversation\n"
    "- Keep an objective, neutral tone and a third-person perspective\n"
    "- Leave out irrelevant or redundant information"
)

_FIRST_SENTENCE = re.compile(r"^(.+?[.!?])(?:\s|$)", re.DOTALL)


class Summarizer(Protocol):
    def summarize(self, turns: Sequence[ConversationTurn]) -> str: ...


def format_turn(turn: ConversationTurn) -> str:
    return f"{turn.role.capitalize()}: {turn.text}"


def build_summarization_prompt(turns: Sequence[ConversationTurn]) -> str:
    """Render *turns* into the user prompt sent to the summarizing model."""
    conversation = "\n\n".join(format_turn(t) for t in turns)
    return (
        "Please summarize the following conversation, focusing on the key topics "
        f"and important details:\n\n{conversation}\n\nSummary:"
    )


class LLMSummarizer:
    """
    Summarize turns with an LLM completion callable.

    Empty completions count as transient failures.  When the completion
    still fails after *retry_policy* is exhausted, or fails with any other
    error, *fallback* summarizes the block instead (an
    ``ExtractiveSummarizer`` unless another is given).
    """

    def __init__(
        self,
        complete: Callable[[str, str], str],
        system_prompt: str = SUMMARY_SYSTEM_PROMPT,
        retry_policy: RetryPolicy | None = None,
        fallback: Summarizer | None = None,
    ) -> None:
        self._complete = complete
        self.system_prompt = system_prompt
        self._retry = retry_policy
        self.fallback = fallback or ExtractiveSummarizer()

    def summarize(self, turns: Sequence[ConversationTurn]) -> str:
        if not turns:
            raise ValidationError("cannot summarize an empty block of turns")
        prompt = build_summarization_prompt(turns)
        try:
            if self._retry is None:
                return self._complete_once(prompt)
            return self._retry.call(self._complete_once, prompt)
        except Exception as exc:
            logger.warning("Summarizer model failed, using fallback summary: %s", exc)
            return self.fallback.summarize(turns)

    def _complete_once(self, prompt: str) -> str:
        text = self._complete(self.system_prompt, prompt).strip()
        if not text:
            raise TransientProviderError("summarizer returned an empty completion")
        return text


class ExtractiveSummarizer:
    """
    Deterministic summary built from the first sentence of every turn.

    Useful offline and in tests; each line is capped at *max_sentence_chars*.
    """

    def __init__(self, max_sentence_chars: int = 200) -> None:
        self.max_sentence_chars = max_sentence_chars

    def summarize(self, turns: Sequence[ConversationTurn]) -> str:
        if not turns:
            raise ValidationError("cannot summarize an empty block of turns")
        lines = []
        for turn in turns:
            text = " ".join(turn.text.split())
            match = _FIRST_SENTENCE.match(text)
            sentence = match.group(1) if match else text
            if len(sentence) > self.max_sentence_chars:
                sentence = sentence[: self.max_sentence_chars].rstrip() + "..."
            lines.append(f"{turn.role.capitalize()}: {sentence}")
        logger.debug("Built extractive summary of %d turn(s)", len(turns))
        return "\n".join(lines)
