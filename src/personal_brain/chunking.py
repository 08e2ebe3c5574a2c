"""
Chunk splitting: cut long texts into bounded, overlapping segments.

A window of ``max_chunk_size`` characters is advanced over the text.  When
the window stops short of the end, the cut is moved back to the nearest
paragraph break, else the nearest sentence terminator, else the text is cut
hard at the window edge.  Consecutive chunks share ``overlap`` characters so
that a fact straddling a cut is still retrievable from either side.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterator

from .errors import ValidationError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Maximum number of characters per chunk when splitting long texts.
DEFAULT_CHUNK_SIZE: int = 1000

#: Characters repeated at the start of each chunk from the end of the previous.
DEFAULT_CHUNK_OVERLAP: int = 200

_PARAGRAPH_BREAK = "\n\n"
_SENTENCE_END = re.compile(r"[.!?](?=\s)")
_WHITESPACE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Splitting
# ---------------------------------------------------------------------------


def split_text(
    text: str,
    max_chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """
    Split *text* into chunks of at most *max_chunk_size* characters.

    Returns ``[]`` for empty text and ``[text]`` when the text already fits
    in a single chunk.  Raises ``ValidationError`` when *overlap* is not
    smaller than *max_chunk_size*.
    """
    return list(iter_chunks(text, max_chunk_size, overlap))


def iter_chunks(
    text: str,
    max_chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> Iterator[str]:
    """
    Lazy form of :func:`split_text`.

    Sizes are checked immediately, not on the first ``next()``.  The returned
    iterator is single-use; call again to restart from the beginning.
    """
    _check_sizes(max_chunk_size, overlap)
    return _generate_chunks(text, max_chunk_size, overlap)


def _check_sizes(max_chunk_size: int, overlap: int) -> None:
    if max_chunk_size <= 0:
        raise ValidationError(f"max_chunk_size must be positive, got {max_chunk_size}")
    if overlap < 0:
        raise ValidationError(f"overlap must not be negative, got {overlap}")
    if overlap >= max_chunk_size:
        raise ValidationError(
            f"overlap ({overlap}) must be smaller than max_chunk_size ({max_chunk_size})"
        )


def _generate_chunks(text: str, max_chunk_size: int, overlap: int) -> Iterator[str]:
    if not text:
        return
    if len(text) <= max_chunk_size:
        yield text
        return

    length = len(text)
    stride = max_chunk_size - overlap
    budget = math.ceil(length / stride)
    start = 0
    step = 0
    while start < length:
        step += 1
        window_end = start + max_chunk_size
        if window_end < length:
            # A cut before the floor would leave more text than the remaining
            # steps can cover at a full stride each.
            floor = length - (budget - step) * stride + overlap
            earliest = max(start + overlap + stride // 2, start + overlap + 1, floor)
            end = _find_cut(text, earliest, window_end)
        else:
            end = length

        piece = text[start:end]
        if piece.strip():
            yield piece

        # The last window steps a full stride, as if the text went on.
        next_start = (end if window_end < length else window_end) - overlap
        if next_start <= start:
            next_start = end
        start = next_start


def _find_cut(text: str, earliest: int, end: int) -> int:
    """
    Return the cut position for a window ending at *end*.

    Paragraph breaks win over sentence ends; neither is accepted before
    *earliest*.  Without a usable boundary the window is cut at *end*.
    """
    if earliest >= end:
        return end

    para = text.rfind(_PARAGRAPH_BREAK, earliest, end)
    if para != -1:
        return para + len(_PARAGRAPH_BREAK)

    last_sentence = None
    # Look one character past the window so a terminator sitting on the edge
    # can still see the whitespace that follows it.
    for match in _SENTENCE_END.finditer(text, earliest - 1, min(end + 1, len(text))):
        if match.end() <= end:
            last_sentence = match.end()
    if last_sentence is not None and last_sentence >= earliest:
        return last_sentence

    return end


# ---------------------------------------------------------------------------
# Text preparation
# ---------------------------------------------------------------------------


def prepare_text(text: str) -> str:
    """Collapse runs of whitespace (newlines included) into single spaces."""
    return _WHITESPACE.sub(" ", text).strip()
