"""
Error taxonomy for personal-brain.

* ``ValidationError``        – bad input; fatal to the call, never retried.
* ``TransientProviderError`` – embedding/summarizer timeout or rate limit;
  retried with bounded backoff, then degraded.
* ``ConsistencyError``       – an invariant was violated; aborts without a
  partial commit and signals a bug.
"""

from __future__ import annotations


class BrainError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(BrainError, ValueError):
    """Input rejected at the boundary (empty turn text, bad chunk sizes...)."""


class TransientProviderError(BrainError):
    """An external provider timed out or rate-limited the request."""


class RetryExhaustedError(TransientProviderError):
    """Raised once a ``RetryPolicy`` has used up all of its attempts."""

    def __init__(self, attempts: int, last_error: BaseException | None = None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"gave up after {attempts} attempt(s){detail}")


class ConsistencyError(BrainError):
    """A tier or chunk invariant would be broken by a commit."""


class OperationCancelled(BrainError):
    """The caller cancelled the operation before it committed."""
