"""
Bounded retry with exponential backoff for calls to external providers.

One ``RetryPolicy`` instance is shared by the embedding orchestrator and the
tiered memory manager so both call sites back off the same way.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, TypeVar

from .config import RetryConfig
from .errors import RetryExhaustedError, TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Call a function up to ``max_attempts`` times.

    Only ``TransientProviderError`` (timeouts, rate limits) is retried; any
    other exception propagates on the first occurrence.  When *timeout* is
    set each attempt runs on a helper thread and an attempt that overruns is
    treated as a transient failure.

    Parameters
    ----------
    max_attempts:
        Total attempts, including the first one.
    base_delay:
        Seconds to wait before the second attempt.
    factor:
        Multiplier applied to the delay after every failed attempt.
    max_delay:
        Upper bound for a single delay.
    timeout:
        Seconds allowed per attempt, or ``None`` for no limit.
    sleep:
        Injected for tests; defaults to ``time.sleep``.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        factor: float = 2.0,
        max_delay: float = 8.0,
        timeout: float | None = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.factor = factor
        self.max_delay = max_delay
        self.timeout = timeout
        self._sleep = sleep

    @classmethod
    def from_config(
        cls, config: RetryConfig, sleep: Callable[[float], None] = time.sleep
    ) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            factor=config.factor,
            max_delay=config.max_delay,
            timeout=config.timeout,
            sleep=sleep,
        )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number *attempt* (1-based)."""
        return min(self.base_delay * self.factor ** (attempt - 1), self.max_delay)

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Run ``func(*args, **kwargs)`` under this policy.

        Raises ``RetryExhaustedError`` once every attempt failed transiently.
        """
        last_error: TransientProviderError | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return self._call_once(func, *args, **kwargs)
            except TransientProviderError as exc:
                last_error = exc
                if attempt == self.max_attempts:
                    break
                delay = self.delay_for(attempt)
                logger.debug(
                    "Attempt %d/%d of %s failed (%s); retrying in %.2fs",
                    attempt,
                    self.max_attempts,
                    getattr(func, "__name__", repr(func)),
                    exc,
                    delay,
                )
                self._sleep(delay)

        raise RetryExhaustedError(self.max_attempts, last_error)

    def _call_once(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        if self.timeout is None:
            return func(*args, **kwargs)

        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(func, *args, **kwargs)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError as exc:
            future.cancel()
            raise TransientProviderError(f"call timed out after {self.timeout}s") from exc
        finally:
            # Do not block on an overrunning call; its result is discarded.
            executor.shutdown(wait=False)
