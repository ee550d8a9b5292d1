"""Bounded retries with exponential backoff for collaborator calls.

Every external call (model read/write, store read/write) goes through
`call_with_retry`: each attempt is bounded by a timeout, timeouts and
connection errors are retried, anything else propagates immediately.
"""

from __future__ import annotations

import logging
import random
import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from pipenet.errors import SourceUnavailable
from pipenet.settings import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE: tuple[type[BaseException], ...] = (
    SourceUnavailable,
    ConnectionError,
    TimeoutError,
    FuturesTimeout,
    sqlite3.OperationalError,
)


@dataclass
class RetryConfig:
    """Retry policy for one collaborator call."""

    max_attempts: int = 3
    initial_delay: float = 0.5
    max_delay: float = 8.0
    backoff_factor: float = 2.0
    timeout: float | None = 10.0
    jitter: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryConfig:
        return cls(
            max_attempts=settings.max_attempts,
            initial_delay=settings.initial_delay,
            max_delay=settings.max_delay,
            backoff_factor=settings.backoff_factor,
            timeout=settings.call_timeout,
        )

    def get_delay(self, attempt: int) -> float:
        """Delay before the retry that follows `attempt` (0-based)."""
        delay = min(self.initial_delay * (self.backoff_factor ** attempt), self.max_delay)
        if self.jitter:
            delay += delay * 0.2 * random.random()
        return delay


def _call_with_timeout(fn: Callable[..., T], timeout: float | None, *args: Any, **kwargs: Any) -> T:
    if timeout is None:
        return fn(*args, **kwargs)
    executor = ThreadPoolExecutor(max_workers=1)
    try:
        return executor.submit(fn, *args, **kwargs).result(timeout=timeout)
    finally:
        # A hung call keeps its worker; never block the cycle on it.
        executor.shutdown(wait=False)


def call_with_retry(
    fn: Callable[..., T],
    *args: Any,
    retry: RetryConfig | None = None,
    label: str = "collaborator call",
    **kwargs: Any,
) -> T:
    """Call `fn` with a per-attempt timeout and bounded retries.

    Raises:
        SourceUnavailable: every attempt failed with a retryable error.
    """
    retry = retry or RetryConfig()
    last_error: BaseException | None = None

    for attempt in range(retry.max_attempts):
        try:
            return _call_with_timeout(fn, retry.timeout, *args, **kwargs)
        except RETRYABLE as e:
            last_error = e
            logger.warning(
                "%s failed (attempt %d/%d): %s",
                label, attempt + 1, retry.max_attempts, e or type(e).__name__,
            )
            if attempt < retry.max_attempts - 1:
                time.sleep(retry.get_delay(attempt))

    raise SourceUnavailable(
        f"{label} failed after {retry.max_attempts} attempts: {last_error or 'timeout'}"
    ) from last_error
