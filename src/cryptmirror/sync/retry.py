"""Retry logic with exponential backoff.

This module provides:
- backoff_delay: Delay before the next attempt (quadratic plus jitter, capped)
- retry_with_backoff: Bounded retry shared by uploads and batch syncs
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TypeVar

from cryptmirror.sync.types import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 3
BASE_DELAY = 1.0  # seconds, multiplied by attempt²
JITTER_STEP = 0.5  # seconds, multiplied by attempt
MAX_DELAY = 30.0  # seconds


def backoff_delay(attempt: int) -> float:
    """Get the delay to wait after a failed attempt.

    Args:
        attempt: The 1-indexed attempt that just failed.

    Returns:
        min(30s, attempt² * 1s + attempt * 0.5s)
    """
    attempt = max(attempt, 1)
    return min(MAX_DELAY, attempt * attempt * BASE_DELAY + attempt * JITTER_STEP)


def retry_with_backoff(
    func: Callable[[], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    description: str = "operation",
    cancel: threading.Event | None = None,
    delay: Callable[[int], float] = backoff_delay,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
) -> T:
    """Execute a function, retrying failures with backoff.

    Args:
        func: Function to execute.
        max_attempts: Total number of attempts (not retries).
        description: Label used in log messages.
        cancel: Optional event; when set, waiting stops and RetryExhaustedError is raised.
        delay: Maps a failed attempt number to seconds to wait.
        retryable_exceptions: Exception types that trigger a retry.

    Returns:
        Result of the function.

    Raises:
        RetryExhaustedError: If every attempt failed, chained to the last error.
    """
    cancel = cancel or threading.Event()
    last_exception: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            return func()
        except retryable_exceptions as e:
            last_exception = e
            if attempt == max_attempts:
                break

            wait = delay(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s. Retrying in %.1fs...",
                description,
                attempt,
                max_attempts,
                e,
                wait,
            )
            if cancel.wait(wait):
                logger.info("%s: retry cancelled", description)
                raise RetryExhaustedError(attempt, e) from e

    if last_exception is None:
        raise ValueError("max_attempts must be >= 1")
    logger.error("%s failed after %d attempts: %s", description, max_attempts, last_exception)
    raise RetryExhaustedError(max_attempts, last_exception) from last_exception
