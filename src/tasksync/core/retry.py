"""Bounded exponential backoff for remote calls.

Only ``RateLimitedError`` is retried.  Attempt ``k`` (0-based) that is rate
limited waits ``base_delay * 2**k`` plus up to ``max_jitter`` seconds of
random jitter before the next attempt.  Everything else propagates on the
first failure.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tasksync.errors import RateLimitedError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_MAX_JITTER_SECONDS = 1.0


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Return the pre-jitter delay after the given 0-based attempt."""
    return base_delay * (2**attempt)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    max_jitter: float = DEFAULT_MAX_JITTER_SECONDS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    random_fn: Callable[[], float] = random.random,
    description: str = "remote call",
) -> T:
    """Run *operation*, retrying it while it raises ``RateLimitedError``.

    Raises
    ------
    RetryExhaustedError
        When all *max_attempts* attempts were rate limited.
    ValueError
        When *max_attempts* is less than 1.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: RateLimitedError | None = None
    for attempt in range(max_attempts):
        try:
            return await operation()
        except RateLimitedError as exc:
            last_error = exc
            if attempt == max_attempts - 1:
                break
            delay = backoff_delay(attempt, base_delay) + random_fn() * max_jitter
            logger.warning(
                "%s rate limited, retrying in %.2fs (attempt %d/%d)",
                description,
                delay,
                attempt + 1,
                max_attempts,
            )
            await sleep(delay)

    assert last_error is not None
    logger.error("%s still rate limited after %d attempt(s)", description, max_attempts)
    raise RetryExhaustedError(attempts=max_attempts, last_error=last_error)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings bound together so callers can pass one object around."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS
    max_jitter: float = DEFAULT_MAX_JITTER_SECONDS
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    async def run(self, operation: Callable[[], Awaitable[T]], *, description: str) -> T:
        return await retry_with_backoff(
            operation,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_jitter=self.max_jitter,
            sleep=self.sleep,
            description=description,
        )
