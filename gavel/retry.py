"""Retry with exponential backoff for remote judge calls."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx

from gavel.errors import TransientJudgeError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    """Network errors, request timeouts and 5xx/429 responses are worth another try."""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return isinstance(error, (httpx.TransportError, TransientJudgeError))


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    base_delay: float = 1.0  # seconds
    jitter: float = 0.3  # up to this fraction of the delay is added at random
    max_delay: float | None = None

    def backoff(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt, without jitter."""
        delay = self.base_delay * (2 ** (attempt - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    def next_delay(self, attempt: int, error: BaseException) -> float | None:
        """Return how long to wait before the next attempt, or None to give up."""
        if attempt >= self.max_attempts or not is_retryable(error):
            return None
        delay = self.backoff(attempt)
        if self.jitter:
            delay += random.uniform(0, self.jitter * delay)
        return delay


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await ``fn()``, retrying transient failures; the last error is re-raised."""
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as exc:
            delay = policy.next_delay(attempt, exc)
            if delay is None:
                raise
            logger.warning(
                "Retry attempt %d/%d after %dms. Error: %s",
                attempt,
                policy.max_attempts - 1,
                round(delay * 1000),
                exc or type(exc).__name__,
            )
            await sleep(delay)
