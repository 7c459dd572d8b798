"""Exponential backoff shared by every provider network call.

The delay before retry ``n`` (zero-based) is ``2**n`` seconds. Only
errors flagged ``retryable`` are retried; auth and parse failures are
raised on the first occurrence.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from daytrace.errors import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int) -> float:
    return float(2 ** attempt)


async def call_with_retries(
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    sleep: Sleep = asyncio.sleep,
    operation: str = "",
) -> T:
    """Run ``fn`` until it succeeds, a non-retryable error occurs, or the
    attempts are exhausted. The last error is re-raised."""
    attempts = max(1, max_attempts)
    for attempt in range(attempts):
        try:
            return await fn()
        except ProviderError as e:
            if not e.retryable or attempt == attempts - 1:
                raise
            delay = backoff_delay(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s -- retrying in %.0fs",
                operation or "provider call", attempt + 1, attempts, e, delay,
            )
            await sleep(delay)
    raise AssertionError("unreachable")
