"""Bounded retry with capped exponential backoff and jitter.

Used around relay connects and batch subscriptions. Only connectivity
failures are retried; everything else propagates on the first attempt.

Warning:
    Jitter is computed via ``random.uniform()`` (PRNG, ``# noqa: S311``).
    It only needs to decorrelate concurrent retries.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pydantic import BaseModel, Field

from shelfstr.core.exceptions import ConnectivityError


logger = logging.getLogger("utils.retry")

_T = TypeVar("_T")

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (ConnectivityError, OSError)


class RetryConfig(BaseModel):
    """Retry settings with exponential backoff and jitter.

    ``max_attempts`` counts retries after the first try, so the default
    performs at most three attempts in total.
    """

    max_attempts: int = Field(default=2, ge=0, le=10)
    initial_delay: float = Field(default=1.0, ge=0.0, le=10.0)
    max_delay: float = Field(default=10.0, ge=0.0, le=60.0)
    jitter: float = Field(default=0.5, ge=0.0, le=2.0)

    def delay_for(self, attempt: int) -> float:
        """Return the backoff before retry number ``attempt + 1`` (without jitter)."""
        return float(min(self.initial_delay * (2**attempt), self.max_delay))


async def retry_async(
    coro_factory: Callable[[], Awaitable[_T]],
    retry: RetryConfig,
    operation: str,
) -> _T:
    """Await ``coro_factory()`` until it succeeds or retries are exhausted.

    Args:
        coro_factory: Callable returning a fresh awaitable for each attempt.
        retry: Backoff settings.
        operation: Operation name for log messages.

    Returns:
        The result of the first successful attempt.

    Raises:
        ConnectivityError: The last connectivity error once retries run out.
        OSError: Likewise for raw socket errors.
        Exception: Any non-retryable error, immediately.
    """
    max_retries = retry.max_attempts

    for attempt in range(max_retries + 1):
        try:
            return await coro_factory()
        except RETRYABLE_ERRORS as e:
            if attempt >= max_retries:
                logger.warning(
                    "retry_exhausted operation=%s attempts=%d error=%s",
                    operation,
                    attempt + 1,
                    e,
                )
                raise
            delay = retry.delay_for(attempt)
            jitter = random.uniform(0, retry.jitter) if retry.jitter else 0.0  # noqa: S311
            logger.debug(
                "retry_scheduled operation=%s attempt=%d delay_s=%.2f error=%s",
                operation,
                attempt + 1,
                delay + jitter,
                e,
            )
            await asyncio.sleep(delay + jitter)

    raise AssertionError("unreachable")  # pragma: no cover
