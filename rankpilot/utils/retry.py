"""Backoff helpers for the search API."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable

from rankpilot.search.errors import RateLimitError, TransientNetworkError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
RATE_LIMIT_BASE_DELAY = 1.0
SERVER_ERROR_BASE_DELAY = 1.0

Sleep = Callable[[float], Awaitable[None]]


def backoff_delay(exc: Exception, attempt: int) -> float:
    """Seconds to wait after ``attempt`` (0-based) failed with ``exc``.

    Rate limits back off exponentially, server and network failures linearly.
    """
    if isinstance(exc, RateLimitError):
        return RATE_LIMIT_BASE_DELAY * (2**attempt)
    return SERVER_ERROR_BASE_DELAY * (attempt + 1)


def retry_async(
    func: Callable[..., Awaitable] | None = None,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    sleep: Sleep | None = None,
):
    """Retry a coroutine on ``RateLimitError`` and ``TransientNetworkError``.

    Any other exception propagates on the first occurrence.
    """

    def decorate(fn: Callable[..., Awaitable]):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            pause = sleep or asyncio.sleep
            for attempt in range(max_attempts):
                try:
                    return await fn(*args, **kwargs)
                except (RateLimitError, TransientNetworkError) as exc:
                    if attempt == max_attempts - 1:
                        logger.error("Giving up after %s attempts: %s", max_attempts, exc)
                        raise
                    delay = backoff_delay(exc, attempt)
                    logger.warning(
                        "%s (attempt %s/%s), retrying in %.1fs",
                        exc.__class__.__name__,
                        attempt + 1,
                        max_attempts,
                        delay,
                    )
                    await pause(delay)

        return wrapper

    if func is not None:
        return decorate(func)
    return decorate
