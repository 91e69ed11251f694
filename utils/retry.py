"""Async retry with exponential backoff for transient transport errors. No global state."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import httpx

logger = logging.getLogger(__name__)
T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def is_transient_http_error(exc: BaseException) -> bool:
    """Connection problems, timeouts, rate limits and 5xx are worth another try; 4xx are not."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, httpx.TransportError)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    delay_sec: float = 2.0,
    backoff: bool = True,
    should_retry: Callable[[Exception], bool] = is_transient_http_error,
) -> T:
    """
    Await fn(); when should_retry(error) holds, sleep and try again with exponential backoff.
    Raises the last exception after max_attempts, or immediately for non-retryable errors.
    Cancellation is never retried.
    """
    attempts = max(1, max_attempts)
    for attempt in range(attempts):
        try:
            return await fn()
        except Exception as e:
            if attempt >= attempts - 1 or not should_retry(e):
                raise
            wait = delay_sec * (2**attempt) if backoff else delay_sec
            logger.warning(
                "Retry attempt %s/%s after %.2fs: %s",
                attempt + 1,
                attempts,
                wait,
                e,
            )
            await asyncio.sleep(wait)
    raise RuntimeError("retry exhausted")
