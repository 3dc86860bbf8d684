"""Retry and rate-limiting utilities for host API calls."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

logger = logging.getLogger(__name__)

T = TypeVar("T")


class HostError(Exception):
    """A source-control host call failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RetryableHostError(HostError):
    """Transient host failure (5xx, rate limiting); safe to retry."""


RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})
RETRYABLE_EXCEPTIONS: tuple[type[Exception], ...] = (httpx.TransportError, RetryableHostError)


async def with_retry(
    fn: Callable[..., Coroutine[Any, Any, T]],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retryable_exceptions: tuple[type[Exception], ...] = RETRYABLE_EXCEPTIONS,
    **kwargs: Any,
) -> T:
    """Execute an async function with exponential backoff retry.

    Once attempts are exhausted the last failure is raised as a
    ``HostError``; exceptions outside ``retryable_exceptions`` propagate
    on the first occurrence.
    """
    last_exc: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            return await fn(*args, **kwargs)
        except retryable_exceptions as exc:
            last_exc = exc
            if attempt == max_attempts:
                break
            delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
            logger.warning(
                "Attempt %d/%d failed (%s), retrying in %.1fs",
                attempt,
                max_attempts,
                exc,
                delay,
            )
            await asyncio.sleep(delay)

    if isinstance(last_exc, HostError):
        raise last_exc
    raise HostError(f"Host unreachable after {max_attempts} attempts: {last_exc}") from last_exc


def raise_for_status(response: httpx.Response) -> None:
    """Map an error response onto HostError / RetryableHostError."""
    if response.is_success:
        return
    message = f"{response.request.method} {response.request.url.path} -> {response.status_code}"
    if response.status_code in RETRYABLE_STATUS:
        raise RetryableHostError(message, response.status_code)
    raise HostError(message, response.status_code)


class RateLimiter:
    """Simple token-bucket rate limiter for API calls."""

    def __init__(self, calls_per_second: float = 10.0) -> None:
        self._min_interval = 1.0 / calls_per_second
        self._last_call = 0.0

    async def acquire(self) -> None:
        """Wait if necessary to respect the rate limit."""
        now = time.monotonic()
        elapsed = now - self._last_call
        if elapsed < self._min_interval:
            await asyncio.sleep(self._min_interval - elapsed)
        self._last_call = time.monotonic()
