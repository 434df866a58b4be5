"""Shared concurrency primitives for ingestion and embedding fan-out.

Two patterns are exposed:

1. **throttled_gather** -- a drop-in replacement for ``asyncio.gather`` that
   wraps each awaitable in a semaphore acquire/release.  Used by the
   ingestion pipeline to embed several sources concurrently without
   flooding the embedding provider.

2. **retry_with_backoff** -- retries an async operation on transient
   provider failures (rate limits, unreachable service, transient embedding
   errors) with exponential backoff.  Caller errors such as
   :class:`~vecsearch.utils.errors.DimensionMismatchError` are never retried.

Unlike a process-wide semaphore, every caller passes (or receives) its own
semaphore, so two pipelines in one process do not throttle each other.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from vecsearch.utils.errors import is_transient
from vecsearch.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    limit: int = 4,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with semaphore throttling.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Optional semaphore for concurrency control.  When omitted a fresh
        semaphore allowing *limit* concurrent awaitables is created.
    limit:
        Concurrency bound used when no semaphore is supplied.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """
    if semaphore is None:
        semaphore = asyncio.Semaphore(max(1, limit))

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[_T]],
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 30.0,
    logger: structlog.BoundLogger | None = None,
    event: str = "transient_failure_retry",
    **context: object,
) -> _T:
    """Await ``operation()`` and retry transient failures with backoff.

    The delay before attempt ``n`` (1-based retry count) is
    ``min(max_delay, base_delay * 2 ** (n - 1))``.  Non-transient errors
    propagate immediately; the last transient error propagates once
    *max_retries* retries have been spent.

    Parameters
    ----------
    operation:
        Zero-argument factory producing a fresh awaitable per attempt.
    max_retries:
        Number of retries after the first attempt (0 disables retrying).
    base_delay:
        Delay in seconds before the first retry.
    max_delay:
        Upper bound on any single delay.
    logger:
        Structured logger for retry warnings.
    event:
        Log event name used for each retry.
    """
    if logger is None:
        logger = _logger

    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not is_transient(exc) or attempt >= max_retries:
                raise
            attempt += 1
            delay = min(max_delay, base_delay * (2 ** (attempt - 1)))
            logger.warning(
                event,
                attempt=attempt,
                max_retries=max_retries,
                backoff_s=delay,
                error=str(exc),
                **context,
            )
            await asyncio.sleep(delay)
