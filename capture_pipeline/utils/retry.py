"""Bounded retry with a fixed delay between attempts.

retry() is the only place in the pipeline that waits on the wall clock.
It covers two cases: polling an operation until it stops signalling
"not ready" (a file still being flushed), and retrying an operation that
raises one of a given set of transient exceptions (a rate-limited API).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from capture_pipeline.utils.errors import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[Any]]


def _default_is_ready(result: object) -> bool:
    return result is not None and result is not False


async def retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 5,
    delay: float = 0.5,
    *,
    retryable_exceptions: tuple[type[Exception], ...] = (),
    is_ready: Callable[[T], bool] | None = None,
    sleep: SleepFunc | None = None,
    description: str | None = None,
) -> T:
    """Call an async operation until it is ready, up to max_attempts times.

    Args:
        operation: Zero-argument coroutine function to call.
        max_attempts: Total number of calls, including the first (>= 1).
        delay: Seconds to wait between consecutive calls.
        retryable_exceptions: Exception types that trigger another attempt.
            Any other exception propagates immediately.
        is_ready: Predicate deciding whether a result is final. Defaults to
            treating None and False as "not ready".
        sleep: Awaitable sleep function. Defaults to asyncio.sleep, looked
            up at call time.
        description: Name used in log messages.

    Returns:
        The first ready result.

    Raises:
        RetryExhaustedError: If every attempt returned "not ready".
        Exception: The last retryable exception, with _retry_count attached,
            if the final attempt raised.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    ready = is_ready or _default_is_ready
    sleep_func = sleep or asyncio.sleep
    name = description or getattr(operation, "__name__", "operation")
    last_error: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            result = await operation()
        except retryable_exceptions as exc:
            last_error = exc
            reason = str(exc)
        else:
            if ready(result):
                return result
            last_error = None
            reason = "not ready"

        if attempt < max_attempts:
            logger.warning(
                "Retry %d/%d for %s after %.1fs: %s",
                attempt,
                max_attempts - 1,
                name,
                delay,
                reason,
            )
            await sleep_func(delay)

    if last_error is not None:
        last_error._retry_count = max_attempts - 1  # type: ignore[attr-defined]
        raise last_error

    raise RetryExhaustedError(
        f"{name} not ready after {max_attempts} attempts",
        attempts=max_attempts,
    )
