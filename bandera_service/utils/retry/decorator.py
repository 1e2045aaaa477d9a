"""Retry decorator for cache round-trips.

Redis calls that fail with a connection reset or a timeout are retried a
few times with exponential backoff. Anything else, including Redis protocol
errors, propagates on the first failure so the cache backend can degrade to
a miss straight away.
"""

from __future__ import annotations

import asyncio
from functools import wraps
import logging
import time
from typing import TYPE_CHECKING, ParamSpec, TypeVar

from bandera_service.infra.metrics.tracking import (
    track_retry_attempt,
    track_retry_exhausted,
    track_retry_success,
)

from .exceptions import RetryError, RetryStatistics
from .strategies import RetryStrategy

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


def retry(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    stop_after_delay: float | None = None,
    operation: str | None = None,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Retry an async call that failed with one of ``exceptions``.

    ``operation`` labels the retry metrics and log lines; it defaults to the
    function name. When the attempts or ``stop_after_delay`` run out, the
    last failure is raised wrapped in :class:`RetryError`.

    Example:
        @retry(max_attempts=2, initial_delay=0.05, exceptions=(ConnectionError,),
               operation="redis.get")
        async def _get(self, key: str) -> bytes | None:
            return await self.client.get(key)
    """
    strategy = RetryStrategy(
        max_attempts=max_attempts,
        initial_delay=initial_delay,
        max_delay=max_delay,
        exponential_base=exponential_base,
        jitter=jitter,
        exceptions=exceptions,
    )

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        name = operation or func.__name__

        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            stats = RetryStatistics(start_time=time.monotonic())
            attempt = 0
            while True:
                attempt += 1
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    if not strategy.should_retry(e):
                        raise
                    stats.exceptions.append(type(e).__name__)
                    out_of_time = (
                        stop_after_delay is not None
                        and time.monotonic() - stats.start_time >= stop_after_delay
                    )
                    if out_of_time or attempt >= strategy.max_attempts:
                        stats.end_time = time.monotonic()
                        track_retry_exhausted(name)
                        logger.warning(
                            "Giving up on %s after %d attempts",
                            name,
                            attempt,
                            extra={
                                "operation": name,
                                "attempts": attempt,
                                "error": str(e),
                                "duration": stats.duration,
                            },
                        )
                        raise RetryError(e, attempt, stats) from e

                    delay = strategy.calculate_delay(attempt - 1)
                    stats.attempts += 1
                    stats.total_delay += delay
                    track_retry_attempt(name, attempt + 1)
                    logger.debug(
                        "Retrying %s in %.3fs",
                        name,
                        delay,
                        extra={"operation": name, "attempt": attempt, "error": str(e)},
                    )
                    await asyncio.sleep(delay)
                    continue

                if stats.attempts:
                    track_retry_success(name, attempt)
                return result

        return wrapper

    return decorator
