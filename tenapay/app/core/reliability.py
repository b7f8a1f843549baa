"""
Reliability Utilities.

Bounded retry with a fixed backoff for calls to unreliable external endpoints.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


class RetryPolicy:
    """
    Re-invokes an async operation up to 'max_attempts' additional times.

    Waits 'backoff_delay' seconds between attempts (fixed, not exponential).
    Only exceptions listed in 'retry_on' are retried; anything else
    propagates immediately. When attempts run out the last error is raised.

    Only wrap operations that are safe to repeat, e.g. a transfer keyed
    by a stable session identifier.
    """

    def __init__(
        self,
        max_attempts: int = 2,
        backoff_delay: float = 0.7,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleep: Optional[SleepFn] = None,
    ):
        if max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if backoff_delay < 0:
            raise ValueError("backoff_delay must be >= 0")
        self.max_attempts = max_attempts
        self.backoff_delay = backoff_delay
        self.retry_on = retry_on
        self.sleep = sleep or asyncio.sleep

    async def run(self, operation: Callable[[], Awaitable[T]], label: str = "operation") -> T:
        last_error: Optional[BaseException] = None
        total = self.max_attempts + 1

        for attempt in range(1, total + 1):
            try:
                return await operation()
            except self.retry_on as exc:
                last_error = exc
                logger.warning(
                    "%s attempt %d/%d failed: %s", label, attempt, total, exc
                )
                if attempt < total:
                    await self.sleep(self.backoff_delay)

        raise last_error


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 2,
    backoff_delay: float = 0.7,
    sleep: Optional[SleepFn] = None,
) -> T:
    """Shorthand for RetryPolicy(max_attempts, backoff_delay).run(operation)."""
    return await RetryPolicy(max_attempts, backoff_delay, sleep=sleep).run(operation)
