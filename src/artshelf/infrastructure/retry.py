# Hey future me - this is the ONE place that decides "try again or give up" for flaky I/O!
#
# Used by remote discovery: the remote scanner endpoint is another process on another box and
# it WILL hiccup (restarts, slow disks, proxies returning 502). Waiting a bit and retrying
# almost always works.
#
# Backoff: initial_delay * backoff_factor^(attempt-1), capped at max_delay.
# With the defaults (3 attempts, 1s, x2, cap 5s) the waits are 1s then 2s.
#
# The sleep function is INJECTABLE so tests don't actually wait:
#   sleeps: list[float] = []
#   async def fake_sleep(delay: float) -> None:
#       sleeps.append(delay)
#   policy = RetryPolicy(sleep=fake_sleep)
"""Retry policy with capped exponential backoff."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhaustedError(Exception):
    """All attempts of a RetryPolicy failed.

    Carries the attempt count and the last underlying exception so callers can
    translate it into their own domain error.
    """

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry an async operation.

    Attributes:
        max_attempts: Total attempts including the first one (>= 1)
        initial_delay: Wait before the 2nd attempt in seconds
        backoff_factor: Multiplier applied per further attempt
        max_delay: Upper bound for any single wait
        sleep: Awaitable sleep function (asyncio.sleep in production)
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: float = 5.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")

    def delay_for(self, attempt: int) -> float:
        """Wait after the given failed attempt (1-based) before the next one.

        Example:
            RetryPolicy().delay_for(1)  # 1.0
            RetryPolicy().delay_for(2)  # 2.0
            RetryPolicy().delay_for(5)  # 5.0 (capped)
        """
        delay = self.initial_delay * (self.backoff_factor ** max(attempt - 1, 0))
        return min(delay, self.max_delay)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        description: str = "operation",
        retry_on: tuple[type[BaseException], ...] = (Exception,),
    ) -> T:
        """Run ``operation`` until it succeeds or attempts are exhausted.

        Args:
            operation: Zero-arg callable returning a fresh awaitable per attempt
            description: Human label for log lines
            retry_on: Exception types that trigger a retry (others propagate at once)

        Returns:
            Whatever the first successful attempt returned

        Raises:
            RetryExhaustedError: If every attempt failed with a retryable error
        """
        attempt = 1
        while True:
            try:
                return await operation()
            except retry_on as e:
                if attempt >= self.max_attempts:
                    logger.error(
                        "%s failed after %d attempts, giving up: %s",
                        description,
                        self.max_attempts,
                        e,
                    )
                    raise RetryExhaustedError(self.max_attempts, e) from e

                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                    description,
                    attempt,
                    self.max_attempts,
                    delay,
                    e,
                )
                await self.sleep(delay)
                attempt += 1
