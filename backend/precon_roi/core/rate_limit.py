"""
Client-side rate limiting for outbound API calls.

Two policies are provided:
- MinIntervalThrottle: fixed minimum spacing between consecutive calls.
- WindowRateLimiter: fixed request budget per rolling window, waiting for
  the window to reset a bounded number of times before giving up.
"""
import asyncio
import time
from typing import Awaitable, Callable, Optional

import structlog

from precon_roi.core.exceptions import RateLimitExceededError

logger = structlog.get_logger()

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


def backoff_delay(
    attempt: int,
    factor: float = 2.0,
    cap: float = 60.0,
    retry_after: Optional[str] = None,
) -> float:
    """
    Seconds to wait before retry number ``attempt + 1``.

    Exponential backoff: ``factor ** attempt`` seconds. A numeric
    Retry-After header wins when present. Capped at ``cap``.
    """
    wait_seconds = factor ** attempt
    if retry_after:
        try:
            wait_seconds = float(retry_after)
        except ValueError:
            pass
    return min(wait_seconds, cap)


class MinIntervalThrottle:
    """
    Enforce a minimum interval between consecutive calls.

    The next free slot is reserved before sleeping, so concurrent callers
    queue up one interval apart instead of all firing after the same delay.
    """

    def __init__(
        self,
        interval_seconds: float,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._next_slot: Optional[float] = None

    async def wait(self) -> float:
        """Wait for the next slot. Returns the time slept in seconds."""
        now = self._clock()
        slot = now if self._next_slot is None else max(now, self._next_slot)
        self._next_slot = slot + self.interval_seconds

        delay = slot - now
        if delay > 0:
            await self._sleep(delay)
        return delay

    def reset(self) -> None:
        self._next_slot = None


class WindowRateLimiter:
    """
    Fixed request budget per time window.

    When the budget is spent the caller sleeps until the window resets,
    at most ``max_wait_attempts`` times; after that
    ``RateLimitExceededError`` is raised so sustained overload cannot
    queue callers forever.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float = 60.0,
        max_wait_attempts: int = 3,
        name: str = "api",
        warn_margin: int = 0,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.max_wait_attempts = max_wait_attempts
        self.name = name
        self.warn_margin = warn_margin
        self._clock = clock
        self._sleep = sleep
        self._count = 0
        self._reset_at = clock() + window_seconds

    @property
    def remaining(self) -> int:
        self._roll_window()
        return max(0, self.limit - self._count)

    def _roll_window(self) -> None:
        now = self._clock()
        if now >= self._reset_at:
            self._count = 0
            self._reset_at = now + self.window_seconds

    async def acquire(self) -> None:
        """
        Take one request from the budget, waiting for window resets if needed.

        Raises:
            RateLimitExceededError: Budget still exhausted after
                ``max_wait_attempts`` waits.
        """
        attempts = 0
        while True:
            # Check and increment happen together, before any await
            self._roll_window()
            if self._count < self.limit:
                self._count += 1
                if self.warn_margin and self._count >= self.limit - self.warn_margin:
                    logger.warning(
                        "Approaching client rate limit",
                        limiter=self.name,
                        count=self._count,
                        limit=self.limit,
                    )
                return

            if attempts >= self.max_wait_attempts:
                logger.error(
                    "Rate limit wait budget exhausted",
                    limiter=self.name,
                    attempts=attempts,
                )
                raise RateLimitExceededError(
                    f"{self.name} rate limit: max wait attempts exceeded ({attempts})"
                )

            attempts += 1
            wait_seconds = max(0.0, self._reset_at - self._clock())
            logger.warning(
                "Rate limit reached, waiting for window reset",
                limiter=self.name,
                wait_seconds=round(wait_seconds, 2),
                attempt=attempts,
            )
            await self._sleep(wait_seconds)

    def reset(self) -> None:
        self._count = 0
        self._reset_at = self._clock() + self.window_seconds
