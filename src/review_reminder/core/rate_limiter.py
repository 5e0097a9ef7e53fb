"""
Rate limiter for the external search API.

All query traffic of the process funnels through one RateLimiter: calls run
one at a time in submission order, and each call starts no earlier than
`min_interval` seconds after the previous call completed. Bursts of
simultaneous trigger firings therefore degrade into a queue instead of
exceeding the API budget.
"""

import asyncio
import functools
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from review_reminder.core.metrics import rate_limiter_wait

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiter:
    """FIFO limiter with a minimum spacing between call completions.

    asyncio.Lock wakes waiters in the order they arrived, which gives the
    FIFO guarantee. The spacing is measured from the end of the previous
    call, so slow calls never shrink the gap.
    """

    def __init__(
        self,
        min_interval: float,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize limiter.

        Args:
            min_interval: Minimum seconds between the end of one call and the start of the next
            timeout: Upper bound for a single call; a timeout counts as a failed call
            clock: Monotonic clock (injectable for tests)
        """
        self.min_interval = min_interval
        self.timeout = timeout
        self._clock = clock
        self._lock = asyncio.Lock()
        self._next_start = 0.0
        self._queued = 0

    @classmethod
    def per_minute(cls, calls_per_minute: int, timeout: Optional[float] = None) -> "RateLimiter":
        """Build a limiter from an API budget expressed in calls per minute."""
        return cls(60.0 / calls_per_minute, timeout=timeout)

    @property
    def queued(self) -> int:
        """Number of calls currently waiting or running."""
        return self._queued

    async def run(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run `func(*args, **kwargs)` through the limiter.

        Raises:
            asyncio.TimeoutError: If the call exceeded the configured timeout
        """
        submitted = self._clock()
        self._queued += 1
        try:
            async with self._lock:
                delay = self._next_start - self._clock()
                if delay > 0:
                    await asyncio.sleep(delay)
                rate_limiter_wait.observe(self._clock() - submitted)

                try:
                    if self.timeout is not None:
                        return await asyncio.wait_for(func(*args, **kwargs), self.timeout)
                    return await func(*args, **kwargs)
                finally:
                    self._next_start = self._clock() + self.min_interval
        finally:
            self._queued -= 1

    def wrap(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """Return a rate limited version of the given coroutine function."""

        @functools.wraps(func)
        async def rate_limited(*args: Any, **kwargs: Any) -> T:
            return await self.run(func, *args, **kwargs)

        return rate_limited
