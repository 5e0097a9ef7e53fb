"""
In-process query cache with single-flight population.

Each installation engine owns its own QueryCache, so installations never see
each other's entries. Entries expire after a fixed TTL and are replaced
wholesale, never updated in place. Concurrent misses for the same key share
one in-flight population instead of issuing duplicate queries.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, Optional

from review_reminder.core.metrics import track_cache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """A cached value and the monotonic instant it expires at."""

    value: Any
    expires_at: float


class QueryCache:
    """
    TTL cache for non-user-specific query results.

    Cache Strategy:
    - Lazily populated on first miss
    - Expired entries are treated as misses and replaced
    - Failed populations are not cached; every waiter sees the error
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Task] = {}

    def get(self, key: str) -> Optional[Any]:
        """Return the live value for a key, or None on a miss."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any) -> None:
        """Store a value, replacing any existing entry."""
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + self.ttl)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop every entry and forget in-flight populations."""
        self._entries.clear()
        for task in self._inflight.values():
            task.cancel()
        self._inflight.clear()

    async def get_or_populate(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        """
        Return the cached value for key, populating it with factory() on a miss.

        Args:
            key: Cache key (query signature or repository name)
            factory: Coroutine function producing the value

        Returns:
            The cached or freshly populated value
        """
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at > self._clock():
            track_cache("hit")
            return entry.value

        task = self._inflight.get(key)
        if task is None:
            track_cache("miss")
            logger.debug(f"Cache miss for {key}, populating")
            task = asyncio.create_task(self._populate(key, factory))
            self._inflight[key] = task
        else:
            track_cache("shared")
            logger.debug(f"Cache miss for {key}, joining in-flight population")

        # shield: a cancelled waiter must not abort the population for the others
        return await asyncio.shield(task)

    async def _populate(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        try:
            value = await factory()
            self.set(key, value)
            return value
        finally:
            self._inflight.pop(key, None)

    def stats(self) -> Dict[str, Any]:
        return {
            "entries": len(self._entries),
            "inflight": len(self._inflight),
            "ttl": self.ttl,
        }


def cached(cache: QueryCache, key_builder: Callable[..., str]):
    """
    Decorator for caching coroutine results in a QueryCache.

    Example:
        watchers = cached(cache, lambda repo: f"watchers:{repo}")(client.list_watchers)
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            key = key_builder(*args, **kwargs)
            return await cache.get_or_populate(key, lambda: func(*args, **kwargs))

        return wrapper

    return decorator
