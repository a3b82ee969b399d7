"""TTL cache with in-flight deduplication for order queries.

Concurrent callers asking for the same key share one pending fetch. Fresh
results are served from memory until they age past the TTL. Failures are
never cached, so the next caller retries.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from app.config import settings

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class CacheEntry:
    data: Any
    timestamp: float


class QueryCache:
    def __init__(
        self,
        default_ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = settings.query_cache_ttl_seconds if default_ttl is None else default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Future] = {}

    def get_cached(self, key: str, ttl: float | None = None) -> tuple[bool, Any]:
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        ttl = self.default_ttl if ttl is None else ttl
        if self._clock() - entry.timestamp > ttl:
            del self._entries[key]
            return False, None
        return True, entry.data

    def set_cached(self, key: str, data: Any) -> None:
        self._entries[key] = CacheEntry(data=data, timestamp=self._clock())

    def is_inflight(self, key: str) -> bool:
        return key in self._inflight

    async def cached_fetch(self, key: str, fetcher: Callable[[], Awaitable[T]], ttl: float | None = None) -> T:
        hit, data = self.get_cached(key, ttl)
        if hit:
            return data

        pending = self._inflight.get(key)
        if pending is None:
            # The fetch runs in its own task so no single caller's cancellation reaches the others.
            pending = asyncio.ensure_future(fetcher())
            self._inflight[key] = pending
            pending.add_done_callback(lambda task: self._settle(key, task))
        return await asyncio.shield(pending)

    def _settle(self, key: str, task: asyncio.Future) -> None:
        failed = task.cancelled() or task.exception() is not None
        # An invalidation during the fetch unregisters it; its result is then not cached.
        if self._inflight.get(key) is not task:
            return
        del self._inflight[key]
        if not failed:
            self.set_cached(key, task.result())

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)
        self._inflight.pop(key, None)

    def invalidate_by_prefix(self, prefix: str) -> int:
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        for key in [key for key in self._inflight if key.startswith(prefix)]:
            del self._inflight[key]
        if keys:
            logger.debug('Invalidated %d cache entries with prefix %r', len(keys), prefix)
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()
        self._inflight.clear()


query_cache = QueryCache()
