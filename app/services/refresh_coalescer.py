from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from app.auth import Audience
from app.config import settings

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]
ResultListener = Callable[[Audience, Any], None]


class RefreshCoalescer:
    """Trailing-edge debounce of list refreshes, one timer per audience.

    Refreshes for one audience never overlap: a firing that lands while a
    refresh is running queues exactly one follow-up run.
    """

    def __init__(
        self,
        fetchers: Mapping[Audience, Fetcher],
        *,
        window: float | None = None,
        on_result: ResultListener | None = None,
    ) -> None:
        self.fetchers = dict(fetchers)
        self.window = settings.refresh_debounce_seconds if window is None else window
        self.on_result = on_result
        self._timers: dict[Audience, asyncio.TimerHandle] = {}
        self._running: dict[Audience, asyncio.Task] = {}
        self._rerun: set[Audience] = set()
        self._closed = False

    def schedule(self, audience: Audience) -> None:
        if self._closed or audience not in self.fetchers:
            return
        loop = asyncio.get_running_loop()
        timer = self._timers.pop(audience, None)
        if timer is not None:
            timer.cancel()
        self._timers[audience] = loop.call_later(self.window, self._fire, audience)

    def is_pending(self, audience: Audience) -> bool:
        return audience in self._timers

    def is_running(self, audience: Audience) -> bool:
        task = self._running.get(audience)
        return task is not None and not task.done()

    def _fire(self, audience: Audience) -> None:
        self._timers.pop(audience, None)
        self._start(audience)

    def _start(self, audience: Audience) -> asyncio.Task:
        task = self._running.get(audience)
        if task is not None and not task.done():
            self._rerun.add(audience)
            return task
        task = asyncio.get_running_loop().create_task(self._run(audience))
        self._running[audience] = task
        return task

    def refresh_now(self, audience: Audience) -> asyncio.Task | None:
        """Run a refresh immediately, outside the debounce window."""
        if self._closed or audience not in self.fetchers:
            return None
        timer = self._timers.pop(audience, None)
        if timer is not None:
            timer.cancel()
        return self._start(audience)

    async def _run(self, audience: Audience) -> None:
        fetcher = self.fetchers[audience]
        while True:
            try:
                result = await fetcher()
                if not self._closed and self.on_result is not None:
                    self.on_result(audience, result)
            except Exception:
                logger.warning('Refresh for %s audience failed', audience.value, exc_info=True)

            if self._closed or audience not in self._rerun:
                break
            self._rerun.discard(audience)

        if self._running.get(audience) is asyncio.current_task():
            del self._running[audience]

    def cancel_all(self) -> None:
        self._closed = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._rerun.clear()
        self.fetchers.clear()
