# ventasync/refresher.py
# Purpose: Re-fetch cached reads in the background and publish the new payload.
# Why: A cache hit answers instantly; the refresh keeps the next read fresh.
# Pitfalls: Last response wins (no versioning). Failures are logged and dropped.

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ventasync.cache import TTLCache
from ventasync.errors import SyncError
from ventasync.events import ChangeEvent, ChangeNotifier
from ventasync.observability import REFRESHES
from ventasync.scheduler import Scheduler

log = logging.getLogger("ventasync.refresher")

# fetcher(path, timeout_s=..., params=..., headers=...) -> decoded JSON
Fetcher = Callable[..., Awaitable[Any]]


class BackgroundRefresher:
    def __init__(
        self,
        cache: TTLCache,
        notifier: ChangeNotifier,
        scheduler: Scheduler,
        fetcher: Fetcher,
        timeout_s: float = 10.0,
    ):
        self.cache = cache
        self.notifier = notifier
        self.scheduler = scheduler
        self.fetcher = fetcher
        self.timeout_s = timeout_s
        self._closed = False
        self._inflight: set[asyncio.Task] = set()

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def schedule(
        self,
        path: str,
        cache_key: str,
        resource: str,
        delay_s: float = 0.0,
        request: dict[str, Any] | None = None,
        require_entry: bool = False,
    ) -> asyncio.Task | None:
        """
        Fire-and-forget refresh of `path` into `cache_key`.
        With require_entry=True the result is dropped if the entry left the cache
        (delete() or an expired get()) while the request was in flight.
        """
        if self._closed:
            return None
        task = self.scheduler.spawn(
            self._run(
                path,
                cache_key,
                resource,
                delay_s,
                request or {},
                self.cache.generation,
                require_entry,
            ),
            name=f"refresh:{cache_key}",
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _run(
        self,
        path: str,
        cache_key: str,
        resource: str,
        delay_s: float,
        request: dict[str, Any],
        generation: int,
        require_entry: bool = False,
    ) -> None:
        if delay_s > 0:
            await asyncio.sleep(delay_s)
        try:
            data = await self.fetcher(path, timeout_s=self.timeout_s, **request)
        except SyncError as e:
            REFRESHES.labels(outcome="error").inc()
            log.warning(
                "background refresh failed: %s",
                e,
                extra={"resource": resource, "cache_key": cache_key},
            )
            return

        # torn down (closed, cache cleared or entry removed) while the request was in flight
        gone = require_entry and cache_key not in self.cache
        if self._closed or generation != self.cache.generation or gone:
            REFRESHES.labels(outcome="discarded").inc()
            log.debug("discarding refresh result", extra={"cache_key": cache_key})
            return

        self.cache.set(cache_key, data)
        REFRESHES.labels(outcome="ok").inc()
        self.notifier.emit(ChangeEvent(resource=resource, payload=data, path=path))

    async def aclose(self) -> None:
        self._closed = True
        tasks = list(self._inflight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
