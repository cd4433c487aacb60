from __future__ import annotations

import time
from collections.abc import Callable

import httpx

from ventasync.cache import TTLCache
from ventasync.config import SyncSettings
from ventasync.data_client import ResourceClient, SyncClient
from ventasync.events import ChangeNotifier
from ventasync.poller import ResourcePoller
from ventasync.scheduler import AsyncioScheduler, Scheduler


class SyncService:
    """
    Wires cache, scheduler, event bus, client and poller together.
    Build one per process (the gateway keeps it on app.state) or one per test.
    """

    def __init__(
        self,
        settings: SyncSettings | None = None,
        *,
        scheduler: Scheduler | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or SyncSettings.from_env()
        self.cache = TTLCache(
            ttl_s=self.settings.cache_ttl_s, max_size=self.settings.cache_max_size, clock=clock
        )
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or AsyncioScheduler(frame_s=self.settings.poll_frame_s)
        self.notifier = ChangeNotifier()
        self.client = SyncClient(
            self.settings, self.cache, self.scheduler, self.notifier, transport=transport
        )
        self.poller = ResourcePoller(
            self.client, self.scheduler, self.notifier, self.settings, clock=clock
        )

    def resource(self, name: str) -> ResourceClient:
        return self.client.resource(name)

    async def aclose(self) -> None:
        self.poller.close()
        await self.client.aclose()
        if self._owns_scheduler and isinstance(self.scheduler, AsyncioScheduler):
            await self.scheduler.aclose()

    async def __aenter__(self) -> SyncService:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
