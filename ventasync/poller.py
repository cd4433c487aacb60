# ventasync/poller.py
# Purpose: Per-resource polling loop that calls a subscriber only when the payload changes.
# Why: Consumers stay current with backend edits made elsewhere without reloading everything.
# Pitfalls:
# - One subscription per resource; a second start_polling() replaces the first.
# - A cycle that finds the resource mid-fetch is skipped, not queued.

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ventasync.cache import canonical_json
from ventasync.config import SyncSettings
from ventasync.data_client import SyncClient
from ventasync.errors import SyncError
from ventasync.events import ChangeEvent, ChangeNotifier
from ventasync.observability import POLL_CYCLES
from ventasync.scheduler import CancelToken, Scheduler

log = logging.getLogger("ventasync.poller")

_UNSET = object()


@dataclass(eq=False)
class PollSubscription:
    resource: str
    callback: Callable[[Any], Any]
    interval_s: float
    last_payload: Any = _UNSET
    last_encoded: str | None = None
    busy: bool = False
    last_fetch_at: float | None = None
    token: CancelToken | None = field(default=None, repr=False)
    active: bool = True


class ResourcePoller:
    def __init__(
        self,
        client: SyncClient,
        scheduler: Scheduler,
        notifier: ChangeNotifier,
        settings: SyncSettings,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.scheduler = scheduler
        self.settings = settings
        self._clock = clock
        self._subs: dict[str, PollSubscription] = {}
        self._unsubscribe = notifier.subscribe(self._on_change)

    def is_polling(self, resource: str) -> bool:
        return resource in self._subs

    def active(self) -> list[str]:
        return sorted(self._subs)

    def subscription(self, resource: str) -> PollSubscription | None:
        return self._subs.get(resource)

    def snapshot(self, resource: str) -> Any | None:
        """Copy of the last payload delivered for `resource`, or None."""
        sub = self._subs.get(resource)
        if sub is None or sub.last_payload is _UNSET:
            return None
        return copy.deepcopy(sub.last_payload)

    def start_polling(
        self, resource: str, callback: Callable[[Any], Any], interval_s: float | None = None
    ) -> bool:
        """
        Fetch `resource` now and then every `interval_s` seconds (at least),
        calling `callback(payload)` whenever the payload differs from the last one.
        Returns False when polling is disabled for the resource.
        """
        if not self.settings.polling_enabled(resource):
            log.info("polling disabled", extra={"resource": resource})
            return False

        if interval_s is not None and interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        interval = self.settings.poll_interval(resource) if interval_s is None else interval_s
        previous = self._subs.get(resource)
        if previous is not None:
            log.info("replacing poll subscription", extra={"resource": resource})
            self._teardown(previous)

        sub = PollSubscription(resource=resource, callback=callback, interval_s=interval)
        self._subs[resource] = sub
        log.info("polling every %ss", interval, extra={"resource": resource})

        self.scheduler.spawn(self._cycle(sub), name=f"poll:{resource}")
        sub.token = self.scheduler.schedule_repeating(interval, lambda: self._cycle(sub))
        return True

    def stop_polling(self, resource: str) -> bool:
        """Idempotent: stopping an unknown or already stopped resource is a no-op."""
        sub = self._subs.pop(resource, None)
        if sub is None:
            return False
        self._teardown(sub)
        log.info("polling stopped", extra={"resource": resource})
        return True

    def stop_all_polling(self) -> None:
        for resource in list(self._subs):
            self.stop_polling(resource)

    def close(self) -> None:
        self.stop_all_polling()
        self._unsubscribe()

    async def poll_once(self, resource: str) -> bool:
        """Run one fetch-and-diff cycle now. Returns True when the payload changed."""
        sub = self._subs.get(resource)
        if sub is None:
            return False
        return await self._cycle(sub)

    async def _cycle(self, sub: PollSubscription) -> bool:
        if not sub.active:
            return False
        if sub.busy:
            POLL_CYCLES.labels(resource=sub.resource, outcome="skipped").inc()
            return False

        path = f"/{sub.resource}"
        sub.busy = True
        try:
            now = self._clock()
            payload = None
            # dedupe bursts: reuse our own fetch from the last few seconds
            recent = sub.last_fetch_at is not None and (
                now - sub.last_fetch_at < self.settings.recent_window_s
            )
            if recent:
                payload = self.client.cached(path)
            if payload is None:
                payload = await self.client.get_json(path)
                sub.last_fetch_at = now
                # a stopped or replaced subscription must not touch the cache
                if self._is_current(sub):
                    self.client.store(path, payload)
        except SyncError as e:
            POLL_CYCLES.labels(resource=sub.resource, outcome="error").inc()
            log.warning("poll cycle failed: %s", e, extra={"resource": sub.resource})
            return False
        finally:
            sub.busy = False

        changed = self._offer(sub, payload)
        outcome = "changed" if changed else "unchanged"
        POLL_CYCLES.labels(resource=sub.resource, outcome=outcome).inc()
        return changed

    def _offer(self, sub: PollSubscription, payload: Any) -> bool:
        # stopped or replaced while the fetch was in flight
        if not self._is_current(sub):
            return False
        encoded = canonical_json(payload)
        if encoded == sub.last_encoded:
            return False
        sub.last_encoded = encoded
        sub.last_payload = copy.deepcopy(payload)
        self.scheduler.call_soon(self._deliver, sub, copy.deepcopy(payload))
        return True

    def _is_current(self, sub: PollSubscription) -> bool:
        return sub.active and self._subs.get(sub.resource) is sub

    def _deliver(self, sub: PollSubscription, payload: Any) -> Any:
        if not sub.active:
            return None
        return sub.callback(payload)

    def _on_change(self, event: ChangeEvent) -> None:
        # single-item refreshes ("/ventas/3") are not the collection we diff against
        if event.path and event.path != f"/{event.resource}":
            return
        sub = self._subs.get(event.resource)
        if sub is not None:
            self._offer(sub, event.payload)

    @staticmethod
    def _teardown(sub: PollSubscription) -> None:
        sub.active = False
        if sub.token is not None:
            sub.token.cancel()
