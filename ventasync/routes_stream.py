# ventasync/routes_stream.py
from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from ventasync.deps import get_hub, get_service
from ventasync.errors import SyncError, http_error, http_error_from_sync
from ventasync.poller import ResourcePoller
from ventasync.schemas import ChangeMessage, ErrorCode
from ventasync.service import SyncService
from ventasync.utils import utc_now_iso

router = APIRouter(tags=["stream"])
log = logging.getLogger("ventasync.stream")

_KEEPALIVE_SEC = 15.0
_QUEUE_SIZE = 16


class StreamHub:
    """
    Fans one poll subscription per resource out to every connected SSE client.
    Polling starts with the first listener and stops when the last one leaves.
    """

    def __init__(self, poller: ResourcePoller):
        self.poller = poller
        self._queues: dict[str, set[asyncio.Queue]] = {}

    def listeners(self, resource: str) -> int:
        return len(self._queues.get(resource, ()))

    def attach(self, resource: str, interval_s: float | None = None) -> asyncio.Queue | None:
        queue: asyncio.Queue = asyncio.Queue(maxsize=_QUEUE_SIZE)
        if resource not in self._queues:
            started = self.poller.start_polling(
                resource, lambda payload: self._fan_out(resource, payload), interval_s
            )
            if not started:
                return None
            self._queues[resource] = set()
        else:
            # late joiner gets the current state right away
            current = self.poller.snapshot(resource)
            if current is not None:
                queue.put_nowait(current)
        self._queues[resource].add(queue)
        return queue

    def detach(self, resource: str, queue: asyncio.Queue) -> None:
        queues = self._queues.get(resource)
        if queues is None:
            return
        queues.discard(queue)
        if not queues:
            del self._queues[resource]
            self.poller.stop_polling(resource)

    def _fan_out(self, resource: str, payload: Any) -> None:
        for queue in list(self._queues.get(resource, ())):
            if queue.full():
                # slow consumer: keep the newest state, drop the oldest
                queue.get_nowait()
            queue.put_nowait(payload)


@router.get("/api/v1/stream/{resource}")
async def stream_changes(
    request: Request,
    resource: str,
    interval_s: float | None = Query(None, gt=0, description="Poll interval override"),
    max_events: int | None = Query(None, ge=1, description="Close after N change events"),
    service: SyncService = Depends(get_service),
    hub: StreamHub = Depends(get_hub),
) -> StreamingResponse:
    """
    Server-Sent Events stream of `resource` changes: `data: {resource, as_of, payload}\\n\\n`.
    The first event carries the current payload; later ones only arrive when it changes.
    """
    try:
        name = service.resource(resource).name
    except SyncError as e:
        raise http_error_from_sync(e)

    queue = hub.attach(name, interval_s)
    if queue is None:
        raise http_error(
            ErrorCode.POLLING_DISABLED, f"polling is disabled for {name}", http_status=409
        )

    async def event_gen():
        sent = 0
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    payload = await asyncio.wait_for(queue.get(), timeout=_KEEPALIVE_SEC)
                except TimeoutError:
                    # comment frame keeps proxies from closing an idle stream
                    yield ": keep-alive\n\n"
                    continue

                msg = ChangeMessage(resource=name, as_of=utc_now_iso(), payload=payload)
                yield f"data: {msg.model_dump_json()}\n\n"

                sent += 1
                if max_events is not None and sent >= max_events:
                    break
        finally:
            hub.detach(name, queue)

    return StreamingResponse(event_gen(), media_type="text/event-stream")
