"""Shared fixtures: an in-memory backend behind httpx.MockTransport, a fake clock
and a scheduler whose repeating jobs only fire when a test says so."""

from __future__ import annotations

import asyncio
import copy
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from ventasync.config import SyncSettings
from ventasync.scheduler import AsyncioScheduler, CancelToken
from ventasync.service import SyncService

API_URL = "http://backend.test/api"


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualScheduler(AsyncioScheduler):
    """Real spawn/call_soon; repeating jobs are recorded and fired by hand."""

    def __init__(self):
        super().__init__(frame_s=0.01)
        self.jobs: list[tuple[float, Callable[[], Any], CancelToken]] = []

    def schedule_repeating(self, interval_s: float, callback: Callable[[], Any]) -> CancelToken:
        token = CancelToken()
        self.jobs.append((interval_s, callback, token))
        return token

    def live_jobs(self) -> list[tuple[float, Callable[[], Any], CancelToken]]:
        return [job for job in self.jobs if not job[2].cancelled]

    def fire(self) -> None:
        for _interval, callback, token in self.live_jobs():
            self._run_callback(callback, ())

    async def settle(self) -> None:
        """Run spawned tasks and deferred callbacks until nothing is left."""
        for _ in range(10):
            tasks = list(self._tasks)
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            for _ in range(3):
                await asyncio.sleep(0)
            if not self._tasks:
                break


class FakeBackend:
    """Mimics the VentaSoft JSON-file CRUD server."""

    def __init__(self):
        self.data: dict[str, list[dict[str, Any]]] = {
            "ventas": [{"id": "V1", "total": 15990}, {"id": "V2", "total": 4990}],
            "productos": [
                {"id": "P1", "nombre": "Teclado"},
                {"id": "P2", "nombre": "Mouse"},
                {"id": "P3", "nombre": "Monitor"},
            ],
            "usuarios": [{"id": "U1", "nombre": "Ana"}],
            "pedidos": [],
        }
        self.calls: list[tuple[str, str]] = []
        self._fail: dict[str, list[int]] = {}
        self.malformed: set[str] = set()
        self.bare_list: set[str] = set()
        self.timeouts: set[str] = set()
        self.down = False
        self.reject_mutations = False
        self.gate: asyncio.Event | None = None
        self.entered: asyncio.Event | None = None

    def fail_next(self, path: str, status: int = 500, times: int = 1) -> None:
        self._fail.setdefault(path, []).extend([status] * times)

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, p in self.calls if m == method and p == path)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.calls.append((method, path))
        if self.entered is not None:
            self.entered.set()
        if self.gate is not None:
            await self.gate.wait()

        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        if path in self.timeouts:
            raise httpx.ReadTimeout("timed out", request=request)
        pending = self._fail.get(path)
        if pending:
            status = pending.pop(0)
            return httpx.Response(status, json={"error": f"Error en {path}"})
        if path in self.malformed:
            return httpx.Response(200, text="<html>oops</html>")
        if path in self.bare_list:
            return httpx.Response(200, json=[])

        parts = path.removeprefix("/api/").split("/")
        resource = parts[0]
        if resource not in self.data:
            return httpx.Response(404, json={"error": "no existe"})
        items = self.data[resource]
        body = json.loads(request.content) if request.content else None

        if method == "GET" and len(parts) == 1:
            return httpx.Response(200, json=copy.deepcopy(items))
        if self.reject_mutations:
            return httpx.Response(200, json={"success": False, "message": "rechazado"})
        if method == "POST" and len(parts) == 1:
            self.data[resource] = body
            return httpx.Response(200, json={"success": True, "message": "actualizados"})
        if method == "POST" and parts[1] == "agregar":
            items.append(body)
            return httpx.Response(
                200, json={"success": True, "message": "agregado", resource: copy.deepcopy(items)}
            )
        if method == "PUT":
            for i, item in enumerate(items):
                if str(item.get("id")) == parts[1]:
                    items[i] = {**item, **body}
                    return httpx.Response(
                        200,
                        json={"success": True, "message": "actualizado", resource: items},
                    )
            return httpx.Response(200, json={"success": False, "message": "no encontrado"})
        if method == "DELETE":
            self.data[resource] = [it for it in items if str(it.get("id")) != parts[1]]
            return httpx.Response(
                200, json={"success": True, "message": "eliminado", resource: self.data[resource]}
            )
        return httpx.Response(405, json={"error": "method not allowed"})


async def drain(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settings() -> SyncSettings:
    return SyncSettings(
        api_url=API_URL,
        cache_ttl_s=300.0,
        cache_max_size=100,
        poll_default_s=30.0,
        request_timeout_s=1.0,
        refresh_timeout_s=1.0,
        write_refresh_delay_s=0.0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def service(settings, scheduler, backend, clock):
    svc = SyncService(settings, scheduler=scheduler, transport=backend.transport(), clock=clock)
    yield svc
    await svc.aclose()
    await scheduler.aclose()
