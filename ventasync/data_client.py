"""
Fetch-with-cache client for the VentaSoft persistence backend.

Every read and write goes through SyncClient.request():

  read  (GET):  cache hit  -> return a copy now, refresh the entry in the background
                cache miss -> fetch, store, return
  write (other): fetch, then force-expire every cached read under /<resource>
                 and schedule a refresh of the canonical read /<resource>

Notes / Pitfalls:
- One attempt per call; failures propagate to the caller and are never cached.
- Backend answers {"error": "..."} with a non-2xx status on failure and
  {"success": bool, "message": str, ...} on mutations.
"""

from __future__ import annotations

import logging
import time
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ventasync.cache import TTLCache, make_cache_key
from ventasync.config import SyncSettings
from ventasync.errors import (
    MutationRejected,
    NetworkError,
    PayloadError,
    RequestTimeout,
    UnknownResource,
)
from ventasync.events import ChangeNotifier
from ventasync.observability import UPSTREAM_LATENCY, UPSTREAM_REQUESTS
from ventasync.refresher import BackgroundRefresher
from ventasync.scheduler import Scheduler
from ventasync.schemas import MutationResult

log = logging.getLogger("ventasync.data_client")

# Ask the backend (and anything between) not to serve stale copies
_NO_STORE_HEADERS = {
    "X-Requested-With": "XMLHttpRequest",
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
}


def resource_of(path: str) -> str:
    """ "/productos/agregar" -> "productos" """
    return path.split("?", 1)[0].strip("/").split("/", 1)[0]


def _upstream_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)
    return str(body)[:200]


class SyncClient:
    def __init__(
        self,
        settings: SyncSettings,
        cache: TTLCache,
        scheduler: Scheduler,
        notifier: ChangeNotifier,
        http: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.cache = cache
        self.scheduler = scheduler
        self.notifier = notifier
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            base_url=settings.api_url,
            timeout=settings.request_timeout_s,
            headers=_NO_STORE_HEADERS,
            transport=transport,
        )
        self.refresher = BackgroundRefresher(
            cache=cache,
            notifier=notifier,
            scheduler=scheduler,
            fetcher=self.get_json,
            timeout_s=settings.refresh_timeout_s,
        )

    # ------------------------------------------------------------------ reads/writes
    async def request(
        self,
        path: str,
        *,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json: Any = None,
        use_cache: bool = True,
        cache_key: str | None = None,
    ) -> Any:
        method = method.upper()
        resource = resource_of(path)
        is_read = method == "GET"
        caching = use_cache and self.settings.cache_enabled(resource)

        options: dict[str, Any] = {}
        if params:
            options["params"] = params
        if headers:
            options["headers"] = headers
        if json is not None:
            options["body"] = json
        key = cache_key or make_cache_key(path, options)

        if caching and is_read:
            hit = self.cache.get(key)
            if hit is not None:
                self.refresher.schedule(
                    path,
                    key,
                    resource,
                    request=_read_options(params, headers),
                    require_entry=True,
                )
                return hit

        timeout_s = self.settings.request_timeout_s
        data = await self._send(
            method, path, timeout_s=timeout_s, params=params, headers=headers, json=json
        )

        if is_read:
            if caching:
                self.cache.set(key, data)
        else:
            self._after_write(resource)
        return data

    async def get_json(
        self,
        path: str,
        *,
        timeout_s: float | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Plain GET with no cache involvement."""
        return await self._send(
            "GET",
            path,
            timeout_s=timeout_s or self.settings.request_timeout_s,
            params=params,
            headers=headers,
        )

    async def fetch_fresh(self, path: str) -> Any:
        """Direct read that skips the cache lookup but stores the result."""
        data = await self.get_json(path)
        self.store(path, data)
        return data

    def store(self, path: str, data: Any) -> bool:
        """Cache `data` as the plain read of `path`, if caching is on for its resource."""
        if not self.settings.cache_enabled(resource_of(path)):
            return False
        self.cache.set(make_cache_key(path), data)
        return True

    def cached(self, path: str) -> Any | None:
        return self.cache.get(make_cache_key(path))

    def _after_write(self, resource: str) -> None:
        if not resource:
            return
        base = f"/{resource}"
        n = self.cache.invalidate(base, prefix_match=True)
        log.debug("invalidated %d cache entries", n, extra={"resource": resource})
        if self.settings.cache_enabled(resource):
            self.refresher.schedule(
                base,
                make_cache_key(base),
                resource,
                delay_s=self.settings.write_refresh_delay_s,
            )

    async def _send(
        self,
        method: str,
        path: str,
        *,
        timeout_s: float,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json: Any = None,
    ) -> Any:
        resource = resource_of(path) or "-"
        start = time.perf_counter()
        try:
            resp = await self._http.request(
                method, path, params=params, headers=headers, json=json, timeout=timeout_s
            )
        except httpx.TimeoutException as e:
            UPSTREAM_REQUESTS.labels(method=method, resource=resource, outcome="timeout").inc()
            raise RequestTimeout(
                f"{method} {path} timed out after {timeout_s}s", path=path
            ) from e
        except httpx.RequestError as e:
            UPSTREAM_REQUESTS.labels(method=method, resource=resource, outcome="error").inc()
            raise NetworkError(f"{method} {path} failed: {e}", path=path) from e
        finally:
            UPSTREAM_LATENCY.observe(time.perf_counter() - start)

        if not resp.is_success:
            UPSTREAM_REQUESTS.labels(method=method, resource=resource, outcome="error").inc()
            raise NetworkError(
                f"{method} {path} -> {resp.status_code}: {_upstream_message(resp)}",
                path=path,
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            UPSTREAM_REQUESTS.labels(method=method, resource=resource, outcome="malformed").inc()
            raise PayloadError(
                f"{method} {path}: response is not valid JSON",
                path=path,
                status_code=resp.status_code,
            ) from e

        UPSTREAM_REQUESTS.labels(method=method, resource=resource, outcome="ok").inc()
        return data

    # ------------------------------------------------------------------ resources
    def resource(self, name: str) -> ResourceClient:
        name = (name or "").strip().lower()
        if name not in self.settings.resources:
            raise UnknownResource(name)
        return ResourceClient(self, name)

    async def aclose(self) -> None:
        await self.refresher.aclose()
        if self._owns_http:
            await self._http.aclose()


def _read_options(
    params: dict[str, Any] | None, headers: dict[str, str] | None
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if params:
        out["params"] = params
    if headers:
        out["headers"] = headers
    return out


class ResourceClient:
    """CRUD helpers for one backend collection (ventas, productos, usuarios, pedidos)."""

    def __init__(self, client: SyncClient, name: str):
        self.client = client
        self.name = name
        self.path = f"/{name}"

    def __repr__(self) -> str:
        return f"ResourceClient({self.name!r})"

    async def obtener(self) -> Any:
        return await self.client.request(self.path)

    async def guardar(self, items: list[dict[str, Any]]) -> dict[str, Any]:
        """Replace the whole collection."""
        return await self._mutate("POST", self.path, items)

    async def agregar(self, item: dict[str, Any]) -> dict[str, Any]:
        return await self._mutate("POST", f"{self.path}/agregar", item)

    async def actualizar(self, item_id: str | int, item: dict[str, Any]) -> dict[str, Any]:
        return await self._mutate("PUT", f"{self.path}/{quote(str(item_id), safe='')}", item)

    async def eliminar(self, item_id: str | int) -> dict[str, Any]:
        return await self._mutate("DELETE", f"{self.path}/{quote(str(item_id), safe='')}")

    async def _mutate(self, method: str, path: str, body: Any = None) -> dict[str, Any]:
        data = await self.client.request(
            path,
            method=method,
            headers={"Content-Type": "application/json"},
            json=body,
            use_cache=False,
        )
        if not isinstance(data, dict):
            raise PayloadError(f"{method} {path}: expected a mutation envelope", path=path)
        try:
            result = MutationResult.model_validate(data)
        except ValidationError as e:
            raise PayloadError(f"{method} {path}: invalid mutation envelope: {e}", path=path) from e
        if not result.success:
            raise MutationRejected(result.message or f"{method} {path} rejected", path=path)
        return data
