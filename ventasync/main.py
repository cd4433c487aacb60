# ventasync/main.py
from __future__ import annotations

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from ventasync.config import SyncSettings
from ventasync.errors import envelope_from_http_exception
from ventasync.logging_conf import setup_logging

# --- Observability ---
from ventasync.observability import metrics_endpoint, timing_middleware

# --- Routers ---
from ventasync.routers import cache, resources
from ventasync.routes_stream import StreamHub
from ventasync.routes_stream import router as stream_router
from ventasync.schemas import HealthResponse, VersionResponse
from ventasync.service import SyncService
from ventasync.utils import utc_now_iso
from ventasync.version import SERVICE_VERSION, version_payload


def create_app(
    settings: SyncSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    Build the gateway. The SyncService is created on startup and closed on shutdown;
    pass `transport` to point the backend client at a mock in tests.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        service = SyncService(settings, transport=transport)
        app.state.sync = service
        app.state.hub = StreamHub(service.poller)
        try:
            yield
        finally:
            await service.aclose()

    app = FastAPI(title="VentaSync", version=SERVICE_VERSION, lifespan=lifespan)

    # --- Include routers ---
    app.include_router(resources.router)
    app.include_router(cache.router)
    app.include_router(stream_router)

    # --- Observability ---
    app.middleware("http")(timing_middleware)

    @app.exception_handler(HTTPException)
    async def error_envelope(request: Request, exc: HTTPException):
        body = envelope_from_http_exception(exc)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))

    # --- Utility endpoints ---

    @app.get("/health", response_model=HealthResponse)
    def health(request: Request):
        service: SyncService = request.app.state.sync
        return HealthResponse(
            status="ok",
            as_of=utc_now_iso(),
            polling=service.poller.active(),
            cache_size=service.cache.size,
        )

    @app.get("/version", response_model=VersionResponse)
    def version(request: Request):
        service: SyncService = request.app.state.sync
        return VersionResponse(**version_payload(service.settings.api_url))

    @app.get("/metrics")
    def metrics():
        return metrics_endpoint()

    return app


# --- App ---
setup_logging()
app = create_app()
