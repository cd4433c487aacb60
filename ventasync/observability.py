# ventasync/observability.py
from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# ---- Gateway HTTP metrics (low-cardinality labels) ----
REQUEST_COUNT = Counter(
    "vs_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_LATENCY = Histogram(
    "vs_http_request_duration_seconds",
    "HTTP request latency (seconds)",
    buckets=(0.005, 0.01, 0.02, 0.05, 0.1, 0.2, 0.5, 1.0, 2.5, 5.0),
)

# ---- Sync layer metrics ----
CACHE_LOOKUPS = Counter(
    "vs_cache_lookups_total",
    "Cache lookups by result",
    ["result"],  # hit | miss | expired
)

CACHE_EVICTIONS = Counter(
    "vs_cache_evictions_total",
    "Entries evicted because the cache was full",
)

UPSTREAM_REQUESTS = Counter(
    "vs_upstream_requests_total",
    "Requests sent to the persistence backend",
    ["method", "resource", "outcome"],
)

UPSTREAM_LATENCY = Histogram(
    "vs_upstream_request_duration_seconds",
    "Backend request latency (seconds)",
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

REFRESHES = Counter(
    "vs_background_refreshes_total",
    "Background cache refreshes by outcome",
    ["outcome"],  # ok | error | discarded
)

POLL_CYCLES = Counter(
    "vs_poll_cycles_total",
    "Poll cycles by resource and outcome",
    ["resource", "outcome"],  # changed | unchanged | skipped | error
)


def metrics_endpoint():
    """Return Prometheus exposition format."""
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


# ---- Per-request timing + JSON request log ----
async def timing_middleware(request: Request, call_next: Callable):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - start

    # route template keeps the path label bounded (/api/v1/resources/{resource})
    route = request.scope.get("route")
    path = getattr(route, "path", None) or request.url.path
    status = str(response.status_code)

    REQUEST_COUNT.labels(method=request.method, path=path, status=status).inc()
    REQUEST_LATENCY.observe(elapsed)

    logging.getLogger("request").info(
        json.dumps(
            {
                "method": request.method,
                "path": request.url.path,
                "status": status,
                "duration_s": round(elapsed, 6),
                "client": request.client.host if request.client else None,
            }
        )
    )
    return response
