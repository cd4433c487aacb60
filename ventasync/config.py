# ventasync/config.py
# Purpose: Static configuration for the sync layer (cache, poller, timeouts).
# Why: Every component reads its knobs from one frozen object so tests can build their own.
# Pitfalls: Values are read once at construction; changing env vars later has no effect.

from __future__ import annotations

import os
from dataclasses import dataclass, field

RESOURCES: tuple[str, ...] = ("ventas", "productos", "usuarios", "pedidos")

_DEFAULT_POLL_INTERVALS = "ventas=20,productos=60,usuarios=120,pedidos=30"


def _csv_set(raw: str | None) -> frozenset[str]:
    return frozenset(p.strip().lower() for p in (raw or "").split(",") if p.strip())


def _parse_intervals(raw: str | None) -> dict[str, float]:
    """Parse "ventas=20,productos=60" into {"ventas": 20.0, "productos": 60.0}."""
    out: dict[str, float] = {}
    for part in (raw or "").split(","):
        if "=" not in part:
            continue
        name, value = part.split("=", 1)
        try:
            out[name.strip().lower()] = float(value)
        except ValueError:
            raise ValueError(f"invalid poll interval for {name.strip()!r}: {value!r}") from None
    return out


@dataclass(frozen=True)
class SyncSettings:
    api_url: str = "http://localhost:3001/api"
    resources: tuple[str, ...] = RESOURCES

    # cache
    cache_ttl_s: float = 300.0
    cache_max_size: int = 100
    cache_disabled: frozenset[str] = frozenset()

    # poller
    poll_default_s: float = 30.0
    poll_intervals: dict[str, float] = field(
        default_factory=lambda: _parse_intervals(_DEFAULT_POLL_INTERVALS)
    )
    poll_disabled: frozenset[str] = frozenset()
    poll_frame_s: float = 0.05
    recent_window_s: float = 5.0

    # network
    request_timeout_s: float = 5.0
    refresh_timeout_s: float = 10.0
    write_refresh_delay_s: float = 0.1

    def cache_enabled(self, resource: str) -> bool:
        return resource in self.resources and resource not in self.cache_disabled

    def polling_enabled(self, resource: str) -> bool:
        return resource in self.resources and resource not in self.poll_disabled

    def poll_interval(self, resource: str) -> float:
        return self.poll_intervals.get(resource, self.poll_default_s)

    @classmethod
    def from_env(cls) -> SyncSettings:
        return cls(
            api_url=os.getenv("VS_API_URL", cls.api_url).rstrip("/"),
            cache_ttl_s=float(os.getenv("VS_CACHE_TTL_SEC", "300")),
            cache_max_size=int(os.getenv("VS_CACHE_MAX_SIZE", "100")),
            cache_disabled=_csv_set(os.getenv("VS_CACHE_DISABLED")),
            poll_default_s=float(os.getenv("VS_POLL_DEFAULT_SEC", "30")),
            poll_intervals=_parse_intervals(
                os.getenv("VS_POLL_INTERVALS", _DEFAULT_POLL_INTERVALS)
            ),
            poll_disabled=_csv_set(os.getenv("VS_POLL_DISABLED")),
            poll_frame_s=float(os.getenv("VS_POLL_FRAME_SEC", "0.05")),
            recent_window_s=float(os.getenv("VS_RECENT_WINDOW_SEC", "5")),
            request_timeout_s=float(os.getenv("VS_REQUEST_TIMEOUT_SEC", "5")),
            refresh_timeout_s=float(os.getenv("VS_REFRESH_TIMEOUT_SEC", "10")),
            write_refresh_delay_s=float(os.getenv("VS_WRITE_REFRESH_DELAY_SEC", "0.1")),
        )
