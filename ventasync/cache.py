# ventasync/cache.py
# Purpose: Bounded in-memory TTL cache for backend reads.
# Why: Serve repeat reads instantly and let writes force-expire related entries.
# Pitfalls: Not persistent; one instance per process. Eviction is oldest-by-timestamp, not LRU.

from __future__ import annotations

import copy
import json
import re
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from ventasync.observability import CACHE_EVICTIONS, CACHE_LOOKUPS


def canonical_json(value: Any) -> str:
    """Compact, key-sorted JSON. 1, 1.0 and true encode differently."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def make_cache_key(path: str, options: Mapping[str, Any] | None = None) -> str:
    """Deterministic key for a request: "<path>:<canonical JSON of options>"."""
    return f"{path}:{canonical_json(dict(options or {}))}"


def _segment_pattern(fragment: str) -> re.Pattern[str]:
    # "/productos" hits "/productos:{}" and "/productos/7:{}", never "/productosXYZ:{}"
    lead = "" if fragment.startswith("/") else r"(?<![^/])"
    trail = "" if fragment.endswith(("/", ":")) else r"(?=$|[/:?])"
    return re.compile(lead + re.escape(fragment) + trail)


@dataclass
class CacheEntry:
    key: str
    value: Any
    stored_at: float


class TTLCache:
    def __init__(
        self,
        ttl_s: float = 300.0,
        max_size: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.ttl_s = ttl_s
        self.max_size = max_size
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        # bumped by clear(); lets detached refreshes detect they are stale
        self.generation = 0
        self._hits = 0
        self._misses = 0
        self._expirations = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    @property
    def size(self) -> int:
        return len(self._entries)

    def keys(self) -> list[str]:
        return list(self._entries)

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.stored_at > self.ttl_s

    def get(self, key: str) -> Any | None:
        """Return a copy of the cached value, or None if absent/expired."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            CACHE_LOOKUPS.labels(result="miss").inc()
            return None
        now = self._clock()
        if self._expired(entry, now):
            del self._entries[key]
            self._misses += 1
            self._expirations += 1
            CACHE_LOOKUPS.labels(result="expired").inc()
            return None
        entry.stored_at = now
        self._hits += 1
        CACHE_LOOKUPS.labels(result="hit").inc()
        return copy.deepcopy(entry.value)

    def set(self, key: str, value: Any) -> None:
        """Store a copy of value; evict the oldest entry if full and key is new."""
        stored = copy.deepcopy(value)
        if key not in self._entries and len(self._entries) >= self.max_size:
            self._evict_oldest()
        self._entries[key] = CacheEntry(key=key, value=stored, stored_at=self._clock())

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate(self, key: str, prefix_match: bool = False) -> int:
        """
        Force-expire entries so the next get() is a miss.
        prefix_match=False: only the exact key.
        prefix_match=True: every key containing `key` at a path-segment boundary.
        Returns the number of entries touched.
        """
        expired_at = self._clock() - self.ttl_s - 1.0
        if not prefix_match:
            entry = self._entries.get(key)
            if entry is None:
                return 0
            entry.stored_at = expired_at
            return 1

        pattern = _segment_pattern(key)
        touched = 0
        for cache_key, entry in self._entries.items():
            if pattern.search(cache_key):
                entry.stored_at = expired_at
                touched += 1
        return touched

    def clear(self) -> None:
        self._entries.clear()
        self.generation += 1

    def _evict_oldest(self) -> None:
        if not self._entries:
            return
        oldest = min(self._entries.values(), key=lambda e: e.stored_at)
        del self._entries[oldest.key]
        self._evictions += 1
        CACHE_EVICTIONS.inc()

    def stats(self) -> dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "ttl_s": self.ttl_s,
            "hits": self._hits,
            "misses": self._misses,
            "expirations": self._expirations,
            "evictions": self._evictions,
            "hit_ratio": round(self._hits / lookups, 4) if lookups else 0.0,
        }
