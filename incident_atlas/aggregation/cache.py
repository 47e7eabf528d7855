"""
Incident Atlas - Result Cache

Short-TTL in-memory cache of aggregation results, keyed by quantized
geography plus a canonical filter signature so that small pans and
re-renders of the same view hit the cache.

Entries expire by TTL only. When the cache is full, the entries closest to
expiry are evicted first. All mutation and iteration happen under a lock;
concurrent callers asking for the same missing key share one computation.

Usage:
    from incident_atlas.aggregation.cache import ResultCache, build_cache_key

    cache = ResultCache(ttl_seconds=300, max_entries=100)
    key = build_cache_key(filter, step=0.001)
    result = await cache.get_or_compute(key, lambda: aggregator.aggregate(filter))
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from incident_atlas.aggregation.filters import AggregationFilter, PolygonScope
from incident_atlas.shared.geo import BoundingBox

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: float


def _quantize(value: float, step: float) -> float:
    return round(round(value / step) * step, 6)


def scope_signature(scope: BoundingBox | PolygonScope | None, step: float) -> str:
    """Quantized representation of a geographic scope."""
    if scope is None:
        return "city"
    if isinstance(scope, BoundingBox):
        return "bbox:" + ",".join(f"{v:.6f}" for v in scope.quantize(step))

    vertices = [
        f"{_quantize(lon, step):.6f} {_quantize(lat, step):.6f}"
        for polygon in scope.polygons
        for ring in polygon
        for lon, lat in ring
    ]
    digest = hashlib.sha1(";".join(vertices).encode()).hexdigest()
    return f"poly:{digest[:16]}"


def build_cache_key(filter: AggregationFilter, step: float = 0.001, prefix: str = "agg") -> str:
    """
    Cache key of an aggregation filter.

    Args:
        filter: The aggregation filter
        step: Grid step in degrees the scope is snapped to (0.001 is ~110 m)
        prefix: Kind of value cached under the key

    Returns:
        "<prefix>|<scope>|<filter signature>"
    """
    return f"{prefix}|{scope_signature(filter.scope, step)}|{filter.signature()}"


class ResultCache:
    """Thread-safe TTL cache with in-flight request deduplication."""

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int = 100,
        clock: Clock | None = None,
    ):
        if max_entries < 1:
            raise ValueError(f"max_entries must be at least 1, got {max_entries}")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock or time.monotonic
        self._store: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._inflight: dict[str, asyncio.Future[Any]] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Any | None:
        """Get a live value, or None if missing or expired."""
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self.misses += 1
                return None
            if now >= entry.expires_at:
                del self._store[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value; evicts earliest-expiring entries when full."""
        now = self._clock()
        expires_at = now + (ttl if ttl is not None else self.ttl_seconds)
        with self._lock:
            if key not in self._store and len(self._store) >= self.max_entries:
                self._evict_expired_locked(now)
                while len(self._store) >= self.max_entries:
                    oldest = min(self._store, key=lambda k: self._store[k].expires_at)
                    del self._store[oldest]
            self._store[key] = CacheEntry(key=key, value=value, expires_at=expires_at)

    def _evict_expired_locked(self, now: float) -> int:
        expired = [k for k, entry in self._store.items() if now >= entry.expires_at]
        for k in expired:
            del self._store[k]
        return len(expired)

    def evict_expired(self) -> int:
        """Drop every expired entry and return how many were dropped."""
        with self._lock:
            return self._evict_expired_locked(self._clock())

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._store)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def stats(self) -> dict[str, Any]:
        with self._lock:
            size = len(self._store)
        return {
            "entries": size,
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
        }

    async def get_or_compute(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
        cache_if: Callable[[Any], bool] | None = None,
    ) -> Any:
        """
        Return the cached value of key, computing it once on a miss.

        Concurrent callers for the same missing key await the same
        computation. Failures are not cached and reach every waiting caller.

        Args:
            key: Cache key
            factory: Coroutine function producing the value
            ttl: Entry TTL in seconds (defaults to the cache TTL)
            cache_if: Predicate deciding whether a computed value is stored
        """
        cached = self.get(key)
        if cached is not None:
            logger.debug(f"Cache hit: {key}")
            return cached

        loop = asyncio.get_running_loop()
        future = self._inflight.get(key)
        if future is not None and future.get_loop() is loop:
            logger.debug(f"Joining in-flight computation: {key}")
            return await asyncio.shield(future)

        future = asyncio.ensure_future(self._compute(key, factory, ttl, cache_if))
        self._inflight[key] = future
        future.add_done_callback(lambda _: self._release(key, future))
        return await asyncio.shield(future)

    def _release(self, key: str, future: asyncio.Future[Any]) -> None:
        if self._inflight.get(key) is future:
            del self._inflight[key]

    async def _compute(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: float | None,
        cache_if: Callable[[Any], bool] | None,
    ) -> Any:
        logger.debug(f"Cache miss: {key}")
        value = await factory()
        if cache_if is None or cache_if(value):
            self.set(key, value, ttl)
        else:
            logger.debug(f"Result not cached: {key}")
        return value
