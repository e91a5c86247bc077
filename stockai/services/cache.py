"""In-process tiered response cache with per-entry TTLs."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Literal

from cachetools import TLRUCache

from stockai.metrics import cache_hit_total, cache_miss_total
from stockai.services.timeframes import normalize_timeframe

logger = logging.getLogger(__name__)

NAMESPACES = ("market", "analysis", "indicators")
Namespace = Literal["market", "analysis", "indicators"]

# seconds, keyed by timeframe; faster markets go stale sooner
MARKET_TTL: dict[str, int] = {
    "1m": 30,
    "5m": 60,
    "15m": 120,
    "1h": 300,
    "4h": 600,
    "12h": 600,
    "1d": 900,
    "3d": 900,
    "1w": 1800,
    "1M": 1800,
    "1y": 1800,
}
# seconds, keyed by analysis level; the vision tier is the most expensive
ANALYSIS_TTL: dict[int, int] = {1: 300, 2: 600, 3: 900}
INDICATORS_TTL = 300
# provider spend avoided by one hit, USD
SAVING_PER_HIT: dict[int, float] = {1: 0.0, 2: 0.001, 3: 0.009}


@dataclass
class _Entry:
    ttl: int
    data: Any
    stored_at: float


@dataclass
class CacheResult:
    hit: bool
    data: Any = None
    age_s: float | None = None


def make_key(
    namespace: str,
    symbol: str,
    asset_type: str = "stock",
    timeframe: str | None = None,
    level: int | None = None,
) -> str:
    parts = [namespace, asset_type, symbol.upper(), normalize_timeframe(timeframe)]
    if level is not None:
        parts.append(f"L{level}")
    return ":".join(parts)


def ttl_for(namespace: str, timeframe: str | None = None, level: int | None = None) -> int:
    if namespace == "analysis":
        return ANALYSIS_TTL.get(level or 1, ANALYSIS_TTL[1])
    if namespace == "market":
        return MARKET_TTL[normalize_timeframe(timeframe)]
    if namespace == "indicators":
        return INDICATORS_TTL
    raise ValueError(f"Unknown cache namespace: {namespace}")


class TieredCache:
    """Memoizes market data and analysis results.

    Each entry gets its TTL at write time from the namespace tables above.
    Reads and writes are serialized by an ``RLock``; two concurrent misses
    for one key may both compute, the later write wins.
    """

    def __init__(self, maxsize: int = 4096, timer: Callable[[], float] = time.monotonic):
        self._timer = timer
        self._cache: TLRUCache = TLRUCache(maxsize=maxsize, ttu=self._ttu, timer=timer)
        self._lock = threading.RLock()
        self._reset_stats()

    @staticmethod
    def _ttu(_key: str, entry: _Entry, now: float) -> float:
        return now + entry.ttl

    def _reset_stats(self) -> None:
        self._hits = {ns: 0 for ns in NAMESPACES}
        self._misses = {ns: 0 for ns in NAMESPACES}
        self._saved_calls = {level: 0 for level in ANALYSIS_TTL}

    def get(
        self,
        namespace: str,
        symbol: str,
        asset_type: str = "stock",
        timeframe: str | None = None,
        level: int | None = None,
    ) -> CacheResult:
        key = make_key(namespace, symbol, asset_type, timeframe, level)
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses[namespace] = self._misses.get(namespace, 0) + 1
                cache_miss_total.labels(namespace=namespace).inc()
                logger.debug("cache miss %s", key)
                return CacheResult(hit=False)
            self._hits[namespace] = self._hits.get(namespace, 0) + 1
            if namespace == "analysis" and level in self._saved_calls:
                self._saved_calls[level] += 1
        cache_hit_total.labels(namespace=namespace).inc()
        logger.debug("cache hit %s", key)
        return CacheResult(hit=True, data=entry.data, age_s=self._timer() - entry.stored_at)

    def set(
        self,
        namespace: str,
        symbol: str,
        asset_type: str = "stock",
        timeframe: str | None = None,
        level: int | None = None,
        data: Any = None,
        *,
        ttl_level: int | None = None,
    ) -> int:
        """Store ``data`` and return the TTL applied.

        ``ttl_level`` overrides the level used for the TTL lookup, for results
        served by a lower tier than the key's level.
        """
        ttl = ttl_for(namespace, timeframe, ttl_level if ttl_level is not None else level)
        key = make_key(namespace, symbol, asset_type, timeframe, level)
        with self._lock:
            self._cache[key] = _Entry(ttl=ttl, data=data, stored_at=self._timer())
        return ttl

    def invalidate_symbol(self, symbol: str) -> int:
        token = f":{symbol.upper()}:"
        with self._lock:
            doomed = [k for k in list(self._cache.keys()) if token in k]
            for key in doomed:
                self._cache.pop(key, None)
        logger.info("cache invalidated %s (%d keys)", symbol.upper(), len(doomed))
        return len(doomed)

    def clear_all(self) -> int:
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            self._reset_stats()
        logger.info("cache cleared (%d keys)", count)
        return count

    def keys(self, namespace: str | None = None) -> list[str]:
        with self._lock:
            self._cache.expire()
            keys = list(self._cache.keys())
        if namespace:
            keys = [k for k in keys if k.startswith(f"{namespace}:")]
        return sorted(keys)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            self._cache.expire()
            size = len(self._cache)
            hits = dict(self._hits)
            misses = dict(self._misses)
            saved = dict(self._saved_calls)
        total_hits = sum(hits.values())
        total = total_hits + sum(misses.values())
        return {
            "size": size,
            "maxsize": self._cache.maxsize,
            "hits": hits,
            "misses": misses,
            "hitRate": round(total_hits / total, 4) if total else 0.0,
            "savedProviderCalls": {f"level{lvl}": n for lvl, n in saved.items()},
            "estimatedSavingsUsd": round(
                sum(SAVING_PER_HIT[lvl] * n for lvl, n in saved.items()), 6
            ),
        }


analysis_cache = TieredCache()


def get_cache() -> TieredCache:
    return analysis_cache


__all__ = [
    "NAMESPACES",
    "Namespace",
    "MARKET_TTL",
    "ANALYSIS_TTL",
    "INDICATORS_TTL",
    "CacheResult",
    "TieredCache",
    "make_key",
    "ttl_for",
    "analysis_cache",
    "get_cache",
]
