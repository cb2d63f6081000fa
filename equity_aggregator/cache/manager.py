"""In-process TTL caches for quotes, technical snapshots and financial reports.

This module provides the cache service owned by the orchestrator and shared
with the technical resolver and financial extractor.

Features:
- Three independent maps keyed by canonical symbol (+ options)
- Value-dependent TTLs (technical misses expire faster than hits,
  unavailable financial reports are never fresh)
- Expired entries stay readable for stale fallback, up to a per-map cap
  with oldest-first eviction
- Last usable quote retained per symbol, so degraded results never erase it
- asyncio locks around every map, hit/miss metrics per cache
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

import structlog

from equity_aggregator.config import Settings, settings
from equity_aggregator.data.models import FinancialReport, Quote, TechnicalSnapshot

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CacheType(Enum):
    """Cached value families with their own TTL policy."""

    QUOTE = "quote"
    TECHNICAL = "technical"
    FINANCIAL = "financial"


@dataclass
class CacheConfig:
    """Configuration for cache TTLs (seconds).

    Attributes:
        quote_ttl: Freshness of any cached quote (default: 1 min).
        technical_hit_ttl: Freshness of a found technical snapshot (default: 30 min).
        technical_miss_ttl: Freshness of a failed technical lookup (default: 2 min).
        financial_ttl: Freshness of an available financial report (default: 6 hours).
        financial_unavailable_ttl: Freshness of an unavailable report (default: never).
        max_entries: Entry cap per map, oldest written evicted first (default: 5000).
    """

    quote_ttl: float = 60.0
    technical_hit_ttl: float = 30 * 60.0
    technical_miss_ttl: float = 2 * 60.0
    financial_ttl: float = 6 * 60 * 60.0
    financial_unavailable_ttl: float = 0.0
    max_entries: int = 5000

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "CacheConfig":
        config = config or settings
        return cls(
            quote_ttl=config.QUOTE_CACHE_TTL_SECONDS,
            technical_hit_ttl=config.TECHNICAL_CACHE_TTL_SECONDS,
            technical_miss_ttl=config.TECHNICAL_MISS_CACHE_TTL_SECONDS,
            financial_ttl=config.FINANCIAL_CACHE_TTL_SECONDS,
            max_entries=config.CACHE_MAX_ENTRIES,
        )

    def get_ttl(self, cache_type: CacheType, value: Any = None) -> float:
        """Get the TTL for a cache type, given the cached value."""
        if cache_type == CacheType.TECHNICAL:
            return self.technical_hit_ttl if value is not None else self.technical_miss_ttl
        if cache_type == CacheType.FINANCIAL:
            available = isinstance(value, FinancialReport) and value.is_available
            return self.financial_ttl if available else self.financial_unavailable_ttl
        return self.quote_ttl


@dataclass
class CacheMetrics:
    """Hit/miss counters for one cache map."""

    hits: int = 0
    misses: int = 0
    writes: int = 0
    evictions: int = 0

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Cache hit rate as a percentage."""
        if self.total_requests == 0:
            return 0.0
        return (self.hits / self.total_requests) * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "writes": self.writes,
            "evictions": self.evictions,
            "hit_rate": round(self.hit_rate, 2),
        }


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """Cached value with the monotonic time it was stored."""

    value: T
    fetched_at: float


class TTLCache(Generic[T]):
    """Async-safe map whose freshness depends on the stored value.

    Entries are never evicted on expiry: ``get_fresh`` ignores them, while
    ``get_entry`` still returns them for stale fallback. Memory stays bounded
    by ``max_entries``; past it the least recently written key goes first.
    """

    def __init__(
        self,
        cache_type: CacheType,
        config: CacheConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache_type = cache_type
        self._config = config
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}
        self._lock = asyncio.Lock()
        self.metrics = CacheMetrics()

    def is_fresh(self, entry: CacheEntry[T] | None) -> bool:
        if entry is None:
            return False
        ttl = self._config.get_ttl(self._cache_type, entry.value)
        if ttl <= 0:
            return False
        return (self._clock() - entry.fetched_at) <= ttl

    async def get_entry(self, key: str) -> CacheEntry[T] | None:
        """Raw entry regardless of freshness."""
        async with self._lock:
            return self._entries.get(key)

    async def get_fresh(self, key: str) -> CacheEntry[T] | None:
        """Entry if still within its TTL, else None (counted as a miss)."""
        async with self._lock:
            entry = self._entries.get(key)
            if self.is_fresh(entry):
                self.metrics.hits += 1
                return entry
            self.metrics.misses += 1
            return None

    def _put(self, mapping: dict[str, Any], key: str, value: Any) -> None:
        """Insert as newest, evicting the oldest writes above ``max_entries``.

        Caller must hold the lock.
        """
        mapping.pop(key, None)
        mapping[key] = value
        while len(mapping) > max(1, self._config.max_entries):
            evicted = next(iter(mapping))
            del mapping[evicted]
            self.metrics.evictions += 1
            logger.debug("cache_evict", cache=self._cache_type.value, key=evicted)

    async def set(self, key: str, value: T) -> CacheEntry[T]:
        entry = CacheEntry(value=value, fetched_at=self._clock())
        async with self._lock:
            self._put(self._entries, key, entry)
            self.metrics.writes += 1
        logger.debug("cache_set", cache=self._cache_type.value, key=key)
        return entry

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class QuoteCache(TTLCache[Quote]):
    """Quote map that also remembers the last usable quote per symbol."""

    def __init__(self, config: CacheConfig, clock: Callable[[], float] = time.monotonic) -> None:
        super().__init__(CacheType.QUOTE, config, clock)
        self._last_usable: dict[str, Quote] = {}

    async def set(self, key: str, value: Quote) -> CacheEntry[Quote]:
        entry = await super().set(key, value)
        if value.is_usable:
            async with self._lock:
                self._put(self._last_usable, key, value)
        return entry

    async def get_stale(self, key: str) -> Quote | None:
        """Most recent usable quote for stale fallback, fresh or not."""
        async with self._lock:
            return self._last_usable.get(key)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
            self._last_usable.clear()


class CacheService:
    """The three cache maps behind the aggregation engine.

    Example:
        cache = CacheService()
        entry = await cache.quotes.get_fresh("RELIANCE.NS")
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CacheConfig.from_settings()
        self.quotes = QuoteCache(self.config, clock)
        self.technicals: TTLCache[TechnicalSnapshot | None] = TTLCache(
            CacheType.TECHNICAL, self.config, clock
        )
        self.financials: TTLCache[FinancialReport] = TTLCache(
            CacheType.FINANCIAL, self.config, clock
        )

    def get_metrics(self) -> dict[str, Any]:
        return {
            CacheType.QUOTE.value: self.quotes.metrics.to_dict(),
            CacheType.TECHNICAL.value: self.technicals.metrics.to_dict(),
            CacheType.FINANCIAL.value: self.financials.metrics.to_dict(),
        }

    async def clear(self) -> None:
        await self.quotes.clear()
        await self.technicals.clear()
        await self.financials.clear()


# Global cache service instance
_cache_service: CacheService | None = None


def get_cache_service() -> CacheService:
    """Get the global cache service instance, creating it on first use."""
    global _cache_service
    if _cache_service is None:
        _cache_service = CacheService()
    return _cache_service


def set_cache_service(service: CacheService) -> None:
    """Set the global cache service instance."""
    global _cache_service
    _cache_service = service


def reset_cache_service() -> None:
    """Reset the global cache service instance."""
    global _cache_service
    _cache_service = None
