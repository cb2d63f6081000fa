"""In-process caching for quotes, technical snapshots and financial reports.

This module contains:
- CacheService owning the three TTL maps
- CacheConfig with value-dependent TTLs
- Cache metrics tracking
"""

from equity_aggregator.cache.manager import (
    CacheConfig,
    CacheEntry,
    CacheMetrics,
    CacheService,
    CacheType,
    QuoteCache,
    TTLCache,
    get_cache_service,
    reset_cache_service,
    set_cache_service,
)

__all__ = [
    # Core classes
    "CacheConfig",
    "CacheEntry",
    "CacheMetrics",
    "CacheService",
    "CacheType",
    "QuoteCache",
    "TTLCache",
    # Global instance functions
    "get_cache_service",
    "reset_cache_service",
    "set_cache_service",
]
