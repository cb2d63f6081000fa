"""Tests for the TTL cache service."""

import pytest

from equity_aggregator.cache.manager import (
    CacheConfig,
    CacheMetrics,
    CacheService,
    CacheType,
    get_cache_service,
    reset_cache_service,
    set_cache_service,
)
from equity_aggregator.config import Settings
from equity_aggregator.data.models import (
    DataStatus,
    FinancialReport,
    FinancialRow,
    Quote,
    ReportStatus,
    TechnicalSnapshot,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestCacheConfig:
    """Tests for CacheConfig."""

    def test_default_values(self) -> None:
        """Test default TTLs."""
        config = CacheConfig()
        assert config.quote_ttl == 60
        assert config.technical_hit_ttl == 1800
        assert config.technical_miss_ttl == 120
        assert config.financial_ttl == 21600

    def test_technical_ttl_depends_on_value(self) -> None:
        """Test misses expire faster than hits."""
        config = CacheConfig()
        assert config.get_ttl(CacheType.TECHNICAL, None) == 120
        assert config.get_ttl(CacheType.TECHNICAL, TechnicalSnapshot(ema50=1.0)) == 1800

    def test_unavailable_report_is_never_fresh(self) -> None:
        """Test unavailable financial reports get a zero TTL."""
        config = CacheConfig()
        report = FinancialReport(symbol="TCS.NS", company_name="TCS")
        assert config.get_ttl(CacheType.FINANCIAL, report) == 0


class TestCacheMetrics:
    """Tests for CacheMetrics."""

    def test_hit_rate(self) -> None:
        """Test hit rate percentage."""
        metrics = CacheMetrics(hits=3, misses=1)
        assert metrics.total_requests == 4
        assert metrics.hit_rate == 75.0
        assert metrics.to_dict()["hit_rate"] == 75.0

    def test_hit_rate_no_requests(self) -> None:
        """Test hit rate without traffic."""
        assert CacheMetrics().hit_rate == 0.0


class TestTechnicalCache:
    """Tests for technical snapshot freshness."""

    @pytest.mark.asyncio
    async def test_failed_lookup_retried_after_two_minutes(self) -> None:
        """Test a cached miss stops being fresh after the miss TTL."""
        clock = FakeClock()
        cache = CacheService(CacheConfig(), clock=clock)
        await cache.technicals.set("TCS.NS", None)

        clock.advance(119)
        assert await cache.technicals.get_fresh("TCS.NS") is not None
        clock.advance(2)
        assert await cache.technicals.get_fresh("TCS.NS") is None

    @pytest.mark.asyncio
    async def test_success_not_retried_before_thirty_minutes(self) -> None:
        """Test a cached snapshot stays fresh for the hit TTL."""
        clock = FakeClock()
        cache = CacheService(CacheConfig(), clock=clock)
        snapshot = TechnicalSnapshot(ema50=10.0, ema200=9.0, source="test-tech")
        await cache.technicals.set("TCS.NS", snapshot)

        clock.advance(29 * 60)
        entry = await cache.technicals.get_fresh("TCS.NS")
        assert entry is not None
        assert entry.value == snapshot

        clock.advance(2 * 60)
        assert await cache.technicals.get_fresh("TCS.NS") is None


class TestQuoteCache:
    """Tests for the quote map and stale fallback."""

    @pytest.mark.asyncio
    async def test_expired_entry_still_readable(self) -> None:
        """Test expired entries are kept for stale fallback."""
        clock = FakeClock()
        cache = CacheService(CacheConfig(), clock=clock)
        quote = Quote(symbol="TCS.NS", regular_market_price=2500)
        await cache.quotes.set("TCS.NS", quote)

        clock.advance(61)
        assert await cache.quotes.get_fresh("TCS.NS") is None
        entry = await cache.quotes.get_entry("TCS.NS")
        assert entry is not None
        assert entry.value == quote
        assert await cache.quotes.get_stale("TCS.NS") == quote

    @pytest.mark.asyncio
    async def test_degraded_quote_does_not_erase_last_usable(self) -> None:
        """Test an unavailable write keeps the last usable quote."""
        cache = CacheService(CacheConfig(), clock=FakeClock())
        good = Quote(symbol="TCS.NS", regular_market_price=2500)
        await cache.quotes.set("TCS.NS", good)
        await cache.quotes.set(
            "TCS.NS", Quote(symbol="TCS.NS", data_status=DataStatus.UNAVAILABLE)
        )
        assert await cache.quotes.get_stale("TCS.NS") == good

    @pytest.mark.asyncio
    async def test_metrics_and_clear(self) -> None:
        """Test hit/miss counting and clearing."""
        cache = CacheService(CacheConfig(), clock=FakeClock())
        await cache.quotes.get_fresh("TCS.NS")
        await cache.quotes.set("TCS.NS", Quote(symbol="TCS.NS", regular_market_price=1))
        await cache.quotes.get_fresh("TCS.NS")

        metrics = cache.get_metrics()["quote"]
        assert metrics["hits"] == 1
        assert metrics["misses"] == 1
        assert metrics["writes"] == 1

        await cache.clear()
        assert len(cache.quotes) == 0
        assert await cache.quotes.get_stale("TCS.NS") is None


class TestCacheBounds:
    """Tests for the per-map entry cap."""

    @pytest.mark.asyncio
    async def test_oldest_write_evicted_first(self) -> None:
        """Test the least recently written key is dropped past the cap."""
        cache = CacheService(CacheConfig(max_entries=2), clock=FakeClock())
        await cache.technicals.set("A.NS", None)
        await cache.technicals.set("B.NS", None)
        await cache.technicals.set("A.NS", TechnicalSnapshot(ema50=1.0))
        await cache.technicals.set("C.NS", None)

        assert len(cache.technicals) == 2
        assert await cache.technicals.get_entry("B.NS") is None
        assert await cache.technicals.get_entry("A.NS") is not None
        assert await cache.technicals.get_entry("C.NS") is not None
        assert cache.get_metrics()["technical"]["evictions"] == 1

    @pytest.mark.asyncio
    async def test_last_usable_quotes_bounded(self) -> None:
        """Test stale fallback memory is capped like the entry map."""
        cache = CacheService(CacheConfig(max_entries=2), clock=FakeClock())
        for symbol in ("A.NS", "B.NS", "C.NS"):
            await cache.quotes.set(symbol, Quote(symbol=symbol, regular_market_price=10))

        assert len(cache.quotes) == 2
        assert await cache.quotes.get_stale("A.NS") is None
        assert await cache.quotes.get_stale("C.NS") is not None

    def test_cap_read_from_settings(self) -> None:
        """Test the cap follows the settings value."""
        config = CacheConfig.from_settings(Settings(CACHE_MAX_ENTRIES=10))
        assert config.max_entries == 10


class TestFinancialCache:
    """Tests for financial report freshness."""

    @pytest.mark.asyncio
    async def test_available_report_fresh(self) -> None:
        """Test available reports are served from cache."""
        cache = CacheService(CacheConfig(), clock=FakeClock())
        report = FinancialReport(
            symbol="TCS.NS",
            company_name="TCS",
            data_status=ReportStatus.AVAILABLE,
            quarter_labels=["Mar 2024"],
            rows=[FinancialRow(key="sales", label="Sales", kind="number", values=[1.0])],
        )
        await cache.financials.set("TCS.NS:6", report)
        assert await cache.financials.get_fresh("TCS.NS:6") is not None

    @pytest.mark.asyncio
    async def test_unavailable_report_not_fresh(self) -> None:
        """Test unavailable reports always force a re-scrape."""
        cache = CacheService(CacheConfig(), clock=FakeClock())
        await cache.financials.set("TCS.NS:6", FinancialReport(symbol="TCS.NS", company_name="TCS"))
        assert await cache.financials.get_fresh("TCS.NS:6") is None


class TestGlobalCacheService:
    """Tests for the global instance functions."""

    def test_get_set_reset(self) -> None:
        """Test the global cache service lifecycle."""
        reset_cache_service()
        first = get_cache_service()
        assert get_cache_service() is first

        custom = CacheService(CacheConfig())
        set_cache_service(custom)
        assert get_cache_service() is custom

        reset_cache_service()
        assert get_cache_service() is not custom
        reset_cache_service()
