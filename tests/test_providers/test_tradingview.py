"""Tests for the TradingView scanner adapter."""

import json

import httpx
import pytest

from equity_aggregator.config import Settings
from equity_aggregator.data.models import MarketCycleStage, Quote
from equity_aggregator.errors import ProviderError
from equity_aggregator.providers.tradingview import (
    SCAN_COLUMNS,
    TradingViewProvider,
    parse_tradingview_row,
    snapshot_from_quote,
    to_tradingview_ticker,
)


def scan_row(ticker: str, close: float, **overrides: object) -> dict[str, object]:
    values: dict[str, object] = {
        "name": ticker.split(":")[1],
        "close": close,
        "change": 1.0,
        "change_abs": 10.0,
        "volume": 1000,
        "market_cap_basic": 1e12,
        "high": close + 5,
        "low": close - 5,
        "open": close - 2,
        "price_52_week_high": close + 100,
        "price_52_week_low": close - 100,
        "currency": "INR",
        "description": "Some Company Ltd",
        "EMA50": close - 20,
        "EMA200": close - 40,
        "SMA30|1W": close - 30,
        "SMA30|1W[1]": close - 35,
    }
    values.update(overrides)
    return {"s": ticker, "d": [values[column] for column in SCAN_COLUMNS]}


class TestTradingViewParsing:
    """Tests for scanner row mapping."""

    def test_ticker(self) -> None:
        """Test canonical to exchange:ticker conversion."""
        assert to_tradingview_ticker("tcs") == "NSE:TCS"
        assert to_tradingview_ticker("500325.BO") == "BSE:500325"

    def test_row_mapping(self) -> None:
        """Test prices, previous close and technicals from one row."""
        quote = parse_tradingview_row(scan_row("NSE:TCS", 4000.0))

        assert quote is not None
        assert quote.symbol == "TCS.NS"
        assert quote.short_name == "Some Company Ltd"
        assert quote.previous_close == 3990.0
        assert quote.ema50 == 3980.0
        assert quote.ema200 == 3960.0
        assert quote.thirty_week_sma == 3970.0
        assert quote.market_cycle_stage == MarketCycleStage.MARKUP
        assert quote.source == "tradingview"

    def test_stage_falls_back_to_ema_proxy(self) -> None:
        """Test the EMA proxy when the weekly SMA columns are empty."""
        row = scan_row("BSE:500325", 90.0, **{"SMA30|1W": None, "SMA30|1W[1]": None, "EMA50": 95.0, "EMA200": 100.0})
        quote = parse_tradingview_row(row)
        assert quote is not None
        assert quote.symbol == "500325.BO"
        assert quote.market_cycle_stage == MarketCycleStage.MARKDOWN

    def test_bad_rows(self) -> None:
        """Test malformed rows are skipped."""
        assert parse_tradingview_row({"s": "TCS"}) is None
        assert parse_tradingview_row("row") is None

    def test_snapshot_from_quote(self) -> None:
        """Test technical fields lift into a snapshot."""
        quote = Quote(symbol="TCS.NS", regular_market_price=110, ema50=105, ema200=100)
        snapshot = snapshot_from_quote(quote, "x-tech")
        assert snapshot is not None
        assert snapshot.is_complete
        assert snapshot.market_cycle_stage == MarketCycleStage.MARKUP
        assert snapshot.source == "x-tech"

    def test_snapshot_from_bare_quote(self) -> None:
        """Test quotes without technicals give no snapshot."""
        assert snapshot_from_quote(Quote(symbol="TCS.NS", regular_market_price=1)) is None
        assert snapshot_from_quote(None) is None


class TestTradingViewProvider:
    """Tests for the batched scan request."""

    @pytest.mark.asyncio
    async def test_one_request_for_all_symbols(self, test_settings: Settings) -> None:
        """Test every symbol goes into a single POST."""
        bodies: list[dict[str, object]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(
                200, json={"data": [scan_row("NSE:TCS", 4000.0), scan_row("NSE:INFY", 1500.0)]}
            )

        provider = TradingViewProvider(test_settings, httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        quotes = await provider.fetch(["TCS.NS", "INFY.NS"])

        assert len(bodies) == 1
        assert bodies[0]["symbols"]["tickers"] == ["NSE:TCS", "NSE:INFY"]  # type: ignore[index]
        assert [quote.symbol for quote in quotes] == ["TCS.NS", "INFY.NS"]

    @pytest.mark.asyncio
    async def test_empty_result_set(self, test_settings: Settings) -> None:
        """Test an empty scan fails the batch."""
        provider = TradingViewProvider(
            test_settings,
            httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"data": []}))),
        )
        with pytest.raises(ProviderError) as exc_info:
            await provider.fetch(["TCS.NS"])
        assert exc_info.value.code == "empty-result-set"

    @pytest.mark.asyncio
    async def test_http_failure(self, test_settings: Settings) -> None:
        """Test server errors surface as ProviderError with the status."""
        provider = TradingViewProvider(
            test_settings, httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503)))
        )
        with pytest.raises(ProviderError) as exc_info:
            await provider.fetch(["TCS.NS"])
        assert exc_info.value.status == 503
