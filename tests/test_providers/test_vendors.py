"""Tests for the API-key vendors (Twelve Data, Alpha Vantage)."""

import httpx
import pytest

from equity_aggregator.config import Settings
from equity_aggregator.errors import ProviderError
from equity_aggregator.providers.alphavantage import (
    AlphaVantageProvider,
    parse_alphavantage_daily,
    parse_alphavantage_quote,
    to_alphavantage_symbol,
)
from equity_aggregator.providers.twelvedata import (
    TwelveDataProvider,
    parse_twelvedata_series,
    twelvedata_symbol_variants,
)


def unreachable(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request to {request.url}")


class TestTwelveData:
    """Tests for the Twelve Data adapter."""

    def test_symbol_variants(self) -> None:
        """Test the joined form comes first."""
        assert twelvedata_symbol_variants("TCS") == [
            {"symbol": "TCS:NSE"},
            {"symbol": "TCS", "exchange": "NSE"},
        ]

    @pytest.mark.asyncio
    async def test_skipped_without_key(self, test_settings: Settings) -> None:
        """Test no request is made without an API key."""
        provider = TwelveDataProvider(
            test_settings, httpx.AsyncClient(transport=httpx.MockTransport(unreachable))
        )
        assert provider.skip_reason() == "missing-api-key"
        assert await provider.fetch(["TCS.NS"]) == []
        assert await provider.fetch_profile("TCS.NS") is None

    @pytest.mark.asyncio
    async def test_second_variant_after_api_error(self) -> None:
        """Test an API-level error moves on to the next variant."""
        calls: list[dict[str, str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            params = dict(request.url.params)
            calls.append(params)
            if params["symbol"] == "TCS:NSE":
                return httpx.Response(200, json={"status": "error", "code": 404, "message": "not found"})
            return httpx.Response(
                200,
                json={"name": "Tata Consultancy", "close": "4000.5", "previous_close": "3950.5", "pe": "30"},
            )

        provider = TwelveDataProvider(
            Settings(TWELVE_DATA_API_KEY="key"), httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )
        quotes = await provider.fetch(["TCS.NS"])

        assert len(calls) == 2
        assert calls[0]["apikey"] == "key"
        assert quotes[0].regular_market_price == 4000.5
        assert quotes[0].regular_market_change == 50.0
        assert quotes[0].pe_ratio == 30.0
        assert quotes[0].source == "twelvedata"

    @pytest.mark.asyncio
    async def test_all_variants_error(self) -> None:
        """Test the API error surfaces when every variant fails."""
        provider = TwelveDataProvider(
            Settings(TWELVE_DATA_API_KEY="key"),
            httpx.AsyncClient(
                transport=httpx.MockTransport(
                    lambda r: httpx.Response(200, json={"status": "error", "code": 429, "message": "limit"})
                )
            ),
        )
        with pytest.raises(ProviderError) as exc_info:
            await provider.fetch_quote("TCS.NS")
        assert "twelvedata-api-error:429" in str(exc_info.value)

    def test_series_sorted_ascending(self) -> None:
        """Test values are sorted oldest first."""
        series = parse_twelvedata_series(
            {"values": [{"datetime": "2024-03-14", "close": "101"}, {"datetime": "2024-03-13", "close": "100"}]}
        )
        assert [point.close for point in series] == [100.0, 101.0]


class TestAlphaVantage:
    """Tests for the Alpha Vantage adapter."""

    def test_symbol(self) -> None:
        """Test canonical to vendor suffix conversion."""
        assert to_alphavantage_symbol("TCS.NS") == "TCS.NSE"
        assert to_alphavantage_symbol("500325.BO") == "500325.BSE"

    def test_parse_quote(self) -> None:
        """Test the Global Quote payload maps back to canonical symbols."""
        quote = parse_alphavantage_quote(
            {"Global Quote": {"01. symbol": "TCS.BSE", "05. price": "4000", "08. previous close": "3900"}},
            "TCS.BO",
        )
        assert quote is not None
        assert quote.symbol == "TCS.BO"
        assert quote.exchange == "BSE"
        assert quote.regular_market_change == 100.0

    @pytest.mark.asyncio
    async def test_indian_quotes_not_requested(self) -> None:
        """Test .NS/.BO quote requests never reach the API."""
        provider = AlphaVantageProvider(
            Settings(ALPHA_VANTAGE_API_KEY="key"), httpx.AsyncClient(transport=httpx.MockTransport(unreachable))
        )
        assert await provider.fetch_quote("TCS.NS") is None
        with pytest.raises(ProviderError) as exc_info:
            await provider.fetch(["TCS.NS"])
        assert exc_info.value.code == "empty-result-set"

    @pytest.mark.asyncio
    async def test_throttled_history(self) -> None:
        """Test a throttle notice yields an empty series."""
        provider = AlphaVantageProvider(
            Settings(ALPHA_VANTAGE_API_KEY="key"),
            httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"Note": "slow down"}))),
        )
        assert await provider.fetch_daily_history("TCS.NS") == []

    def test_parse_daily(self) -> None:
        """Test daily closes are sorted oldest first."""
        series = parse_alphavantage_daily(
            {"Time Series (Daily)": {"2024-03-14": {"4. close": "101"}, "2024-03-13": {"4. close": "100"}}}
        )
        assert [point.close for point in series] == [100.0, 101.0]
