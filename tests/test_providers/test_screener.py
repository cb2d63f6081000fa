"""Tests for the screener.in page adapter."""

import httpx
import pytest

from equity_aggregator.config import Settings
from equity_aggregator.data.models import DataStatus
from equity_aggregator.providers.screener import (
    ScreenerProvider,
    screener_company_ids,
    screener_urls,
)

QUOTE_PAGE = """
<html><body>
<h1>Reliance Industries Ltd</h1>
<ul>
<li><span>Market Cap</span> ₹ <span>1,000</span> Cr.</li>
<li><span>Current Price</span> ₹ <span>102</span> <span>2 %</span></li>
<li><span>High / Low</span> ₹ <span>150</span> / <span>80</span></li>
</ul>
</body></html>
"""


class TestScreenerUrls:
    """Tests for company identifier and URL construction."""

    def test_scrip_code_ids(self) -> None:
        """Test numeric BSE symbols use the scrip code only."""
        assert screener_company_ids("500325.BO") == ["500325"]

    def test_ticker_ids(self) -> None:
        """Test alphabetic symbols use the ticker unless numeric-only."""
        assert screener_company_ids("TCS.NS") == ["TCS"]
        assert screener_company_ids("TCS.NS", only_numeric=True) == []

    def test_url_variants(self) -> None:
        """Test consolidated, standalone and default pages in order."""
        assert screener_urls("TCS") == [
            "https://www.screener.in/company/TCS/consolidated/",
            "https://www.screener.in/company/TCS/standalone/",
            "https://www.screener.in/company/TCS/",
        ]


class TestScreenerProvider:
    """Tests for page fetching and delayed quotes."""

    @pytest.mark.asyncio
    async def test_fetch_page_skips_missing_variants(self, test_settings: Settings) -> None:
        """Test 404 variants are skipped until a page answers."""
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            if request.url.path.endswith("/consolidated/"):
                return httpx.Response(404)
            return httpx.Response(200, text=QUOTE_PAGE)

        provider = ScreenerProvider(test_settings, httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        html, url = await provider.fetch_page("TCS.NS")

        assert "Reliance" in html
        assert url == "https://www.screener.in/company/TCS/standalone/"
        assert len(requested) == 2

    @pytest.mark.asyncio
    async def test_fetch_page_nothing_found(self, test_settings: Settings) -> None:
        """Test an empty result instead of an error when no page exists."""
        provider = ScreenerProvider(
            test_settings, httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(404)))
        )
        assert await provider.fetch_page("TCS.NS") == ("", "")

    @pytest.mark.asyncio
    async def test_fetch_only_serves_scrip_codes(self, test_settings: Settings) -> None:
        """Test alphabetic symbols are left to other providers."""
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request.url.path)
            return httpx.Response(200, text=QUOTE_PAGE)

        provider = ScreenerProvider(test_settings, httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        quotes = await provider.fetch(["TCS.NS", "500325.BO"])

        assert [quote.symbol for quote in quotes] == ["500325.BO"]
        assert quotes[0].regular_market_price == 102
        assert quotes[0].data_status == DataStatus.DELAYED
        assert all("500325" in path for path in requested)
