"""screener.in scrape adapter.

Serves delayed quotes for BSE scrip-code symbols and the raw company pages
used by the financial extractor and the technical resolver.
"""

from collections.abc import Sequence

from equity_aggregator.data.models import Quote
from equity_aggregator.errors import ProviderError, short_error
from equity_aggregator.financials.parser import ScreenerPageParser
from equity_aggregator.providers.base import BROWSER_USER_AGENT, HttpProvider
from equity_aggregator.symbols import bse_scrip_code, is_alpha_ticker, normalize_symbol, strip_exchange_suffix

SCREENER_BASE_URL = "https://www.screener.in/company"
SCREENER_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml",
    "Accept-Language": "en-US,en;q=0.9",
    "Referer": "https://www.screener.in/",
}


def screener_company_ids(symbol: str, only_numeric: bool = False) -> list[str]:
    """Site identifiers for a symbol: scrip code first, then the ticker."""
    normalized = normalize_symbol(symbol)
    ids: list[str] = []
    code = bse_scrip_code(normalized)
    if code:
        ids.append(code)
    base = strip_exchange_suffix(normalized)
    if not only_numeric and is_alpha_ticker(base):
        ids.append(base)
    return list(dict.fromkeys(ids))


def screener_urls(symbol: str, only_numeric: bool = False) -> list[str]:
    """Consolidated, standalone and default page URLs per identifier."""
    urls: list[str] = []
    for company_id in screener_company_ids(symbol, only_numeric):
        urls.extend(
            [
                f"{SCREENER_BASE_URL}/{company_id}/consolidated/",
                f"{SCREENER_BASE_URL}/{company_id}/standalone/",
                f"{SCREENER_BASE_URL}/{company_id}/",
            ]
        )
    return list(dict.fromkeys(urls))


class ScreenerProvider(HttpProvider):
    """Company pages and delayed quotes from screener.in."""

    name = "screener"

    async def fetch_page(self, symbol: str, only_numeric: bool = False) -> tuple[str, str]:
        """First non-empty company page for a symbol.

        Returns:
            ``(html, url)``, or ``("", "")`` if no URL variant produced a page.
        """
        urls = screener_urls(symbol, only_numeric)
        if not urls:
            self._logger.debug("screener_no_urls", symbol=symbol)
            return "", ""

        for url in urls:
            try:
                response = await self._request(
                    "GET", url, headers=SCREENER_HEADERS, tolerate_client_errors=True
                )
            except ProviderError as e:
                self._logger.debug("screener_page_failed", symbol=symbol, url=url, error=short_error(e))
                continue
            if response.status_code >= 400:
                self._logger.debug(
                    "screener_page_failed", symbol=symbol, url=url, status=response.status_code
                )
                continue
            if response.text.strip():
                return response.text, url

        self._logger.debug("screener_page_missing", symbol=symbol, tried=len(urls))
        return "", ""

    async def fetch_quote(self, symbol: str) -> Quote | None:
        html, _ = await self.fetch_page(symbol, only_numeric=True)
        if not html:
            return None
        return ScreenerPageParser(html).parse_quote(symbol)

    async def fetch(self, symbols: Sequence[str]) -> list[Quote]:
        """Delayed quotes for scrip-code symbols; symbols without a page are skipped."""
        quotes: list[Quote] = []
        for symbol in symbols:
            if not bse_scrip_code(symbol):
                continue
            quote = await self.fetch_quote(symbol)
            if quote is not None:
                quotes.append(quote)
        return quotes
