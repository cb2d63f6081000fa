"""NSE India quote, history and security-detail adapter.

NSE's JSON API requires cookies handed out by its public pages, so every
call goes through a ``SessionManager`` that refreshes the cookie once when
the API answers 401/403/429.
"""

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import quote as url_quote

import httpx

from equity_aggregator.config import Settings
from equity_aggregator.data.models import DataStatus, NseDetails, Quote, WeekHighLow
from equity_aggregator.data.normalize import normalize_quote_shape
from equity_aggregator.data.session import SessionManager
from equity_aggregator.errors import ProviderError, UnusableQuoteError, short_error
from equity_aggregator.parsing import first_finite, first_text, first_with_units, parse_market_date
from equity_aggregator.providers.base import BROWSER_USER_AGENT, HttpProvider
from equity_aggregator.symbols import is_nse, strip_exchange_suffix
from equity_aggregator.technicals.indicators import PricePoint

NSE_HOME_URL = "https://www.nseindia.com/"
NSE_QUOTE_URL = "https://www.nseindia.com/api/quote-equity"
NSE_HISTORY_URL = "https://www.nseindia.com/api/historical/cm/equity"
NSE_ARCHIVE_URL = "https://www.nseindia.com/api/historical/securityArchives"
DEFAULT_BOOTSTRAP_SYMBOL = "RELIANCE"
ARCHIVE_MIN_ROWS = 200

NSE_BASE_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "application/json,text/html,application/xhtml+xml",
    "Accept-Language": "en-US,en;q=0.9",
    "DNT": "1",
    "Pragma": "no-cache",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def nse_quote_page_url(base_symbol: str) -> str:
    return f"https://www.nseindia.com/get-quotes/equity?symbol={url_quote(base_symbol)}"


def _block(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def parse_nse_quote_payload(data: Any, symbol: str) -> Quote | None:
    """Map a ``quote-equity`` payload onto a canonical quote."""
    if not isinstance(data, dict):
        return None

    info = _block(data, "info")
    metadata = _block(data, "metadata")
    security_info = _block(data, "securityInfo")
    price_info = _block(data, "priceInfo")
    trade_info = _block(_block(data, "marketDeptOrderBook"), "tradeInfo")
    intraday = _block(price_info, "intraDayHighLow")
    week_high_low = _block(price_info, "weekHighLow")

    return normalize_quote_shape(
        {
            "symbol": symbol,
            "short_name": first_text(info.get("companyName"), metadata.get("companyName")),
            "exchange": "NSE",
            "currency": first_text(metadata.get("currency")) or "INR",
            "regular_market_price": price_info.get("lastPrice"),
            "regular_market_change": price_info.get("change"),
            "regular_market_change_percent": price_info.get("pChange"),
            "regular_market_open": price_info.get("open"),
            "previous_close": first_finite(price_info.get("previousClose"), price_info.get("close")),
            "day_high": intraday.get("max"),
            "day_low": intraday.get("min"),
            "regular_market_volume": first_finite(
                data.get("totalTradedVolume"), trade_info.get("totalTradedVolume")
            ),
            "market_cap": first_finite(security_info.get("marketCap"), metadata.get("marketCap")),
            "fifty_two_week_low": week_high_low.get("min"),
            "fifty_two_week_high": week_high_low.get("max"),
            "pe_ratio": first_finite(trade_info.get("pE"), security_info.get("pe")),
            "eps": first_finite(trade_info.get("eps"), security_info.get("eps")),
            "pb_ratio": first_finite(trade_info.get("pb"), security_info.get("pb")),
            "face_value": security_info.get("faceValue"),
            "vwap": trade_info.get("vwap"),
            "upper_circuit": security_info.get("upperCP"),
            "lower_circuit": security_info.get("lowerCP"),
            "delivery_to_traded_quantity": _block(data, "securityWiseDP").get(
                "deliveryToTradedQuantity"
            ),
            "industry": first_text(metadata.get("industry"), info.get("industry")),
            "isin": first_text(metadata.get("isin"), info.get("isin")),
            "last_update_time": first_text(
                metadata.get("lastUpdateTime"), data.get("lastUpdateTime")
            ),
            "source": "nseindia",
            "data_status": DataStatus.LIVE,
        }
    )


def parse_nse_details(data: Any, symbol: str) -> NseDetails:
    """Extract the security metadata shown in market details."""
    data = data if isinstance(data, dict) else {}
    info = _block(data, "info")
    metadata = _block(data, "metadata")
    security_info = _block(data, "securityInfo")
    trade_info = _block(_block(data, "marketDeptOrderBook"), "tradeInfo")
    week_high_low = _block(_block(data, "priceInfo"), "weekHighLow")

    return NseDetails(
        company_name=first_text(info.get("companyName"), metadata.get("companyName"))
        or strip_exchange_suffix(symbol),
        industry=first_text(metadata.get("industry"), info.get("industry")),
        isin=first_text(metadata.get("isin"), info.get("isin")),
        listing_date=first_text(metadata.get("listingDate")),
        face_value=first_finite(security_info.get("faceValue")),
        issued_cap=first_finite(security_info.get("issuedCap")),
        free_float_market_cap=first_finite(data.get("ffmc")),
        total_traded_value=first_finite(
            data.get("totalTradedValue"), trade_info.get("totalTradedValue")
        ),
        total_traded_volume=first_finite(
            data.get("totalTradedVolume"), trade_info.get("totalTradedVolume")
        ),
        delivery_to_traded_quantity=first_finite(
            _block(data, "securityWiseDP").get("deliveryToTradedQuantity")
        ),
        week_high_low=WeekHighLow(
            low=first_finite(week_high_low.get("min")),
            high=first_finite(week_high_low.get("max")),
        ),
        upper_circuit=first_finite(security_info.get("upperCP")),
        lower_circuit=first_finite(security_info.get("lowerCP")),
        last_update_time=first_text(metadata.get("lastUpdateTime"), data.get("lastUpdateTime")),
    )


def parse_nse_history_rows(data: Any, close_keys: Sequence[str]) -> list[PricePoint]:
    """Chronological closes from an NSE historical payload."""
    rows = data.get("data") if isinstance(data, dict) else None
    if not isinstance(rows, list):
        return []

    points: list[PricePoint] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        close = first_with_units(*(row.get(key) for key in close_keys))
        when = parse_market_date(row.get("CH_TIMESTAMP") or row.get("TIMESTAMP") or row.get("date"))
        if close is None or when is None:
            continue
        points.append(PricePoint(ts=int(when.timestamp()), close=close))
    return sorted(points, key=lambda point: point.ts)


class NseIndiaProvider(HttpProvider):
    """Quotes and daily history from nseindia.com.

    Example:
        provider = NseIndiaProvider()
        quotes = await provider.fetch(["RELIANCE.NS", "TCS.NS"])
    """

    name = "nseindia"

    def __init__(
        self,
        config: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        session: SessionManager | None = None,
    ) -> None:
        super().__init__(config, client)
        self.session = session or SessionManager(
            self.name,
            lambda hint: [NSE_HOME_URL, nse_quote_page_url(hint or DEFAULT_BOOTSTRAP_SYMBOL)],
            self._get_client,
            headers={**NSE_BASE_HEADERS, "Referer": NSE_HOME_URL},
            ttl_seconds=self.config.SESSION_TTL_SECONDS,
            required=True,
        )

    def _headers(self, base_symbol: str, cookie: str) -> dict[str, str]:
        headers = {**NSE_BASE_HEADERS, "Referer": nse_quote_page_url(base_symbol)}
        if cookie:
            headers["cookie"] = cookie
        return headers

    async def _quote_payload(self, base_symbol: str, cookie: str, section: str | None) -> Any:
        params = {"symbol": base_symbol}
        if section:
            params["section"] = section
        return await self._get_json(
            NSE_QUOTE_URL,
            params=params,
            headers=self._headers(base_symbol, cookie),
            session_aware=True,
        )

    async def fetch_quote(self, symbol: str) -> Quote | None:
        """Fetch one ``.NS`` quote.

        The ``trade_info`` section is tried first; some responses come back
        without a price there, so the plain payload is the second try.

        Raises:
            UnusableQuoteError: If neither payload carries a price.
            ProviderError: On transport or session failure.
        """
        if not is_nse(symbol):
            return None
        base_symbol = strip_exchange_suffix(symbol)

        async def request(cookie: str) -> Quote:
            parsed = parse_nse_quote_payload(
                await self._quote_payload(base_symbol, cookie, "trade_info"), symbol
            )
            if parsed is not None and parsed.is_usable:
                return parsed

            parsed = parse_nse_quote_payload(
                await self._quote_payload(base_symbol, cookie, None), symbol
            )
            if parsed is None or not parsed.is_usable:
                raise UnusableQuoteError(symbol, "nse-empty-last-price")
            return parsed

        return await self.session.call(request, hint=base_symbol)

    async def fetch(self, symbols: Sequence[str]) -> list[Quote]:
        return await self._fetch_each([s for s in symbols if is_nse(s)], self.fetch_quote)

    async def fetch_details(self, symbol: str) -> NseDetails | None:
        """Raw security metadata for market details."""
        if not is_nse(symbol):
            return None
        base_symbol = strip_exchange_suffix(symbol)

        async def request(cookie: str) -> NseDetails:
            data = await self._quote_payload(base_symbol, cookie, None)
            return parse_nse_details(data, symbol)

        return await self.session.call(request, hint=base_symbol)

    def _history_window(self) -> tuple[str, str]:
        to_date = datetime.now(UTC)
        from_date = to_date - timedelta(days=self.config.TECHNICAL_LOOKBACK_DAYS)
        return from_date.strftime("%d-%m-%Y"), to_date.strftime("%d-%m-%Y")

    async def _history_variants(
        self,
        url: str,
        base_symbol: str,
        variants: Sequence[dict[str, str]],
        close_keys: Sequence[str],
    ) -> list[PricePoint]:
        from_date, to_date = self._history_window()

        async def request(cookie: str) -> list[PricePoint]:
            for variant in variants:
                data = await self._get_json(
                    url,
                    params={"symbol": base_symbol, "from": from_date, "to": to_date, **variant},
                    headers=self._headers(base_symbol, cookie),
                    session_aware=True,
                )
                points = parse_nse_history_rows(data, close_keys)
                if points:
                    return points
            return []

        return await self.session.call(request, hint=base_symbol)

    async def fetch_daily_history(self, symbol: str) -> list[PricePoint]:
        """Daily closes over the configured lookback window.

        The equity history endpoint often truncates long windows; below
        ``ARCHIVE_MIN_ROWS`` rows the security archive is consulted and the
        longer of the two series wins. A failing endpoint counts as an empty
        series, so one endpoint erroring never discards the other's rows.
        """
        if not is_nse(symbol):
            return []
        try:
            points = await self._history_variants(
                NSE_HISTORY_URL,
                strip_exchange_suffix(symbol),
                [{"series": '["EQ"]'}, {"series": "EQ"}],
                ("CH_CLOSING_PRICE", "CLOSE", "close", "closePrice"),
            )
        except ProviderError as e:
            self._logger.debug(
                "nse_history_failed", symbol=symbol, endpoint="equity", error=short_error(e)
            )
            points = []
        if len(points) >= ARCHIVE_MIN_ROWS:
            return points

        try:
            archive = await self.fetch_archive_history(symbol)
        except ProviderError as e:
            self._logger.debug(
                "nse_history_failed", symbol=symbol, endpoint="archive", error=short_error(e)
            )
            archive = []
        return archive if len(archive) > len(points) else points

    async def fetch_archive_history(self, symbol: str) -> list[PricePoint]:
        """Daily closes from the security archive endpoint."""
        if not is_nse(symbol):
            return []
        return await self._history_variants(
            NSE_ARCHIVE_URL,
            strip_exchange_suffix(symbol),
            [{"series": "EQ", "dataType": "priceVolumeDeliverable"}, {"series": "EQ"}],
            ("CH_CLOSING_PRICE", "CH_CLOSE", "CLOSE", "close"),
        )
