"""Yahoo Finance quote and chart adapter.

The v7 quote endpoint is tried first on each host; symbols it omits are
filled from the v8 chart endpoint. When v7 is rate limited or refuses the
request, the chart endpoint serves the whole batch.
"""

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote as url_quote

from equity_aggregator.data.models import DataStatus, Quote
from equity_aggregator.data.normalize import normalize_quote_shape
from equity_aggregator.errors import SESSION_REJECTED_STATUSES, ProviderError
from equity_aggregator.parsing import last_finite, to_number
from equity_aggregator.providers.base import BROWSER_USER_AGENT, HttpProvider
from equity_aggregator.symbols import exchange_for_symbol, normalize_symbol, strip_exchange_suffix
from equity_aggregator.technicals.indicators import PricePoint

YAHOO_HOSTS = (
    "https://query1.finance.yahoo.com",
    "https://query2.finance.yahoo.com",
)
YAHOO_QUOTE_PATH = "/v7/finance/quote"
YAHOO_CHART_PATH = "/v8/finance/chart"

YAHOO_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "application/json,text/plain,*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Referer": "https://finance.yahoo.com/",
}


def parse_yahoo_quote(item: Any) -> Quote | None:
    """Map one ``quoteResponse.result`` item."""
    if not isinstance(item, dict):
        return None
    return normalize_quote_shape(
        {
            "symbol": item.get("symbol"),
            "short_name": item.get("shortName") or item.get("longName"),
            "exchange": item.get("fullExchangeName") or item.get("exchange"),
            "currency": item.get("currency"),
            "regular_market_price": item.get("regularMarketPrice"),
            "regular_market_change": item.get("regularMarketChange"),
            "regular_market_change_percent": item.get("regularMarketChangePercent"),
            "regular_market_open": item.get("regularMarketOpen"),
            "previous_close": item.get("regularMarketPreviousClose"),
            "day_high": item.get("regularMarketDayHigh"),
            "day_low": item.get("regularMarketDayLow"),
            "regular_market_volume": item.get("regularMarketVolume"),
            "average_daily_volume_3_month": item.get("averageDailyVolume3Month"),
            "market_cap": item.get("marketCap"),
            "fifty_two_week_low": item.get("fiftyTwoWeekLow"),
            "fifty_two_week_high": item.get("fiftyTwoWeekHigh"),
            "source": "yahoo",
            "data_status": DataStatus.LIVE,
        }
    )


def _chart_result(data: Any) -> dict[str, Any] | None:
    chart = data.get("chart") if isinstance(data, dict) else None
    results = chart.get("result") if isinstance(chart, dict) else None
    if isinstance(results, list) and results and isinstance(results[0], dict):
        return results[0]
    return None


def _chart_ohlcv(result: dict[str, Any]) -> dict[str, Any]:
    indicators = result.get("indicators")
    quotes = indicators.get("quote") if isinstance(indicators, dict) else None
    if isinstance(quotes, list) and quotes and isinstance(quotes[0], dict):
        return quotes[0]
    return {}


def parse_yahoo_chart_quote(symbol: str, data: Any) -> Quote | None:
    """Build a quote from chart metadata plus the last OHLCV bar."""
    result = _chart_result(data)
    if result is None:
        return None

    meta = result.get("meta") if isinstance(result.get("meta"), dict) else {}
    ohlcv = _chart_ohlcv(result)
    price = to_number(meta.get("regularMarketPrice")) or last_finite(ohlcv.get("close"))
    previous_close = to_number(meta.get("previousClose")) or to_number(
        meta.get("chartPreviousClose")
    )

    change = change_percent = None
    if price and previous_close:
        change = round(price - previous_close, 4)
        change_percent = round((change / previous_close) * 100, 4)

    market_time = to_number(meta.get("regularMarketTime"))
    return normalize_quote_shape(
        {
            "symbol": symbol,
            "short_name": meta.get("shortName") or meta.get("symbol") or strip_exchange_suffix(symbol),
            "exchange": meta.get("exchangeName") or exchange_for_symbol(symbol),
            "currency": meta.get("currency") or "INR",
            "regular_market_price": price,
            "regular_market_change": change,
            "regular_market_change_percent": change_percent,
            "regular_market_open": last_finite(ohlcv.get("open")),
            "previous_close": previous_close,
            "day_high": last_finite(ohlcv.get("high")),
            "day_low": last_finite(ohlcv.get("low")),
            "regular_market_volume": last_finite(ohlcv.get("volume")),
            "last_update_time": (
                datetime.fromtimestamp(market_time, tz=UTC).isoformat() if market_time else ""
            ),
            "source": "yahoo-chart",
            "data_status": DataStatus.LIVE,
        }
    )


def parse_yahoo_close_series(data: Any) -> list[PricePoint]:
    """Pair chart timestamps with closes, skipping gaps."""
    result = _chart_result(data)
    if result is None:
        return []
    timestamps = result.get("timestamp") if isinstance(result.get("timestamp"), list) else []
    closes = _chart_ohlcv(result).get("close")
    closes = closes if isinstance(closes, list) else []

    series: list[PricePoint] = []
    for ts, close in zip(timestamps, closes):
        ts_number, close_number = to_number(ts), to_number(close)
        if ts_number is None or close_number is None:
            continue
        series.append(PricePoint(ts=int(ts_number), close=close_number))
    return series


class YahooProvider(HttpProvider):
    """Quotes and close series from Yahoo Finance."""

    name = "yahoo"

    def _chart_url(self, host: str, symbol: str) -> str:
        return f"{host}{YAHOO_CHART_PATH}/{url_quote(normalize_symbol(symbol))}"

    async def _chart(self, host: str, symbol: str, interval: str, range_: str) -> Any:
        return await self._get_json(
            self._chart_url(host, symbol),
            params={
                "interval": interval,
                "range": range_,
                "includePrePost": "false",
                "events": "div,split",
                "lang": "en-US",
                "region": "IN",
            },
            headers=YAHOO_HEADERS,
        )

    async def _v7_quotes(self, host: str, symbols: Sequence[str]) -> list[Quote]:
        data = await self._get_json(
            f"{host}{YAHOO_QUOTE_PATH}",
            params={
                "symbols": ",".join(normalize_symbol(symbol) for symbol in symbols),
                "lang": "en-US",
                "region": "IN",
            },
            headers=YAHOO_HEADERS,
        )
        response = data.get("quoteResponse") if isinstance(data, dict) else None
        results = response.get("result") if isinstance(response, dict) else None
        if not isinstance(results, list):
            raise ProviderError(
                "unexpected Yahoo quote response shape", provider=self.name, code="bad-shape"
            )
        return [quote for quote in map(parse_yahoo_quote, results) if quote is not None]

    async def _chart_quotes(self, host: str, symbols: Sequence[str]) -> list[Quote]:
        async def fetch_one(symbol: str) -> Quote | None:
            return parse_yahoo_chart_quote(symbol, await self._chart(host, symbol, "1d", "5d"))

        return await self._fetch_each(symbols, fetch_one)

    async def fetch(self, symbols: Sequence[str]) -> list[Quote]:
        """Fetch quotes, host by host, until one host resolves anything.

        Raises:
            ProviderError: The last failure when no host resolved a symbol.
        """
        if not symbols:
            return []

        last_error: ProviderError | None = None
        for host in YAHOO_HOSTS:
            try:
                by_symbol = {quote.symbol: quote for quote in await self._v7_quotes(host, symbols)}
                missing = [symbol for symbol in symbols if symbol not in by_symbol]
                if missing:
                    for quote in await self._chart_quotes(host, missing):
                        by_symbol[quote.symbol] = quote
                resolved = [by_symbol[symbol] for symbol in symbols if symbol in by_symbol]
                if resolved:
                    return resolved
            except ProviderError as e:
                last_error = e
                if e.status in SESSION_REJECTED_STATUSES:
                    try:
                        chart_only = await self._chart_quotes(host, symbols)
                    except ProviderError as chart_error:
                        last_error = chart_error
                    else:
                        if chart_only:
                            return chart_only

        raise last_error or ProviderError(
            "yahoo-empty-result-set", provider=self.name, code="empty-result-set"
        )

    async def fetch_close_series(
        self, symbol: str, interval: str = "1d", range_: str = "2y"
    ) -> list[PricePoint]:
        """Close series for one symbol.

        Raises:
            ProviderError: If no host returned a non-empty series.
        """
        last_error: ProviderError | None = None
        for host in YAHOO_HOSTS:
            try:
                series = parse_yahoo_close_series(await self._chart(host, symbol, interval, range_))
            except ProviderError as e:
                last_error = e
                continue
            if series:
                return series
            last_error = ProviderError(
                f"yahoo-series-empty:{symbol}:{interval}:{range_}",
                provider=self.name,
                code="empty-series",
            )
        raise last_error or ProviderError(
            f"yahoo-series-unavailable:{symbol}", provider=self.name, code="empty-series"
        )
