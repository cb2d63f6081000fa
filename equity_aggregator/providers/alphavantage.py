"""Alpha Vantage adapter (API key required).

The free tier does not serve ``.NS``/``.BO`` quotes reliably, so quote
requests for canonical Indian symbols are skipped; the daily series is
still used as a last technical fallback.
"""

from collections.abc import Sequence
from typing import Any

from equity_aggregator.data.models import DataStatus, Quote
from equity_aggregator.data.normalize import normalize_quote_shape
from equity_aggregator.parsing import first_with_units, parse_market_date
from equity_aggregator.providers.base import API_USER_AGENT, HttpProvider
from equity_aggregator.symbols import (
    exchange_for_symbol,
    is_bse,
    is_nse,
    normalize_symbol,
    strip_exchange_suffix,
)
from equity_aggregator.technicals.indicators import PricePoint

ALPHA_VANTAGE_HEADERS = {"User-Agent": API_USER_AGENT, "Accept": "application/json"}


def to_alphavantage_symbol(symbol: str) -> str:
    """``TCS.NS`` -> ``TCS.NSE``."""
    normalized = normalize_symbol(symbol)
    return f"{strip_exchange_suffix(normalized)}.{exchange_for_symbol(normalized)}"


def _is_throttled(data: Any) -> bool:
    return isinstance(data, dict) and bool(data.get("Note") or data.get("Information"))


def parse_alphavantage_quote(data: Any, symbol: str) -> Quote | None:
    payload = data.get("Global Quote") if isinstance(data, dict) else None
    if not isinstance(payload, dict) or not payload:
        return None

    api_symbol = str(payload.get("01. symbol") or to_alphavantage_symbol(symbol))
    if api_symbol.endswith(".BSE"):
        converted = api_symbol[: -len(".BSE")] + ".BO"
    else:
        converted = api_symbol.replace(".NSE", ".NS")

    return normalize_quote_shape(
        {
            "symbol": converted or symbol,
            "short_name": strip_exchange_suffix(converted or symbol),
            "exchange": "BSE" if converted.endswith(".BO") else "NSE",
            "currency": "INR",
            "regular_market_price": payload.get("05. price"),
            "regular_market_change": payload.get("09. change"),
            "regular_market_change_percent": payload.get("10. change percent"),
            "regular_market_open": payload.get("02. open"),
            "day_high": payload.get("03. high"),
            "day_low": payload.get("04. low"),
            "previous_close": payload.get("08. previous close"),
            "regular_market_volume": payload.get("06. volume"),
            "last_update_time": payload.get("07. latest trading day"),
            "source": "alphavantage",
            "data_status": DataStatus.LIVE,
        }
    )


def parse_alphavantage_daily(data: Any) -> list[PricePoint]:
    series = data.get("Time Series (Daily)") if isinstance(data, dict) else None
    if not isinstance(series, dict):
        return []
    points: list[PricePoint] = []
    for date_text, row in series.items():
        if not isinstance(row, dict):
            continue
        close = first_with_units(row.get("4. close"), row.get("close"))
        when = parse_market_date(date_text)
        if close is None or when is None:
            continue
        points.append(PricePoint(ts=int(when.timestamp()), close=close))
    return sorted(points, key=lambda point: point.ts)


class AlphaVantageProvider(HttpProvider):
    name = "alphavantage"

    def skip_reason(self) -> str:
        return "" if self.config.ALPHA_VANTAGE_API_KEY else "missing-api-key"

    async def _query(self, params: dict[str, Any]) -> Any:
        return await self._get_json(
            self.config.ALPHA_VANTAGE_BASE_URL,
            params={**params, "apikey": self.config.ALPHA_VANTAGE_API_KEY},
            headers=ALPHA_VANTAGE_HEADERS,
        )

    async def fetch_quote(self, symbol: str) -> Quote | None:
        if self.skip_reason() or is_nse(symbol) or is_bse(symbol):
            return None
        data = await self._query({"function": "GLOBAL_QUOTE", "symbol": to_alphavantage_symbol(symbol)})
        if _is_throttled(data):
            return None
        return parse_alphavantage_quote(data, symbol)

    async def fetch(self, symbols: Sequence[str]) -> list[Quote]:
        if self.skip_reason():
            return []
        return await self._fetch_each(symbols, self.fetch_quote)

    async def fetch_daily_history(self, symbol: str) -> list[PricePoint]:
        if self.skip_reason():
            return []
        data = await self._query(
            {
                "function": "TIME_SERIES_DAILY_ADJUSTED",
                "symbol": to_alphavantage_symbol(symbol),
                "outputsize": "full",
            }
        )
        if _is_throttled(data):
            return []
        return parse_alphavantage_daily(data)
