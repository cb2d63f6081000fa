"""TradingView scanner adapter.

One POST returns every requested ticker with price fields and the moving
averages used for trend staging, so this provider also serves as a
technical source.
"""

from collections.abc import Sequence
from typing import Any

from equity_aggregator.data.models import DataStatus, Quote, TechnicalSnapshot
from equity_aggregator.data.normalize import normalize_quote_shape
from equity_aggregator.errors import ProviderError
from equity_aggregator.parsing import to_number
from equity_aggregator.providers.base import BROWSER_USER_AGENT, HttpProvider
from equity_aggregator.symbols import exchange_for_symbol, normalize_symbol, strip_exchange_suffix
from equity_aggregator.technicals.indicators import (
    classify_stage_from_ema_proxy,
    classify_weinstein_stage,
)

SCAN_COLUMNS = (
    "name",
    "close",
    "change",
    "change_abs",
    "volume",
    "market_cap_basic",
    "high",
    "low",
    "open",
    "price_52_week_high",
    "price_52_week_low",
    "currency",
    "description",
    "EMA50",
    "EMA200",
    "SMA30|1W",
    "SMA30|1W[1]",
)

TRADINGVIEW_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "application/json",
    "Content-Type": "application/json",
    "Referer": "https://www.tradingview.com/",
}


def to_tradingview_ticker(symbol: str) -> str:
    """``RELIANCE.NS`` -> ``NSE:RELIANCE``."""
    normalized = normalize_symbol(symbol)
    return f"{exchange_for_symbol(normalized)}:{strip_exchange_suffix(normalized)}"


def _column(values: list[Any], index: int) -> Any:
    return values[index] if index < len(values) else None


def parse_tradingview_row(row: Any) -> Quote | None:
    """Map one scanner row (``{"s": "NSE:TCS", "d": [...]}``) to a quote."""
    if not isinstance(row, dict):
        return None

    exchange_raw, _, ticker = str(row.get("s") or "").partition(":")
    if not exchange_raw or not ticker:
        return None
    exchange = exchange_raw.upper()
    symbol = normalize_symbol(f"{ticker}.BO" if exchange == "BSE" else f"{ticker}.NS")

    values = row.get("d") if isinstance(row.get("d"), list) else []
    close = to_number(_column(values, 1))
    change_abs = to_number(_column(values, 3))
    ema50 = to_number(_column(values, 13))
    ema200 = to_number(_column(values, 14))
    sma_30w = to_number(_column(values, 15))
    prev_sma_30w = to_number(_column(values, 16))

    previous_close = (
        round(close - change_abs, 4) if close is not None and change_abs is not None else None
    )
    stage = classify_weinstein_stage(close, sma_30w, prev_sma_30w) or (
        classify_stage_from_ema_proxy(close, ema50, ema200)
    )

    return normalize_quote_shape(
        {
            "symbol": symbol,
            "short_name": _column(values, 12) or _column(values, 0) or ticker,
            "exchange": exchange,
            "currency": _column(values, 11) or "INR",
            "regular_market_price": close,
            "regular_market_change": change_abs,
            "regular_market_change_percent": _column(values, 2),
            "regular_market_open": _column(values, 8),
            "previous_close": previous_close,
            "day_high": _column(values, 6),
            "day_low": _column(values, 7),
            "regular_market_volume": _column(values, 4),
            "market_cap": _column(values, 5),
            "fifty_two_week_high": _column(values, 9),
            "fifty_two_week_low": _column(values, 10),
            "ema50": ema50,
            "ema200": ema200,
            "thirty_week_sma": sma_30w,
            "market_cycle_stage": stage,
            "source": "tradingview",
            "data_status": DataStatus.LIVE,
        }
    )


def snapshot_from_quote(
    quote: Quote | None, source: str = "tradingview-tech"
) -> TechnicalSnapshot | None:
    """Technical snapshot carried by a quote that already has indicator fields."""
    if quote is None:
        return None

    stage = quote.market_cycle_stage or classify_stage_from_ema_proxy(
        quote.regular_market_price, quote.ema50, quote.ema200
    )
    if quote.ema50 is None and quote.ema200 is None and quote.thirty_week_sma is None and not stage:
        return None

    return TechnicalSnapshot(
        ema50=quote.ema50,
        ema200=quote.ema200,
        thirty_week_sma=quote.thirty_week_sma,
        market_cycle_stage=stage,
        source=source,
    )


class TradingViewProvider(HttpProvider):
    """Batch quotes from the TradingView India scanner."""

    name = "tradingview"

    async def fetch(self, symbols: Sequence[str]) -> list[Quote]:
        """Fetch all symbols in one scan request.

        Raises:
            ProviderError: If the scanner returned no rows at all.
        """
        if not symbols:
            return []

        payload = {
            "symbols": {
                "tickers": [to_tradingview_ticker(symbol) for symbol in symbols],
                "query": {"types": []},
            },
            "columns": list(SCAN_COLUMNS),
        }
        response = await self._request(
            "POST", self.config.TRADINGVIEW_SCAN_URL, json=payload, headers=TRADINGVIEW_HEADERS
        )
        data = self._decode_json(response)

        rows = data.get("data") if isinstance(data, dict) else None
        if not isinstance(rows, list) or not rows:
            raise ProviderError(
                "tradingview-empty-result-set", provider=self.name, code="empty-result-set"
            )

        return [quote for quote in map(parse_tradingview_row, rows) if quote is not None]
