"""BSE India quote and daily-history adapter.

BSE symbols are served only when the base is a 5-6 digit scrip code. The
API accepts calls without cookies more often than NSE does, so the session
bootstrap is best effort.
"""

import json
import re
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from equity_aggregator.config import Settings
from equity_aggregator.data.models import DataStatus, Quote
from equity_aggregator.data.normalize import normalize_quote_shape
from equity_aggregator.data.session import SessionManager
from equity_aggregator.errors import ProviderError, SessionRejectedError, UnusableQuoteError, short_error
from equity_aggregator.parsing import first_with_units, parse_market_date
from equity_aggregator.providers.base import BROWSER_USER_AGENT, HttpProvider
from equity_aggregator.symbols import bse_scrip_code, strip_exchange_suffix
from equity_aggregator.technicals.indicators import PricePoint

BSE_QUOTE_URL = "https://api.bseindia.com/BseIndiaAPI/api/getScripHeaderData/w"
BSE_GRAPH_URLS = (
    "https://api.bseindia.com/BseIndiaAPI/api/StockReachGraph/w",
    "https://api.bseindia.com/BseIndiaAPI/api/GraphData/w",
)
BSE_BOOTSTRAP_URLS = ["https://www.bseindia.com/", "https://api.bseindia.com/"]
MAX_ARRAY_SEARCH_DEPTH = 5

BSE_BASE_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "application/json,text/plain,*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "DNT": "1",
    "Pragma": "no-cache",
    "Cache-Control": "no-cache",
    "Origin": "https://www.bseindia.com",
    "Referer": "https://www.bseindia.com/",
}

# Field aliases seen across BSE payload generations.
PRICE_KEYS = (
    "LTP", "ltp", "LastTradedPrice", "lastTradedPrice", "CurrentPrice", "currentPrice",
    "Price", "price", "LAST_PRICE", "last_price", "Close", "close", "LastRate", "lastRate",
)
NAME_KEYS = (
    "CompanyName", "companyName", "SecurityName", "securityName",
    "IssuerName", "issuerName", "Name", "name",
)
FIELD_KEYS: dict[str, tuple[str, ...]] = {
    "regular_market_change": (
        "Change", "change", "NetChange", "netChange", "ChangeValue", "changeValue",
    ),
    "regular_market_change_percent": (
        "PercentChange", "percentChange", "PChange", "pChange",
        "ChangePercent", "changePercent", "PerChange",
    ),
    "regular_market_open": ("Open", "open", "OpenPrice", "openPrice"),
    "previous_close": (
        "PrevClose", "prevClose", "PreviousClose", "previousClose",
        "ClosePrevDay", "closePrevDay", "Prev_Close",
    ),
    "day_high": ("High", "high", "HighPrice", "highPrice"),
    "day_low": ("Low", "low", "LowPrice", "lowPrice"),
    "regular_market_volume": (
        "Volume", "volume", "TotalTradedQty", "totalTradedQty",
        "TotalTradedQuantity", "totalTradedQuantity", "NoOfSharesTraded",
    ),
    "market_cap": ("MarketCap", "marketCap", "MktCap", "mktCap", "MarketCapFull", "MCap"),
    "fifty_two_week_low": (
        "Low52Week", "low52Week", "WeekLow52", "weekLow52",
        "FiftyTwoWeekLow", "fiftyTwoWeekLow", "YearLow", "yearLow",
    ),
    "fifty_two_week_high": (
        "High52Week", "high52Week", "WeekHigh52", "weekHigh52",
        "FiftyTwoWeekHigh", "fiftyTwoWeekHigh", "YearHigh", "yearHigh",
    ),
    "pe_ratio": ("PE", "pe", "PERatio", "peRatio", "P_E"),
    "eps": ("EPS", "eps"),
    "pb_ratio": ("PB", "pb", "PBV", "pbv", "PriceToBook", "priceToBook"),
    "face_value": ("FaceValue", "faceValue", "FaceVal", "faceVal"),
    "upper_circuit": ("UpperCircuit", "upperCircuit", "UpperPriceBand", "upperPriceBand"),
    "lower_circuit": ("LowerCircuit", "lowerCircuit", "LowerPriceBand", "lowerPriceBand"),
}
TEXT_KEYS: dict[str, tuple[str, ...]] = {
    "industry": ("Industry", "industry", "Sector", "sector"),
    "isin": ("ISIN", "isin"),
    "last_update_time": (
        "LastUpdateTime", "lastUpdateTime", "UpdatedOn", "updatedOn",
        "PriceUpdatedAt", "priceUpdatedAt",
    ),
}

_GRAPH_ROW_BUCKETS = (
    "data", "Data", "d", "Table", "table", "GraphData", "graphData", "Series", "series",
)
_GRAPH_CLOSE_KEYS = (
    "close", "Close", "CLOSE", "CH_CLOSING_PRICE", "CLOSING_PRICE", "lastPrice",
    "LastPrice", "closeRate", "CloseRate", "value", "Value", "y", "c", "C",
)
_GRAPH_DATE_KEYS = ("date", "Date", "CH_TIMESTAMP", "timestamp", "Time", "time", "x", "t")


def _payload_objects(data: Any) -> list[dict[str, Any]]:
    """The payload and its known nested blocks, in lookup order."""
    objects: list[dict[str, Any]] = []
    if isinstance(data, dict):
        objects.append(data)
        for key in ("Header", "header", "Quote", "quote", "Data", "data"):
            if isinstance(data.get(key), dict):
                objects.append(data[key])
    elif isinstance(data, list) and data and isinstance(data[0], dict):
        objects.append(data[0])
    return objects


def _lookup(objects: list[dict[str, Any]], keys: Sequence[str]) -> Any:
    for obj in objects:
        for key in keys:
            value = obj.get(key)
            if value is not None and value != "":
                return value
    return None


def parse_bse_quote_payload(data: Any, symbol: str) -> Quote | None:
    """Map a ``getScripHeaderData`` payload onto a canonical quote.

    Returns:
        Quote, or None when no price alias is present.
    """
    objects = _payload_objects(data)
    if not objects:
        return None

    price = first_with_units(_lookup(objects, PRICE_KEYS))
    if price is None:
        return None

    raw: dict[str, Any] = {
        "symbol": symbol,
        "short_name": str(_lookup(objects, NAME_KEYS) or "").strip()
        or strip_exchange_suffix(symbol),
        "exchange": "BSE",
        "currency": "INR",
        "regular_market_price": price,
        "source": "bseindia",
        "data_status": DataStatus.LIVE,
    }
    for name, keys in FIELD_KEYS.items():
        raw[name] = first_with_units(_lookup(objects, keys))
    for name, keys in TEXT_KEYS.items():
        raw[name] = str(_lookup(objects, keys) or "").strip()
    return normalize_quote_shape(raw)


def _find_first_array(value: Any, depth: int = 0) -> list[Any] | None:
    if depth > MAX_ARRAY_SEARCH_DEPTH or value is None:
        return None
    if isinstance(value, list):
        return value
    if not isinstance(value, dict):
        return None
    for item in value.values():
        found = _find_first_array(item, depth + 1)
        if found is not None:
            return found
    return None


def _point(when: datetime | None, close: float | None) -> PricePoint | None:
    if when is None or close is None:
        return None
    return PricePoint(ts=int(when.timestamp()), close=close)


def _parse_graph_row(row: Any) -> PricePoint | None:
    if isinstance(row, list):
        if not row:
            return None
        close = first_with_units(
            row[-1],
            *(row[index] for index in (4, 3, 2, 1) if index < len(row)),
        )
        return _point(parse_market_date(row[0]), close)

    if not isinstance(row, dict):
        return None

    close = first_with_units(*(row.get(key) for key in _GRAPH_CLOSE_KEYS))
    when_raw = next((row[key] for key in _GRAPH_DATE_KEYS if row.get(key)), None)
    return _point(parse_market_date(when_raw), close)


def _parse_delimited_text(text: str) -> list[PricePoint]:
    points: list[PricePoint] = []
    for line in text.splitlines():
        parts = [part.strip() for part in re.split(r"[|,;]", line.strip()) if part.strip()]
        if len(parts) < 2:
            continue
        point = _point(parse_market_date(parts[0]), first_with_units(parts[-1], parts[1]))
        if point is not None:
            points.append(point)
    return sorted(points, key=lambda point: point.ts)


def parse_bse_graph_series(payload: Any) -> list[PricePoint]:
    """Extract a daily close series from any BSE graph payload.

    Handles JSON text, delimited text, arrays of arrays and arrays of
    objects, wherever the row array is nested. One close per UTC day is
    kept (the latest).
    """
    if isinstance(payload, (str, bytes)):
        text = payload.decode("utf-8", "replace") if isinstance(payload, bytes) else payload
        text = text.strip()
        if not text:
            return []
        try:
            decoded = json.loads(text)
        except ValueError:
            return _parse_delimited_text(text)
        return parse_bse_graph_series(decoded)

    rows: list[Any] | None = None
    if isinstance(payload, dict):
        rows = next(
            (payload[key] for key in _GRAPH_ROW_BUCKETS if isinstance(payload.get(key), list)),
            None,
        )
    if rows is None:
        rows = _find_first_array(payload) or []

    points = sorted(
        (point for point in map(_parse_graph_row, rows) if point is not None),
        key=lambda point: point.ts,
    )

    by_day: dict[str, PricePoint] = {}
    for point in points:
        by_day[datetime.fromtimestamp(point.ts, tz=UTC).date().isoformat()] = point
    return sorted(by_day.values(), key=lambda point: point.ts)


def bse_graph_param_variants(scrip_code: str, lookback_days: int) -> list[dict[str, str]]:
    """Query shapes the graph endpoints have accepted over time."""
    to_date = datetime.now(UTC)
    from_date = to_date - timedelta(days=lookback_days)
    from_slash, to_slash = from_date.strftime("%d/%m/%Y"), to_date.strftime("%d/%m/%Y")
    from_dash, to_dash = from_date.strftime("%d-%m-%Y"), to_date.strftime("%d-%m-%Y")
    return [
        {"flag": "0", "fromdate": from_slash, "todate": to_slash, "seriesid": "",
         "scripcode": scrip_code},
        {"flag": "0", "fromdate": from_dash, "todate": to_dash, "seriesid": "",
         "scripcode": scrip_code},
        {"flag": "1", "fromDate": from_slash, "toDate": to_slash, "seriesid": "",
         "scripcode": scrip_code, "stockcode": scrip_code},
        {"flag": "0", "fromDate": from_dash, "toDate": to_dash, "seriesid": "",
         "stockcode": scrip_code},
        {"flag": "0", "scripcode": scrip_code},
        {"scripcode": scrip_code},
    ]


class BseIndiaProvider(HttpProvider):
    """Quotes and daily history from bseindia.com for scrip-code symbols."""

    name = "bseindia"

    def __init__(
        self,
        config: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        session: SessionManager | None = None,
    ) -> None:
        super().__init__(config, client)
        self.session = session or SessionManager(
            self.name,
            lambda hint: list(BSE_BOOTSTRAP_URLS),
            self._get_client,
            headers=BSE_BASE_HEADERS,
            ttl_seconds=self.config.SESSION_TTL_SECONDS,
            required=False,
        )

    @staticmethod
    def _headers(cookie: str) -> dict[str, str]:
        return {**BSE_BASE_HEADERS, **({"cookie": cookie} if cookie else {})}

    async def fetch_quote(self, symbol: str) -> Quote | None:
        scrip_code = bse_scrip_code(symbol)
        if not scrip_code:
            return None

        async def request(cookie: str) -> Quote:
            data = await self._get_json(
                BSE_QUOTE_URL,
                params={"Debtflag": "", "scripcode": scrip_code, "seriesid": ""},
                headers=self._headers(cookie),
                session_aware=True,
            )
            parsed = parse_bse_quote_payload(data, symbol)
            if parsed is None or not parsed.is_usable:
                raise UnusableQuoteError(symbol, "bse-empty-last-price")
            return parsed

        return await self.session.call(request, hint=scrip_code)

    async def fetch(self, symbols: Sequence[str]) -> list[Quote]:
        return await self._fetch_each([s for s in symbols if bse_scrip_code(s)], self.fetch_quote)

    async def fetch_daily_history(self, symbol: str) -> list[PricePoint]:
        """Daily closes from the graph endpoints.

        Every endpoint/parameter variant is tried until one yields rows. A
        401/403/429 stops the sweep so the session can be refreshed once.
        """
        scrip_code = bse_scrip_code(symbol)
        if not scrip_code:
            return []
        variants = bse_graph_param_variants(scrip_code, self.config.TECHNICAL_LOOKBACK_DAYS)

        async def request(cookie: str) -> list[PricePoint]:
            for url in BSE_GRAPH_URLS:
                for params in variants:
                    try:
                        response = await self._request(
                            "GET",
                            url,
                            params=params,
                            headers=self._headers(cookie),
                            session_aware=True,
                        )
                    except SessionRejectedError:
                        raise
                    except ProviderError as e:
                        self._logger.debug(
                            "bse_history_variant_failed", symbol=symbol, error=short_error(e)
                        )
                        continue
                    points = parse_bse_graph_series(response.text)
                    if points:
                        return points
            return []

        return await self.session.call(request, hint=scrip_code)
