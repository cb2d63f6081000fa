"""Twelve Data quote, time-series and profile adapter (API key required)."""

from collections.abc import Sequence
from typing import Any

from equity_aggregator.data.models import CompanyProfile, DataStatus, Quote
from equity_aggregator.data.normalize import normalize_quote_shape
from equity_aggregator.errors import ProviderError
from equity_aggregator.parsing import first_finite, first_text, first_with_units, parse_market_date
from equity_aggregator.providers.base import API_USER_AGENT, HttpProvider
from equity_aggregator.symbols import exchange_for_symbol, normalize_symbol, strip_exchange_suffix
from equity_aggregator.technicals.indicators import PricePoint

TIME_SERIES_OUTPUT_SIZE = 300
TWELVE_DATA_HEADERS = {"User-Agent": API_USER_AGENT, "Accept": "application/json"}


def twelvedata_symbol_variants(symbol: str) -> list[dict[str, str]]:
    """``BASE:EXCH`` first (most reliable), then separate symbol/exchange."""
    normalized = normalize_symbol(symbol)
    base, exchange = strip_exchange_suffix(normalized), exchange_for_symbol(normalized)
    return [{"symbol": f"{base}:{exchange}"}, {"symbol": base, "exchange": exchange}]


def _is_api_error(data: Any) -> bool:
    return isinstance(data, dict) and data.get("status") == "error"


def parse_twelvedata_quote(data: Any, symbol: str) -> Quote | None:
    if not isinstance(data, dict):
        return None
    normalized = normalize_symbol(symbol)
    fifty_two_week = data.get("fifty_two_week") if isinstance(data.get("fifty_two_week"), dict) else {}
    return normalize_quote_shape(
        {
            "symbol": normalized,
            "short_name": data.get("name") or strip_exchange_suffix(normalized),
            "exchange": data.get("exchange") or exchange_for_symbol(normalized),
            "currency": data.get("currency") or "INR",
            "regular_market_price": first_finite(data.get("close"), data.get("price")),
            "regular_market_change": data.get("change"),
            "regular_market_change_percent": data.get("percent_change"),
            "regular_market_open": data.get("open"),
            "previous_close": data.get("previous_close"),
            "day_high": data.get("high"),
            "day_low": data.get("low"),
            "regular_market_volume": data.get("volume"),
            "average_daily_volume_3_month": data.get("average_volume"),
            "market_cap": data.get("market_cap"),
            "fifty_two_week_low": fifty_two_week.get("low"),
            "fifty_two_week_high": fifty_two_week.get("high"),
            "pe_ratio": data.get("pe"),
            "eps": data.get("eps"),
            "pb_ratio": data.get("pb"),
            "face_value": data.get("face_value"),
            "last_update_time": data.get("datetime"),
            "source": "twelvedata",
            "data_status": DataStatus.LIVE,
        }
    )


def parse_twelvedata_series(data: Any) -> list[PricePoint]:
    values = data.get("values") if isinstance(data, dict) else None
    if not isinstance(values, list):
        return []
    points: list[PricePoint] = []
    for item in values:
        if not isinstance(item, dict):
            continue
        close = first_with_units(item.get("close"))
        when = parse_market_date(item.get("datetime"))
        if close is None or when is None:
            continue
        points.append(PricePoint(ts=int(when.timestamp()), close=close))
    return sorted(points, key=lambda point: point.ts)


class TwelveDataProvider(HttpProvider):
    """Quotes, daily closes and company profiles from Twelve Data."""

    name = "twelvedata"

    def skip_reason(self) -> str:
        return "" if self.config.TWELVE_DATA_API_KEY else "missing-api-key"

    async def _get(self, path: str, params: dict[str, Any]) -> Any:
        return await self._get_json(
            f"{self.config.TWELVE_DATA_BASE_URL}{path}",
            params={**params, "apikey": self.config.TWELVE_DATA_API_KEY},
            headers=TWELVE_DATA_HEADERS,
        )

    async def fetch_quote(self, symbol: str) -> Quote | None:
        """Fetch one quote, trying each symbol variant.

        Raises:
            ProviderError: The last API-level error when every variant errored.
        """
        if self.skip_reason():
            return None

        last_api_error: ProviderError | None = None
        for variant in twelvedata_symbol_variants(symbol):
            data = await self._get("/quote", variant)
            if _is_api_error(data):
                last_api_error = ProviderError(
                    f"twelvedata-api-error:{data.get('code') or 'ERR'}:{data.get('message') or 'unknown'}",
                    provider=self.name,
                    code="api-error",
                )
                continue
            quote = parse_twelvedata_quote(data, symbol)
            if quote is not None:
                return quote

        if last_api_error is not None:
            raise last_api_error
        return None

    async def fetch(self, symbols: Sequence[str]) -> list[Quote]:
        if self.skip_reason():
            return []
        return await self._fetch_each(symbols, self.fetch_quote)

    async def fetch_daily_history(self, symbol: str) -> list[PricePoint]:
        """Ascending daily closes (up to 300) from the first variant that answers."""
        if self.skip_reason():
            return []
        for variant in twelvedata_symbol_variants(symbol):
            data = await self._get(
                "/time_series",
                {**variant, "interval": "1day", "outputsize": TIME_SERIES_OUTPUT_SIZE, "order": "ASC"},
            )
            if _is_api_error(data):
                continue
            points = parse_twelvedata_series(data)
            if points:
                return points
        return []

    async def fetch_profile(self, symbol: str) -> CompanyProfile | None:
        if self.skip_reason():
            return None
        for variant in twelvedata_symbol_variants(symbol):
            data = await self._get("/profile", variant)
            if _is_api_error(data) or not isinstance(data, dict):
                continue
            return CompanyProfile(
                name=first_text(data.get("name")),
                sector=first_text(data.get("sector")),
                industry=first_text(data.get("industry")),
                description=first_text(data.get("description")),
                website=first_text(data.get("website")),
                market_cap=first_finite(data.get("market_cap")),
                pe_ratio=first_finite(data.get("pe")),
                eps=first_finite(data.get("eps")),
                beta=first_finite(data.get("beta")),
                employees=first_finite(data.get("full_time_employees")),
            )
        return None
