"""Portfolio valuation and quote screening over resolved quotes.

Both functions are pure: they take quotes already returned by the
orchestrator and never call a provider.
"""

from collections.abc import Iterable, Sequence
from typing import Any

from pydantic import BaseModel, Field, field_validator

from equity_aggregator.data.models import Quote
from equity_aggregator.data.normalize import create_unavailable_quote
from equity_aggregator.errors import AllProvidersExhausted
from equity_aggregator.parsing import to_number
from equity_aggregator.symbols import normalize_symbol


class Position(BaseModel):
    """One holding: quantity bought at an average cost."""

    symbol: str
    quantity: float
    avg_price: float

    @field_validator("symbol")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_symbol(value) or value


class PositionAnalytics(Position):
    quote: Quote
    valuation_mode: str
    invested: float
    current: float
    pnl: float
    pnl_percent: float


class PortfolioSummary(BaseModel):
    invested: float = 0.0
    current: float = 0.0
    pnl: float = 0.0
    pnl_percent: float = 0.0


class PortfolioAnalytics(BaseModel):
    positions: list[PositionAnalytics] = Field(default_factory=list)
    summary: PortfolioSummary = Field(default_factory=PortfolioSummary)


def _percent(part: float, whole: float) -> float:
    return (part / whole) * 100 if whole > 0 else 0.0


def calculate_portfolio_analytics(
    positions: Iterable[Position],
    quotes: Sequence[Quote],
) -> PortfolioAnalytics:
    """Value positions at market price, or at cost when no usable quote exists.

    Args:
        positions: Holdings to value.
        quotes: Quotes keyed by their canonical symbol.

    Returns:
        Per-position figures and a summary, all rounded to 2 decimals.
    """
    by_symbol = {quote.symbol: quote for quote in quotes}
    rows: list[PositionAnalytics] = []

    for position in positions:
        quote = by_symbol.get(position.symbol) or create_unavailable_quote(
            AllProvidersExhausted(symbol=position.symbol, reason="missing quote")
        )
        market = quote.is_usable
        price = quote.regular_market_price if market else position.avg_price

        invested = position.quantity * position.avg_price
        current = position.quantity * price
        pnl = current - invested
        rows.append(
            PositionAnalytics(
                **position.model_dump(),
                quote=quote,
                valuation_mode="market" if market else "cost",
                invested=round(invested, 2),
                current=round(current, 2),
                pnl=round(pnl, 2),
                pnl_percent=round(_percent(pnl, invested), 2),
            )
        )

    invested = sum(row.invested for row in rows)
    current = sum(row.current for row in rows)
    pnl = sum(row.pnl for row in rows)
    return PortfolioAnalytics(
        positions=rows,
        summary=PortfolioSummary(
            invested=round(invested, 2),
            current=round(current, 2),
            pnl=round(pnl, 2),
            pnl_percent=round(_percent(pnl, invested), 2),
        ),
    )


class ScreenerFilters(BaseModel):
    """Quote screen thresholds. None or 0 disables a filter."""

    min_price: float | None = None
    max_price: float | None = None
    min_change_pct: float | None = None
    min_volume: float | None = None
    min_market_cap: float | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> float | None:
        return to_number(value)

    def active(self) -> dict[str, float]:
        return {name: value for name, value in self.model_dump().items() if value}


def _passes(quote: Quote, filters: dict[str, float]) -> bool:
    if not quote.is_usable:
        return False
    price = quote.regular_market_price or 0.0

    if "min_price" in filters and price < filters["min_price"]:
        return False
    if "max_price" in filters and price > filters["max_price"]:
        return False
    if "min_change_pct" in filters and (quote.regular_market_change_percent or 0.0) < filters["min_change_pct"]:
        return False
    if "min_volume" in filters and (quote.regular_market_volume or 0.0) < filters["min_volume"]:
        return False
    if "min_market_cap" in filters and (quote.market_cap or 0.0) < filters["min_market_cap"]:
        return False
    return True


def run_screener(quotes: Iterable[Quote], filters: ScreenerFilters | dict[str, Any] | None = None) -> list[Quote]:
    """Usable quotes passing every active filter, in input order."""
    if not isinstance(filters, ScreenerFilters):
        filters = ScreenerFilters(**(filters or {}))
    active = filters.active()
    return [quote for quote in quotes if _passes(quote, active)]
