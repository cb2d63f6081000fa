"""Data models for the aggregation engine.

This module defines the Pydantic models shared by provider adapters, the
quote orchestrator, the technical resolver and the financial extractor.
Quotes and snapshots are immutable; updates go through ``model_copy``.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

PROVIDER_TRACE_LIMIT = 40


class DataStatus(str, Enum):
    """Freshness/quality label attached to every quote."""

    LIVE = "live"
    DELAYED = "delayed"
    STALE = "stale"
    UNAVAILABLE = "unavailable"


class MarketCycleStage(str, Enum):
    """Weinstein four-phase trend classification."""

    ACCUMULATION = "Accumulation"
    MARKUP = "Markup"
    DISTRIBUTION = "Distribution"
    MARKDOWN = "Markdown"


class ReportStatus(str, Enum):
    """Availability of a scraped financial report."""

    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


def cap_trace(entries: list[str]) -> list[str]:
    """Keep the most recent provider trace entries."""
    return list(entries)[-PROVIDER_TRACE_LIMIT:]


class Quote(BaseModel):
    """Canonical quote for one symbol.

    ``regular_market_price`` is either None or positive for usable quotes;
    unavailable quotes carry None unless they are a stale cache fallback.

    Attributes:
        symbol: Canonical ``BASE.NS`` / ``BASE.BO`` symbol.
        short_name: Company or display name.
        exchange: Listing exchange code.
        currency: Trading currency.
        regular_market_price: Last traded price.
        source: Provider (or compound/stale) attribution.
        data_status: Freshness label.
        provider_trace: Ordered attempt log, capped at 40 entries.
    """

    model_config = ConfigDict(frozen=True)

    symbol: str
    short_name: str = ""
    exchange: str = "NSE"
    currency: str = "INR"
    regular_market_price: float | None = None
    regular_market_change: float | None = None
    regular_market_change_percent: float | None = None
    regular_market_open: float | None = None
    previous_close: float | None = None
    day_high: float | None = None
    day_low: float | None = None
    regular_market_volume: float | None = None
    average_daily_volume_3_month: float | None = None
    market_cap: float | None = None
    fifty_two_week_low: float | None = None
    fifty_two_week_high: float | None = None
    pe_ratio: float | None = None
    eps: float | None = None
    pb_ratio: float | None = None
    ema50: float | None = None
    ema200: float | None = None
    thirty_week_sma: float | None = None
    market_cycle_stage: MarketCycleStage | None = None
    face_value: float | None = None
    vwap: float | None = None
    upper_circuit: float | None = None
    lower_circuit: float | None = None
    delivery_to_traded_quantity: float | None = None
    industry: str | None = None
    isin: str | None = None
    last_update_time: str | None = None
    source: str = "unknown"
    data_status: DataStatus = DataStatus.LIVE
    provider_trace: list[str] = Field(default_factory=list)

    @property
    def is_usable(self) -> bool:
        """Usable means a present, strictly positive price."""
        return self.regular_market_price is not None and self.regular_market_price > 0


class TechnicalSnapshot(BaseModel):
    """Moving averages and trend stage for one symbol.

    Attributes:
        ema50: 50-day exponential moving average.
        ema200: 200-day exponential moving average.
        thirty_week_sma: 30-week simple moving average of weekly closes.
        market_cycle_stage: Weinstein stage, if classifiable.
        source: '+'-joined attribution of every contributing source.
    """

    model_config = ConfigDict(frozen=True)

    ema50: float | None = None
    ema200: float | None = None
    thirty_week_sma: float | None = None
    market_cycle_stage: MarketCycleStage | None = None
    source: str = "unknown-tech"

    @property
    def is_complete(self) -> bool:
        """Both EMAs present; the technical cascade stops here."""
        return self.ema50 is not None and self.ema200 is not None


class FinancialRow(BaseModel):
    """One derived metric row of a quarterly report."""

    key: str
    label: str
    kind: Literal["number", "percent"]
    values: list[float | None]


class FinancialReport(BaseModel):
    """Quarterly financial statement summary scraped for a symbol.

    Every row has exactly one value per quarter label.
    """

    symbol: str
    company_name: str
    source: str = "screener"
    source_url: str = ""
    data_status: ReportStatus = ReportStatus.UNAVAILABLE
    updated_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    quarter_labels: list[str] = Field(default_factory=list)
    rows: list[FinancialRow] = Field(default_factory=list)
    provider_trace: list[str] = Field(default_factory=list)
    message: str = ""

    @model_validator(mode="after")
    def _rows_match_quarters(self) -> "FinancialReport":
        expected = len(self.quarter_labels)
        for row in self.rows:
            if len(row.values) != expected:
                raise ValueError(
                    f"row {row.key!r} has {len(row.values)} values for {expected} quarters"
                )
        return self

    @property
    def is_available(self) -> bool:
        return self.data_status == ReportStatus.AVAILABLE or bool(self.rows)


class WeekHighLow(BaseModel):
    low: float | None = None
    high: float | None = None


class NseDetails(BaseModel):
    """Raw NSE security metadata surfaced by market details."""

    company_name: str
    industry: str = ""
    isin: str = ""
    listing_date: str = ""
    face_value: float | None = None
    issued_cap: float | None = None
    free_float_market_cap: float | None = None
    total_traded_value: float | None = None
    total_traded_volume: float | None = None
    delivery_to_traded_quantity: float | None = None
    week_high_low: WeekHighLow = Field(default_factory=WeekHighLow)
    upper_circuit: float | None = None
    lower_circuit: float | None = None
    last_update_time: str = ""
    source: str = "nseindia"


class CompanyProfile(BaseModel):
    """Vendor company profile surfaced by market details."""

    name: str = ""
    sector: str = ""
    industry: str = ""
    description: str = ""
    website: str = ""
    market_cap: float | None = None
    pe_ratio: float | None = None
    eps: float | None = None
    beta: float | None = None
    employees: float | None = None
    source: str = "twelvedata"


class MarketDetailsExtra(BaseModel):
    nse: NseDetails | None = None
    profile: CompanyProfile | None = None


class MarketDetails(BaseModel):
    """Quote composed with exchange metadata and vendor profile."""

    symbol: str
    quote: Quote | None
    details: MarketDetailsExtra = Field(default_factory=MarketDetailsExtra)
    provider_order: list[str] = Field(default_factory=list)
