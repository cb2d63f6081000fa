"""Quote shape normalization shared by every provider adapter.

Adapters hand over loosely-typed dicts (snake_case keys, values as the vendor
sent them); this module turns them into canonical ``Quote`` objects, decides
usability, merges enrichment candidates and builds degraded quotes.
"""

from typing import Any

from equity_aggregator.data.models import (
    DataStatus,
    MarketCycleStage,
    Quote,
    cap_trace,
)
from equity_aggregator.errors import AllProvidersExhausted
from equity_aggregator.parsing import first_finite, first_text
from equity_aggregator.symbols import exchange_for_symbol, normalize_symbol, strip_exchange_suffix

NUMERIC_FIELDS = (
    "regular_market_open",
    "day_high",
    "day_low",
    "regular_market_volume",
    "average_daily_volume_3_month",
    "market_cap",
    "fifty_two_week_low",
    "fifty_two_week_high",
    "pe_ratio",
    "eps",
    "pb_ratio",
    "ema50",
    "ema200",
    "thirty_week_sma",
    "face_value",
    "vwap",
    "upper_circuit",
    "lower_circuit",
    "delivery_to_traded_quantity",
)

TEXT_FIELDS = ("industry", "isin", "last_update_time")

ENRICHMENT_TRIGGER_FIELDS = (
    "market_cap",
    "regular_market_volume",
    "average_daily_volume_3_month",
    "pe_ratio",
    "eps",
    "pb_ratio",
    "ema50",
    "ema200",
    "thirty_week_sma",
    "market_cycle_stage",
)

FILLABLE_FIELDS = (
    "regular_market_volume",
    "average_daily_volume_3_month",
    "market_cap",
    "pe_ratio",
    "eps",
    "pb_ratio",
    "ema50",
    "ema200",
    "thirty_week_sma",
    "market_cycle_stage",
    "vwap",
    "upper_circuit",
    "lower_circuit",
    "delivery_to_traded_quantity",
    "industry",
    "isin",
    "face_value",
    "day_high",
    "day_low",
    "regular_market_open",
    "previous_close",
    "fifty_two_week_low",
    "fifty_two_week_high",
    "last_update_time",
)


def is_missing(value: Any) -> bool:
    return value is None or value == ""


def coerce_stage(value: Any) -> MarketCycleStage | None:
    """Map a stage label (any case) onto the enum; unknown labels become None."""
    if isinstance(value, MarketCycleStage):
        return value
    text = str(value or "").strip().lower()
    for stage in MarketCycleStage:
        if stage.value.lower() == text:
            return stage
    return None


def normalize_quote_shape(raw: dict[str, Any] | None) -> Quote | None:
    """Build a canonical quote from an adapter's raw field dict.

    Price falls back through previous close and the day range. Change and
    change percent are derived from price and previous close when the vendor
    did not send them.

    Args:
        raw: Field dict using Quote attribute names.

    Returns:
        Normalized quote, or None when the dict has no recognisable symbol.
    """
    if not isinstance(raw, dict):
        return None

    symbol = normalize_symbol(raw.get("symbol"))
    if not symbol:
        return None

    previous_close = first_finite(raw.get("previous_close"))
    price = first_finite(
        raw.get("regular_market_price"),
        previous_close,
        raw.get("day_high"),
        raw.get("day_low"),
    )

    change = first_finite(raw.get("regular_market_change"))
    change_percent = first_finite(raw.get("regular_market_change_percent"))
    if change is None and price is not None and previous_close is not None:
        change = round(price - previous_close, 4)
    if change_percent is None and change is not None and previous_close:
        change_percent = round((change / previous_close) * 100, 4)

    fields: dict[str, Any] = {name: first_finite(raw.get(name)) for name in NUMERIC_FIELDS}
    fields.update({name: first_text(raw.get(name)) or None for name in TEXT_FIELDS})

    trace = raw.get("provider_trace")
    return Quote(
        symbol=symbol,
        short_name=first_text(raw.get("short_name")) or strip_exchange_suffix(symbol),
        exchange=first_text(raw.get("exchange")) or exchange_for_symbol(symbol),
        currency=first_text(raw.get("currency")) or "INR",
        regular_market_price=price,
        regular_market_change=change,
        regular_market_change_percent=change_percent,
        previous_close=previous_close,
        market_cycle_stage=coerce_stage(raw.get("market_cycle_stage")),
        source=first_text(raw.get("source")) or "unknown",
        data_status=raw.get("data_status") or DataStatus.LIVE,
        provider_trace=cap_trace(trace) if isinstance(trace, list) else [],
        **fields,
    )


def needs_enrichment(quote: Quote | None) -> bool:
    """Whether any enrichment-worthy optional field is still empty."""
    if quote is None:
        return False
    return any(is_missing(getattr(quote, name)) for name in ENRICHMENT_TRIGGER_FIELDS)


def merge_missing_fields(base: Quote, candidate: Quote, provider: str) -> Quote:
    """Fill empty fields of ``base`` from ``candidate`` without overwriting.

    The short name is also replaced when it is only the bare ticker.

    Returns:
        ``base`` itself when nothing was filled, else an updated copy with an
        ``enrich:<provider>(<fields>)`` trace entry.
    """
    updates: dict[str, Any] = {}
    for name in FILLABLE_FIELDS:
        if is_missing(getattr(base, name)) and not is_missing(getattr(candidate, name)):
            updates[name] = getattr(candidate, name)

    if (
        is_missing(base.short_name) or base.short_name == strip_exchange_suffix(base.symbol)
    ) and not is_missing(candidate.short_name) and candidate.short_name != base.short_name:
        updates["short_name"] = candidate.short_name

    if not updates:
        return base

    updates["provider_trace"] = cap_trace(
        [*base.provider_trace, f"enrich:{provider}({','.join(updates)})"]
    )
    return base.model_copy(update=updates)


def create_unavailable_quote(
    outcome: AllProvidersExhausted,
    stale: Quote | None = None,
) -> Quote:
    """Degraded quote for a symbol no provider resolved.

    With a previous value, that value is re-labelled ``stale``; otherwise an
    empty ``unavailable`` quote is synthesized. Prices are never invented.
    """
    if stale is not None:
        source = stale.source if ":stale" in stale.source else f"{stale.source or 'unknown'}:stale"
        return stale.model_copy(
            update={
                "data_status": DataStatus.STALE,
                "source": source,
                "provider_trace": cap_trace(
                    [*stale.provider_trace, *outcome.attempts, f"stale-cache:{outcome.reason}"]
                ),
            }
        )

    symbol = normalize_symbol(outcome.symbol) or outcome.symbol
    return Quote(
        symbol=symbol,
        short_name=strip_exchange_suffix(symbol),
        exchange=exchange_for_symbol(symbol),
        source="unavailable",
        data_status=DataStatus.UNAVAILABLE,
        provider_trace=cap_trace([*outcome.attempts, f"unavailable:{outcome.reason}"]),
    )
