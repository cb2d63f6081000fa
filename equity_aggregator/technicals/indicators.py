"""Moving-average and trend-stage calculations.

This module provides:
- sma / ema / ema_relaxed over close series
- ISO-week resampling of daily closes
- Weinstein stage classification and its EMA-only proxy
- Snapshot construction from a daily series and non-destructive merging

All functions are pure; network access lives in the resolver.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from equity_aggregator.data.models import MarketCycleStage, TechnicalSnapshot
from equity_aggregator.parsing import first_finite, to_number

EMA_SHORT_PERIOD = 50
EMA_LONG_PERIOD = 200
WEEKLY_SMA_PERIOD = 30
STAGE_SLOPE_THRESHOLD_PCT = 0.05


@dataclass(frozen=True)
class PricePoint:
    """One close at a UTC epoch-seconds timestamp."""

    ts: int
    close: float


def sma(
    values: Sequence[float | None], period: int, end_exclusive: int | None = None
) -> float | None:
    """Simple average of the ``period`` values ending before ``end_exclusive``.

    Returns None if the window is short or contains a missing value.
    """
    end = len(values) if end_exclusive is None else end_exclusive
    if period <= 0 or end < period:
        return None

    total = 0.0
    for value in values[end - period : end]:
        number = to_number(value)
        if number is None:
            return None
        total += number
    return total / period


def ema(values: Sequence[float | None], period: int) -> float | None:
    """Exponential moving average seeded with the SMA of the first ``period`` values."""
    if period <= 0 or len(values) < period:
        return None

    seed = sma(values, period, period)
    if seed is None:
        return None

    multiplier = 2 / (period + 1)
    current = seed
    for value in values[period:]:
        price = to_number(value)
        if price is None:
            continue
        current = (price - current) * multiplier + current
    return round(current, 4)


def ema_relaxed(values: Sequence[float | None], period: int) -> float | None:
    """EMA seeded from the first value, for histories shorter than ``period``."""
    if period <= 0 or not values:
        return None

    current = to_number(values[0])
    if current is None:
        return None

    multiplier = 2 / (period + 1)
    for value in values[1:]:
        price = to_number(value)
        if price is None:
            continue
        current = (price - current) * multiplier + current
    return round(current, 4)


def ema_best_effort(values: Sequence[float | None], period: int) -> float | None:
    """Strict EMA when the history is long enough, relaxed otherwise."""
    strict = ema(values, period) if len(values) >= period else None
    return strict if strict is not None else ema_relaxed(values, period)


def iso_week_key(ts: int) -> tuple[int, int]:
    year, week, _ = datetime.fromtimestamp(ts, tz=UTC).isocalendar()
    return year, week


def daily_to_weekly_closes(series: Sequence[PricePoint]) -> list[float]:
    """Resample daily closes to weekly closes; the latest day of each ISO week wins."""
    weekly: dict[tuple[int, int], PricePoint] = {}
    for point in series:
        key = iso_week_key(point.ts)
        existing = weekly.get(key)
        if existing is None or point.ts > existing.ts:
            weekly[key] = point
    return [point.close for point in sorted(weekly.values(), key=lambda item: item.ts)]


def classify_weinstein_stage(
    close: float | None, sma_30w: float | None, prev_sma_30w: float | None
) -> MarketCycleStage | None:
    """Classify the trend stage from price and the 30-week SMA slope.

    Args:
        close: Latest price.
        sma_30w: Current 30-week SMA.
        prev_sma_30w: 30-week SMA one week earlier.

    Returns:
        Stage, or None when any input is missing.
    """
    if close is None or sma_30w is None or prev_sma_30w is None:
        return None

    slope_pct = ((sma_30w - prev_sma_30w) / prev_sma_30w) * 100 if prev_sma_30w != 0 else 0.0
    above = close >= sma_30w

    if above and slope_pct > STAGE_SLOPE_THRESHOLD_PCT:
        return MarketCycleStage.MARKUP
    if not above and slope_pct < -STAGE_SLOPE_THRESHOLD_PCT:
        return MarketCycleStage.MARKDOWN
    if above:
        return MarketCycleStage.ACCUMULATION
    return MarketCycleStage.DISTRIBUTION


def classify_stage_from_ema_proxy(
    close: float | None, ema50: float | None, ema200: float | None
) -> MarketCycleStage | None:
    """Stage approximation when no 30-week SMA is available."""
    if close is None or ema50 is None or ema200 is None:
        return None

    if close >= ema200 and ema50 >= ema200:
        return MarketCycleStage.MARKUP
    if close < ema200 and ema50 < ema200:
        return MarketCycleStage.MARKDOWN
    if close >= ema200:
        return MarketCycleStage.ACCUMULATION
    return MarketCycleStage.DISTRIBUTION


def stage_from_price_vs_sma(
    close: float | None, sma_30w: float | None
) -> MarketCycleStage | None:
    # No slope information: above the average is Markup, below is Markdown.
    if close is None or sma_30w is None:
        return None
    return MarketCycleStage.MARKUP if close >= sma_30w else MarketCycleStage.MARKDOWN


def build_snapshot_from_closes(
    daily_closes: Sequence[float],
    weekly_closes: Sequence[float],
    close_hint: float | None,
    source: str,
) -> TechnicalSnapshot | None:
    """Compute EMAs, the 30-week SMA and a stage from close series.

    Args:
        daily_closes: Chronological daily closes.
        weekly_closes: Chronological weekly closes.
        close_hint: Price used for stage classification, if known.
        source: Attribution recorded on the snapshot.

    Returns:
        Snapshot, or None with fewer than two daily closes.
    """
    if len(daily_closes) < 2:
        return None

    ema50 = ema_best_effort(daily_closes, EMA_SHORT_PERIOD)
    ema200 = ema_best_effort(daily_closes, EMA_LONG_PERIOD)
    sma_30w = (
        sma(weekly_closes, WEEKLY_SMA_PERIOD)
        if len(weekly_closes) >= WEEKLY_SMA_PERIOD
        else None
    )
    prev_sma_30w = (
        sma(weekly_closes, WEEKLY_SMA_PERIOD, len(weekly_closes) - 1)
        if len(weekly_closes) >= WEEKLY_SMA_PERIOD + 1
        else None
    )

    close = first_finite(close_hint, daily_closes[-1])
    stage = classify_weinstein_stage(close, sma_30w, prev_sma_30w) or (
        classify_stage_from_ema_proxy(close, ema50, ema200)
    )

    return TechnicalSnapshot(
        ema50=ema50,
        ema200=ema200,
        thirty_week_sma=None if sma_30w is None else round(sma_30w, 4),
        market_cycle_stage=stage,
        source=source,
    )


def build_snapshot_from_daily_series(
    series: Sequence[PricePoint],
    price_hint: float | None = None,
    source: str = "unknown-tech",
) -> TechnicalSnapshot | None:
    """Snapshot from a daily series, resampled to weekly closes internally."""
    return build_snapshot_from_closes(
        [point.close for point in series],
        daily_to_weekly_closes(series),
        price_hint,
        source,
    )


def merge_sources(*sources: str | None) -> str:
    """'+'-join source attributions, de-duplicating parts in order."""
    parts: list[str] = []
    for source in sources:
        for part in (source or "").split("+"):
            clean = part.strip()
            if clean and clean not in parts:
                parts.append(clean)
    return "+".join(parts)


def merge_snapshots(
    base: TechnicalSnapshot | None,
    candidate: TechnicalSnapshot | None,
    price_hint: float | None = None,
) -> TechnicalSnapshot | None:
    """Combine two snapshots without overwriting any value present in ``base``.

    The stage comes from base, then candidate, then price versus the 30-week
    SMA, then the EMA proxy.

    Returns:
        Merged snapshot, or None when neither input carries anything.
    """
    if base is None and candidate is None:
        return None

    close = to_number(price_hint)
    ema50 = first_finite(base and base.ema50, candidate and candidate.ema50)
    ema200 = first_finite(base and base.ema200, candidate and candidate.ema200)
    sma_30w = first_finite(base and base.thirty_week_sma, candidate and candidate.thirty_week_sma)

    stage = (
        (base.market_cycle_stage if base else None)
        or (candidate.market_cycle_stage if candidate else None)
        or stage_from_price_vs_sma(close, sma_30w)
        or classify_stage_from_ema_proxy(close, ema50, ema200)
    )

    if ema50 is None and ema200 is None and sma_30w is None and stage is None:
        return None

    return TechnicalSnapshot(
        ema50=ema50,
        ema200=ema200,
        thirty_week_sma=sma_30w,
        market_cycle_stage=stage,
        source=merge_sources(base and base.source, candidate and candidate.source)
        or "unknown-tech",
    )
