"""Moving averages, trend stages and technical snapshot resolution."""

from equity_aggregator.technicals.indicators import (
    PricePoint,
    build_snapshot_from_closes,
    build_snapshot_from_daily_series,
    classify_stage_from_ema_proxy,
    classify_weinstein_stage,
    ema,
    ema_relaxed,
    merge_snapshots,
    sma,
)

__all__ = [
    "PricePoint",
    "build_snapshot_from_closes",
    "build_snapshot_from_daily_series",
    "classify_stage_from_ema_proxy",
    "classify_weinstein_stage",
    "ema",
    "ema_relaxed",
    "merge_snapshots",
    "sma",
]
