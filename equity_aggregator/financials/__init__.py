"""Quarterly financial statement parsing and extraction."""

from equity_aggregator.financials.parser import (
    FinancialPageParser,
    QuarterlyTable,
    ScreenerPageParser,
    build_quarterly_rows,
    growth_series,
)

__all__ = [
    "FinancialPageParser",
    "QuarterlyTable",
    "ScreenerPageParser",
    "build_quarterly_rows",
    "growth_series",
]
