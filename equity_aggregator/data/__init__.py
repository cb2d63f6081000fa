"""Canonical data models and quote normalization.

This module provides:
- Data models: Quote, TechnicalSnapshot, FinancialReport, MarketDetails
- Normalization: normalize_quote_shape, merge_missing_fields, degraded quotes

The orchestrator and session manager live in submodules and are imported
from there directly.
"""

from equity_aggregator.data.models import (
    CompanyProfile,
    DataStatus,
    FinancialReport,
    FinancialRow,
    MarketCycleStage,
    MarketDetails,
    NseDetails,
    Quote,
    ReportStatus,
    TechnicalSnapshot,
)
from equity_aggregator.data.normalize import (
    create_unavailable_quote,
    merge_missing_fields,
    needs_enrichment,
    normalize_quote_shape,
)

__all__ = [
    "CompanyProfile",
    "DataStatus",
    "FinancialReport",
    "FinancialRow",
    "MarketCycleStage",
    "MarketDetails",
    "NseDetails",
    "Quote",
    "ReportStatus",
    "TechnicalSnapshot",
    "create_unavailable_quote",
    "merge_missing_fields",
    "needs_enrichment",
    "normalize_quote_shape",
]
