"""Indian equity market-data aggregation.

Resolves NSE/BSE symbols into canonical quotes through a prioritized chain
of provider adapters, enriches them with technical indicators and scrapes
quarterly financial statements.

Example:
    async with QuoteOrchestrator() as orchestrator:
        quotes = await orchestrator.get_quotes(["RELIANCE", "TCS.NS"])
        report = await orchestrator.get_quarterly_financials("TCS.NS", limit=4)
"""

from equity_aggregator.analytics import (
    PortfolioAnalytics,
    Position,
    ScreenerFilters,
    calculate_portfolio_analytics,
    run_screener,
)
from equity_aggregator.cache import CacheService, get_cache_service
from equity_aggregator.config import Settings, configure_logging, settings
from equity_aggregator.data import (
    DataStatus,
    FinancialReport,
    MarketCycleStage,
    MarketDetails,
    Quote,
    TechnicalSnapshot,
)
from equity_aggregator.data.orchestrator import QuoteOrchestrator
from equity_aggregator.errors import (
    EquityAggregatorError,
    ParseError,
    ProviderError,
    SessionRejectedError,
    UnusableQuoteError,
)
from equity_aggregator.financials.extractor import FinancialStatementExtractor
from equity_aggregator.providers import ProviderRegistry, QuoteProvider, build_default_registry
from equity_aggregator.symbol_master import InMemorySymbolMaster, SymbolMasterItem, SymbolMasterLookup
from equity_aggregator.symbols import normalize_symbol
from equity_aggregator.technicals.resolver import TechnicalAnalysisResolver

__version__ = "0.1.0"

__all__ = [
    "CacheService",
    "DataStatus",
    "EquityAggregatorError",
    "FinancialReport",
    "FinancialStatementExtractor",
    "InMemorySymbolMaster",
    "MarketCycleStage",
    "MarketDetails",
    "ParseError",
    "PortfolioAnalytics",
    "Position",
    "ProviderError",
    "ProviderRegistry",
    "Quote",
    "QuoteOrchestrator",
    "QuoteProvider",
    "ScreenerFilters",
    "SessionRejectedError",
    "Settings",
    "SymbolMasterItem",
    "SymbolMasterLookup",
    "TechnicalAnalysisResolver",
    "TechnicalSnapshot",
    "UnusableQuoteError",
    "build_default_registry",
    "calculate_portfolio_analytics",
    "configure_logging",
    "get_cache_service",
    "normalize_symbol",
    "run_screener",
    "settings",
]
