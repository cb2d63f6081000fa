"""Quote provider adapters and the registry that orders them."""

import httpx

from equity_aggregator.config import Settings, settings
from equity_aggregator.providers.alphavantage import AlphaVantageProvider
from equity_aggregator.providers.base import HttpProvider, ProviderRegistry, QuoteProvider
from equity_aggregator.providers.bse import BseIndiaProvider, parse_bse_graph_series
from equity_aggregator.providers.nse import NseIndiaProvider
from equity_aggregator.providers.screener import ScreenerProvider
from equity_aggregator.providers.tradingview import TradingViewProvider
from equity_aggregator.providers.twelvedata import TwelveDataProvider
from equity_aggregator.providers.yahoo import YahooProvider


def build_default_registry(
    config: Settings | None = None,
    client: httpx.AsyncClient | None = None,
) -> ProviderRegistry:
    """Registry with every built-in adapter sharing one config (and optionally one client)."""
    config = config or settings
    return ProviderRegistry(
        [
            NseIndiaProvider(config, client),
            BseIndiaProvider(config, client),
            TradingViewProvider(config, client),
            YahooProvider(config, client),
            ScreenerProvider(config, client),
            TwelveDataProvider(config, client),
            AlphaVantageProvider(config, client),
        ]
    )


__all__ = [
    "AlphaVantageProvider",
    "BseIndiaProvider",
    "HttpProvider",
    "NseIndiaProvider",
    "ProviderRegistry",
    "QuoteProvider",
    "ScreenerProvider",
    "TradingViewProvider",
    "TwelveDataProvider",
    "YahooProvider",
    "build_default_registry",
    "parse_bse_graph_series",
]
