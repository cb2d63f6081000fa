"""Application configuration settings.

This module provides centralized configuration management using environment
variables with sensible defaults, plus the structlog setup used by every
component.
"""

import logging
import os
from dataclasses import dataclass, field

import structlog

DEFAULT_PROVIDER_ORDER = (
    "nseindia",
    "bseindia",
    "tradingview",
    "yahoo",
    "screener",
    "twelvedata",
)


def _get_bool_env(name: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable.

    Args:
        name: Environment variable name.
        default: Default value if not set.

    Returns:
        Boolean value from environment.
    """
    value = os.getenv(name, "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def _get_float_env(name: str, default: float) -> float:
    """Get a numeric value from environment variable, ignoring garbage."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_list_env(name: str, default: tuple[str, ...]) -> list[str]:
    """Get a comma-separated list from environment variable."""
    raw = os.getenv(name, "")
    items = [item.strip().lower() for item in raw.split(",") if item.strip()]
    return items or list(default)


@dataclass
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        PROVIDER_ORDER: Quote provider priority order (registry names).
        QUOTE_CACHE_TTL_SECONDS: Freshness window for cached quotes.
        TECHNICAL_CACHE_TTL_SECONDS: Freshness window for technical snapshots.
        TECHNICAL_MISS_CACHE_TTL_SECONDS: Freshness window for failed technical lookups.
        FINANCIAL_CACHE_TTL_SECONDS: Freshness window for available financial reports.
        CACHE_MAX_ENTRIES: Per-map entry cap; the oldest entries are evicted first.
        SESSION_TTL_SECONDS: Lifetime of exchange session cookies.
        REQUEST_TIMEOUT_SECONDS: Timeout applied to every outbound request.
        TECHNICAL_LOOKBACK_DAYS: Daily history window for indicator computation.
        PROVIDER_CONCURRENCY: Max in-flight per-symbol requests inside one adapter.
        TRADINGVIEW_SCAN_URL: TradingView scanner endpoint.
        TWELVE_DATA_API_KEY: Twelve Data API key (adapter skipped when absent).
        TWELVE_DATA_BASE_URL: Twelve Data REST base URL.
        ALPHA_VANTAGE_API_KEY: Alpha Vantage API key (adapter skipped when absent).
        ALPHA_VANTAGE_BASE_URL: Alpha Vantage query endpoint.
        MARKET_DATA_DEBUG: Emit per-provider debug diagnostics.
        LOG_LEVEL: Logging level.
    """

    # Providers
    PROVIDER_ORDER: list[str] = field(default_factory=lambda: list(DEFAULT_PROVIDER_ORDER))

    # Cache TTLs
    QUOTE_CACHE_TTL_SECONDS: float = 60.0
    TECHNICAL_CACHE_TTL_SECONDS: float = 30 * 60.0
    TECHNICAL_MISS_CACHE_TTL_SECONDS: float = 2 * 60.0
    FINANCIAL_CACHE_TTL_SECONDS: float = 6 * 60 * 60.0
    CACHE_MAX_ENTRIES: int = 5000

    # Transport
    SESSION_TTL_SECONDS: float = 5 * 60.0
    REQUEST_TIMEOUT_SECONDS: float = 9.0
    TECHNICAL_LOOKBACK_DAYS: int = 720
    PROVIDER_CONCURRENCY: int = 4

    # Vendors
    TRADINGVIEW_SCAN_URL: str = "https://scanner.tradingview.com/india/scan"
    TWELVE_DATA_API_KEY: str | None = None
    TWELVE_DATA_BASE_URL: str = "https://api.twelvedata.com"
    ALPHA_VANTAGE_API_KEY: str | None = None
    ALPHA_VANTAGE_BASE_URL: str = "https://www.alphavantage.co/query"

    # Logging
    MARKET_DATA_DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables.

        Returns:
            Settings instance populated from environment.
        """
        return cls(
            PROVIDER_ORDER=_get_list_env("MARKET_DATA_PROVIDER_ORDER", DEFAULT_PROVIDER_ORDER),
            QUOTE_CACHE_TTL_SECONDS=_get_float_env("MARKET_CACHE_TTL_SECONDS", 60.0),
            TECHNICAL_CACHE_TTL_SECONDS=_get_float_env("TECHNICAL_CACHE_TTL_SECONDS", 1800.0),
            TECHNICAL_MISS_CACHE_TTL_SECONDS=_get_float_env(
                "TECHNICAL_MISS_CACHE_TTL_SECONDS", 120.0
            ),
            FINANCIAL_CACHE_TTL_SECONDS=_get_float_env("FINANCIAL_CACHE_TTL_SECONDS", 21600.0),
            CACHE_MAX_ENTRIES=max(1, int(_get_float_env("MARKET_CACHE_MAX_ENTRIES", 5000))),
            SESSION_TTL_SECONDS=_get_float_env("NSE_COOKIE_TTL_SECONDS", 300.0),
            REQUEST_TIMEOUT_SECONDS=_get_float_env("MARKET_DATA_TIMEOUT_SECONDS", 9.0),
            TECHNICAL_LOOKBACK_DAYS=int(_get_float_env("TECHNICAL_LOOKBACK_DAYS", 720)),
            PROVIDER_CONCURRENCY=max(1, int(_get_float_env("MARKET_DATA_CONCURRENCY", 4))),
            TRADINGVIEW_SCAN_URL=os.getenv(
                "TRADINGVIEW_SCAN_URL", "https://scanner.tradingview.com/india/scan"
            ),
            TWELVE_DATA_API_KEY=os.getenv("TWELVE_DATA_API_KEY") or None,
            TWELVE_DATA_BASE_URL=os.getenv("TWELVE_DATA_BASE_URL", "https://api.twelvedata.com"),
            ALPHA_VANTAGE_API_KEY=os.getenv("ALPHA_VANTAGE_API_KEY") or None,
            ALPHA_VANTAGE_BASE_URL=os.getenv(
                "ALPHA_VANTAGE_BASE_URL", "https://www.alphavantage.co/query"
            ),
            MARKET_DATA_DEBUG=_get_bool_env("MARKET_DATA_DEBUG", default=False),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        )


def configure_logging(config: Settings | None = None) -> None:
    """Configure structlog on top of the stdlib logging module.

    MARKET_DATA_DEBUG forces DEBUG so provider-level diagnostics show up.

    Args:
        config: Settings to read the level from. Defaults to global settings.
    """
    config = config or settings
    level_name = "DEBUG" if config.MARKET_DATA_DEBUG else config.LOG_LEVEL.upper()
    level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(format="%(message)s", level=level, force=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "event"]),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Global settings instance
settings = Settings.from_env()
