"""Multi-source technical indicator resolution.

The resolver walks a cascade of sources for one symbol, merging each result
into the snapshot built so far without overwriting values already found,
and stops as soon as both EMAs are present:

1. Native exchange daily history (NSE for ``.NS``, BSE for ``.BO``)
2. Alias tickers (cross-listing, symbol-master twin): scanner fields, then
   a Yahoo daily series
3. Yahoo daily plus weekly series for the symbol itself
4. The financial-data page's technical section, then tickers it names
5. Twelve Data, then Alpha Vantage daily series (API keys permitting)

Every outcome, including "nothing found", is cached; misses expire sooner.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Sequence

import structlog

from equity_aggregator.cache.manager import CacheService, get_cache_service
from equity_aggregator.config import Settings, settings
from equity_aggregator.data.models import Quote, TechnicalSnapshot, cap_trace
from equity_aggregator.errors import short_error
from equity_aggregator.financials.parser import ScreenerPageParser
from equity_aggregator.providers.alphavantage import AlphaVantageProvider
from equity_aggregator.providers.base import ProviderRegistry
from equity_aggregator.providers.bse import BseIndiaProvider
from equity_aggregator.providers.nse import NseIndiaProvider
from equity_aggregator.providers.screener import ScreenerProvider
from equity_aggregator.providers.tradingview import TradingViewProvider, snapshot_from_quote
from equity_aggregator.providers.twelvedata import TwelveDataProvider
from equity_aggregator.providers.yahoo import YahooProvider
from equity_aggregator.symbol_master import SymbolMasterLookup
from equity_aggregator.symbols import is_alpha_ticker, is_bse, is_nse, normalize_symbol, strip_exchange_suffix
from equity_aggregator.technicals.indicators import (
    PricePoint,
    build_snapshot_from_closes,
    build_snapshot_from_daily_series,
    classify_stage_from_ema_proxy,
    merge_snapshots,
    stage_from_price_vs_sma,
)

logger = structlog.get_logger(__name__)

MIN_SERIES_POINTS = 2


def is_complete(snapshot: TechnicalSnapshot | None) -> bool:
    return snapshot is not None and snapshot.is_complete


def alias_candidates(
    symbol: str,
    name_hint: str = "",
    symbol_master: SymbolMasterLookup | None = None,
) -> list[str]:
    """The symbol, its cross-listing and any symbol-master NSE twin."""
    normalized = normalize_symbol(symbol)
    if not normalized:
        return []
    base = strip_exchange_suffix(normalized)
    candidates: dict[str, None] = {normalized: None}

    if is_alpha_ticker(base):
        candidates[f"{base}.NS"] = None
        candidates[f"{base}.BO"] = None

    if is_bse(normalized) and symbol_master is not None:
        alias = symbol_master.resolve_alias(normalized, name_hint)
        if alias:
            candidates[alias] = None

    return [item for item in dict.fromkeys(map(normalize_symbol, candidates)) if item]


def needs_technicals(quote: Quote) -> bool:
    """Usable quotes missing either EMA or the stage get a technical lookup."""
    return quote.is_usable and (
        quote.ema50 is None or quote.ema200 is None or quote.market_cycle_stage is None
    )


def apply_technical_snapshot(quote: Quote, snapshot: TechnicalSnapshot | None) -> Quote:
    """Fill a quote's missing technical fields from a snapshot.

    Values already on the quote are kept. A missing stage falls back to the
    EMA proxy, then to price versus the 30-week SMA.
    """
    if snapshot is None:
        return quote

    ema50 = quote.ema50 if quote.ema50 is not None else snapshot.ema50
    ema200 = quote.ema200 if quote.ema200 is not None else snapshot.ema200
    sma_30w = quote.thirty_week_sma if quote.thirty_week_sma is not None else snapshot.thirty_week_sma
    price = quote.regular_market_price
    stage = (
        quote.market_cycle_stage
        or snapshot.market_cycle_stage
        or classify_stage_from_ema_proxy(price, ema50, ema200)
        or stage_from_price_vs_sma(price, sma_30w)
    )

    return quote.model_copy(
        update={
            "ema50": ema50,
            "ema200": ema200,
            "thirty_week_sma": sma_30w,
            "market_cycle_stage": stage,
            "provider_trace": cap_trace([*quote.provider_trace, f"technicals:{snapshot.source}"]),
        }
    )


class TechnicalAnalysisResolver:
    """Resolves EMA50/EMA200/30-week SMA/stage for a symbol.

    Example:
        resolver = TechnicalAnalysisResolver(build_default_registry())
        snapshot = await resolver.get_snapshot("RELIANCE.NS", price_hint=2950.0)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        cache: CacheService | None = None,
        symbol_master: SymbolMasterLookup | None = None,
        config: Settings | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            registry: Provider adapters; sources missing from it are skipped.
            cache: Cache service holding the technical map.
            symbol_master: Optional alias lookup for BSE-to-NSE twins.
            config: Settings (concurrency bound for batch enrichment).
        """
        self.registry = registry
        self.cache = cache or get_cache_service()
        self.symbol_master = symbol_master
        self.config = config or settings
        self._logger = logger.bind(component="technical_resolver")

    def _provider(self, name: str, kind: type) -> object | None:
        provider = self.registry.get(name)
        return provider if isinstance(provider, kind) else None

    async def _attempt(
        self, step: str, symbol: str, call: Callable[[], Awaitable[TechnicalSnapshot | None]]
    ) -> TechnicalSnapshot | None:
        """Run one cascade step; failures are logged and yield None."""
        try:
            return await call()
        except Exception as e:
            self._logger.debug("technical_step_failed", step=step, symbol=symbol, error=short_error(e))
            return None

    # =========================================================================
    # Alias candidates
    # =========================================================================

    def alias_candidates(self, symbol: str, name_hint: str = "") -> list[str]:
        return alias_candidates(symbol, name_hint, self.symbol_master)

    # =========================================================================
    # Cascade steps
    # =========================================================================

    async def _from_exchange_history(
        self, symbol: str, price_hint: float | None
    ) -> TechnicalSnapshot | None:
        series: list[PricePoint] = []
        source = ""
        if is_nse(symbol):
            nse = self._provider("nseindia", NseIndiaProvider)
            if nse is not None:
                series, source = await nse.fetch_daily_history(symbol), "nse-history-tech"
        elif is_bse(symbol):
            bse = self._provider("bseindia", BseIndiaProvider)
            if bse is not None:
                series, source = await bse.fetch_daily_history(symbol), "bse-history-tech"

        if len(series) < MIN_SERIES_POINTS:
            return None
        return build_snapshot_from_daily_series(series, price_hint, source)

    async def _from_aliases(
        self, candidates: Iterable[str], price_hint: float | None, source_prefix: str
    ) -> TechnicalSnapshot | None:
        """Scanner fields, then a Yahoo daily series, per alias until complete."""
        tradingview = self._provider("tradingview", TradingViewProvider)
        yahoo = self._provider("yahoo", YahooProvider)
        merged: TechnicalSnapshot | None = None

        for candidate in dict.fromkeys(filter(None, map(normalize_symbol, candidates))):
            found: TechnicalSnapshot | None = None

            if tradingview is not None:

                async def scan(candidate: str = candidate) -> TechnicalSnapshot | None:
                    quotes = await tradingview.fetch([candidate])
                    return snapshot_from_quote(
                        quotes[0] if quotes else None,
                        f"{source_prefix}:tradingview:{candidate}",
                    )

                found = merge_snapshots(
                    found, await self._attempt("alias_tradingview", candidate, scan), price_hint
                )

            if not is_complete(found) and yahoo is not None:

                async def chart(candidate: str = candidate) -> TechnicalSnapshot | None:
                    series = await yahoo.fetch_close_series(candidate, "1d", "2y")
                    return build_snapshot_from_daily_series(
                        series, price_hint, f"{source_prefix}:yahoo:{candidate}"
                    )

                found = merge_snapshots(
                    found, await self._attempt("alias_yahoo", candidate, chart), price_hint
                )

            if found is not None:
                merged = merge_snapshots(merged, found, price_hint)
                if is_complete(merged):
                    break

        return merged

    async def _from_yahoo(self, symbol: str) -> TechnicalSnapshot | None:
        """Daily 2y plus weekly 5y series; the stage uses the latest weekly close."""
        yahoo = self._provider("yahoo", YahooProvider)
        if yahoo is None:
            return None

        daily = await yahoo.fetch_close_series(symbol, "1d", "2y")
        weekly: list[PricePoint] = []
        try:
            weekly = await yahoo.fetch_close_series(symbol, "1wk", "5y")
        except Exception as e:
            self._logger.debug("yahoo_weekly_series_failed", symbol=symbol, error=short_error(e))

        weekly_closes = [point.close for point in weekly]
        return build_snapshot_from_closes(
            [point.close for point in daily],
            weekly_closes,
            weekly_closes[-1] if weekly_closes else None,
            "yahoo-tech",
        )

    async def _from_screener(
        self, symbol: str, price_hint: float | None, name_hint: str
    ) -> TechnicalSnapshot | None:
        screener = self._provider("screener", ScreenerProvider)
        if screener is None:
            return None

        html, _ = await screener.fetch_page(symbol)
        if not html:
            return None

        parser = ScreenerPageParser(html)
        snapshot = merge_snapshots(None, parser.parse_technicals(price_hint), price_hint)
        if not is_complete(snapshot):
            aliases = parser.ticker_candidates(symbol, name_hint)
            snapshot = merge_snapshots(
                snapshot,
                await self._from_aliases(aliases, price_hint, "screener-alias-tech"),
                price_hint,
            )
        return snapshot

    async def _from_series_vendor(
        self, name: str, kind: type, symbol: str, price_hint: float | None
    ) -> TechnicalSnapshot | None:
        provider = self._provider(name, kind)
        if provider is None or provider.skip_reason():
            return None
        series = await provider.fetch_daily_history(symbol)
        if len(series) < MIN_SERIES_POINTS:
            return None
        return build_snapshot_from_daily_series(series, price_hint, f"{name}-tech")

    # =========================================================================
    # Public API
    # =========================================================================

    async def get_snapshot(
        self,
        symbol: str,
        price_hint: float | None = None,
        name_hint: str = "",
    ) -> TechnicalSnapshot | None:
        """Resolve a technical snapshot for one symbol.

        Args:
            symbol: Any symbol form; normalized internally.
            price_hint: Current price used for stage classification.
            name_hint: Company name used for alias matching.

        Returns:
            Merged snapshot, or None when no source produced anything.
        """
        normalized = normalize_symbol(symbol)
        if not normalized:
            return None

        cached = await self.cache.technicals.get_fresh(normalized)
        if cached is not None:
            return cached.value

        steps: list[tuple[str, Callable[[], Awaitable[TechnicalSnapshot | None]]]] = [
            ("exchange_history", lambda: self._from_exchange_history(normalized, price_hint)),
            (
                "aliases",
                lambda: self._from_aliases(
                    self.alias_candidates(normalized, name_hint),
                    price_hint,
                    f"symbol-alias-tech:{normalized}",
                ),
            ),
            ("yahoo", lambda: self._from_yahoo(normalized)),
            ("screener", lambda: self._from_screener(normalized, price_hint, name_hint)),
            (
                "twelvedata",
                lambda: self._from_series_vendor(
                    "twelvedata", TwelveDataProvider, normalized, price_hint
                ),
            ),
            (
                "alphavantage",
                lambda: self._from_series_vendor(
                    "alphavantage", AlphaVantageProvider, normalized, price_hint
                ),
            ),
        ]

        snapshot: TechnicalSnapshot | None = None
        for step, call in steps:
            if is_complete(snapshot):
                break
            snapshot = merge_snapshots(
                snapshot, await self._attempt(step, normalized, call), price_hint
            )

        if snapshot is None:
            self._logger.debug("technical_snapshot_unavailable", symbol=normalized)
        await self.cache.technicals.set(normalized, snapshot)
        return snapshot

    async def enrich_quotes(self, quotes: Sequence[Quote]) -> list[Quote]:
        """Fill missing technical fields on usable quotes, preserving order."""
        semaphore = asyncio.Semaphore(self.config.PROVIDER_CONCURRENCY)

        async def enrich(quote: Quote) -> Quote:
            if not needs_technicals(quote):
                return quote
            async with semaphore:
                snapshot = await self.get_snapshot(
                    quote.symbol, quote.regular_market_price, quote.short_name
                )
            return apply_technical_snapshot(quote, snapshot)

        return list(await asyncio.gather(*(enrich(quote) for quote in quotes)))
