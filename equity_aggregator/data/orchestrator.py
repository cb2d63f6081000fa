"""Quote orchestration across the provider registry.

This module provides:
- QuoteOrchestrator: cache check, first-hit-wins resolution over the
  effective provider order, non-destructive enrichment, stale/unavailable
  degradation and technical enrichment for a batch of symbols
- Market details and quarterly financials composed on top of it
"""

import asyncio
from collections.abc import Iterable

import structlog

from equity_aggregator.cache.manager import CacheService, get_cache_service
from equity_aggregator.config import Settings, settings
from equity_aggregator.data.models import (
    CompanyProfile,
    FinancialReport,
    MarketDetails,
    MarketDetailsExtra,
    NseDetails,
    Quote,
    cap_trace,
)
from equity_aggregator.data.normalize import (
    create_unavailable_quote,
    merge_missing_fields,
    needs_enrichment,
)
from equity_aggregator.errors import AllProvidersExhausted, short_error
from equity_aggregator.financials.extractor import FinancialStatementExtractor
from equity_aggregator.financials.parser import DEFAULT_QUARTER_LIMIT
from equity_aggregator.providers import build_default_registry
from equity_aggregator.providers.base import ProviderRegistry, QuoteProvider
from equity_aggregator.providers.nse import NseIndiaProvider
from equity_aggregator.providers.screener import ScreenerProvider
from equity_aggregator.providers.twelvedata import TwelveDataProvider
from equity_aggregator.symbol_master import SymbolMasterLookup
from equity_aggregator.symbols import dedupe_symbols, normalize_symbol
from equity_aggregator.technicals.resolver import TechnicalAnalysisResolver

logger = structlog.get_logger(__name__)


class QuoteOrchestrator:
    """Resolves batches of symbols into canonical quotes.

    Output always has one quote per de-duplicated input symbol, in input
    order. Provider failures never escape; they end up in each quote's
    provider trace, and symbols no provider resolved degrade to the last
    usable cached quote (``stale``) or an empty ``unavailable`` quote.

    Example:
        orchestrator = QuoteOrchestrator()
        quotes = await orchestrator.get_quotes(["RELIANCE", "500325.BO"])
        for quote in quotes:
            print(quote.symbol, quote.regular_market_price, quote.data_status)
    """

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        cache: CacheService | None = None,
        resolver: TechnicalAnalysisResolver | None = None,
        extractor: FinancialStatementExtractor | None = None,
        symbol_master: SymbolMasterLookup | None = None,
        config: Settings | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            registry: Provider adapters. Defaults to every built-in adapter.
            cache: Cache service. Defaults to the global instance.
            resolver: Technical resolver sharing the registry and cache.
            extractor: Financial extractor sharing the cache.
            symbol_master: Optional alias lookup.
            config: Settings (provider order, concurrency).
        """
        self.config = config or settings
        self.registry = registry or build_default_registry(self.config)
        self.cache = cache or get_cache_service()
        self.resolver = resolver or TechnicalAnalysisResolver(
            self.registry, self.cache, symbol_master, self.config
        )
        if extractor is None:
            screener = self.registry.get("screener")
            extractor = FinancialStatementExtractor(
                screener if isinstance(screener, ScreenerProvider) else None,
                self.cache,
                symbol_master,
            )
        self.extractor = extractor
        self._logger = logger.bind(component="quote_orchestrator")

    @property
    def provider_order(self) -> list[str]:
        """Effective provider order for the configured priority list."""
        return self.registry.effective_order(self.config.PROVIDER_ORDER)

    async def close(self) -> None:
        """Close every provider's transport."""
        await self.registry.close()
        await self.extractor.screener.close()

    async def __aenter__(self) -> "QuoteOrchestrator":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    # =========================================================================
    # Resolution
    # =========================================================================

    async def _resolve(
        self, symbols: list[str], order: list[str]
    ) -> tuple[dict[str, Quote], dict[str, list[str]], dict[str, str]]:
        """First-hit-wins pass over the provider order.

        Returns:
            Resolved quotes, per-symbol attempt traces and the hit provider
            per resolved symbol.
        """
        resolved: dict[str, Quote] = {}
        attempts: dict[str, list[str]] = {symbol: [] for symbol in symbols}
        hit_by: dict[str, str] = {}
        pending = list(symbols)

        for name in order:
            if not pending:
                break
            provider = self.registry.get(name)
            if provider is None:
                continue

            skip = provider.skip_reason()
            if skip:
                for symbol in pending:
                    attempts[symbol].append(f"{name}:skip({skip})")
                continue

            targets = list(pending)
            try:
                quotes = await provider.fetch(targets)
            except Exception as e:
                self._logger.debug("provider_failed", provider=name, error=short_error(e))
                for symbol in targets:
                    attempts[symbol].append(f"{name}:error({short_error(e)})")
                continue

            self._logger.debug(
                "provider_returned", provider=name, targets=len(targets), quotes=len(quotes)
            )
            consumed: set[str] = set()
            unusable: set[str] = set()
            for quote in quotes:
                if quote.symbol not in attempts or quote.symbol in resolved:
                    continue
                if not quote.is_usable:
                    if quote.symbol not in unusable:
                        unusable.add(quote.symbol)
                        attempts[quote.symbol].append(f"{name}:unusable")
                    continue
                resolved[quote.symbol] = quote.model_copy(
                    update={"provider_trace": cap_trace([*attempts[quote.symbol], f"hit:{name}"])}
                )
                hit_by[quote.symbol] = name
                consumed.add(quote.symbol)

            pending = [symbol for symbol in pending if symbol not in consumed]
            for symbol in targets:
                if symbol not in consumed and symbol not in unusable:
                    attempts[symbol].append(f"{name}:miss")

        return resolved, attempts, hit_by

    async def _enrich(
        self, resolved: dict[str, Quote], order: list[str], hit_by: dict[str, str]
    ) -> None:
        """Fill missing optional fields from the other providers, in order."""
        for name in order:
            targets = [
                symbol
                for symbol, quote in resolved.items()
                if needs_enrichment(quote) and hit_by.get(symbol) != name
            ]
            if not targets:
                if not any(needs_enrichment(quote) for quote in resolved.values()):
                    break
                continue

            provider = self.registry.get(name)
            if provider is None or provider.skip_reason():
                continue

            try:
                candidates = {quote.symbol: quote for quote in await provider.fetch(targets)}
            except Exception as e:
                self._logger.debug("provider_enrichment_failed", provider=name, error=short_error(e))
                continue

            for symbol in targets:
                candidate = candidates.get(symbol)
                if candidate is not None:
                    resolved[symbol] = merge_missing_fields(resolved[symbol], candidate, name)

    async def get_quotes(self, symbols: Iterable[str | None]) -> list[Quote]:
        """Quotes for a batch of symbols.

        Args:
            symbols: Raw symbols in any supported form; blanks and invalid
                entries are dropped, duplicates collapse to the first.

        Returns:
            One quote per de-duplicated symbol, in input order.
        """
        ordered = dedupe_symbols(symbols)
        if not ordered:
            return []

        results: dict[str, Quote] = {}
        missing: list[str] = []
        for symbol in ordered:
            cached = await self.cache.quotes.get_fresh(symbol)
            if cached is not None:
                results[symbol] = cached.value
            else:
                missing.append(symbol)

        if missing:
            order = self.provider_order
            resolved, attempts, hit_by = await self._resolve(missing, order)
            await self._enrich(resolved, order, hit_by)

            fetched: list[Quote] = []
            for symbol in missing:
                quote = resolved.get(symbol)
                if quote is None:
                    outcome = AllProvidersExhausted(symbol=symbol, attempts=tuple(attempts[symbol]))
                    quote = create_unavailable_quote(outcome, await self.cache.quotes.get_stale(symbol))
                    self._logger.warning(
                        "quote_unresolved", symbol=symbol, data_status=quote.data_status.value
                    )
                fetched.append(quote)

            for quote in await self.resolver.enrich_quotes(fetched):
                await self.cache.quotes.set(quote.symbol, quote)
                results[quote.symbol] = quote

            self._logger.info(
                "quotes_resolved",
                requested=len(ordered),
                cached=len(ordered) - len(missing),
                fetched=len(resolved),
                degraded=len(missing) - len(resolved),
            )

        return [results[symbol] for symbol in ordered]

    async def get_single_quote(self, symbol: str) -> Quote | None:
        quotes = await self.get_quotes([symbol])
        return quotes[0] if quotes else None

    # =========================================================================
    # Details
    # =========================================================================

    def _provider(self, name: str) -> QuoteProvider | None:
        return self.registry.get(name)

    async def _nse_details(self, symbol: str) -> NseDetails | None:
        provider = self._provider("nseindia")
        if not isinstance(provider, NseIndiaProvider):
            return None
        try:
            return await provider.fetch_details(symbol)
        except Exception as e:
            self._logger.debug("nse_details_failed", symbol=symbol, error=short_error(e))
            return None

    async def _profile(self, symbol: str) -> CompanyProfile | None:
        provider = self._provider("twelvedata")
        if not isinstance(provider, TwelveDataProvider):
            return None
        try:
            return await provider.fetch_profile(symbol)
        except Exception as e:
            self._logger.debug("profile_failed", symbol=symbol, error=short_error(e))
            return None

    async def get_market_details(self, symbol: str) -> MarketDetails:
        """Quote plus NSE security metadata and the vendor company profile.

        Raises:
            ValueError: If the symbol cannot be normalized.
        """
        normalized = normalize_symbol(symbol)
        if not normalized:
            raise ValueError("Invalid stock symbol.")

        quote = await self.get_single_quote(normalized)
        nse, profile = await asyncio.gather(self._nse_details(normalized), self._profile(normalized))
        return MarketDetails(
            symbol=normalized,
            quote=quote,
            details=MarketDetailsExtra(nse=nse, profile=profile),
            provider_order=self.provider_order,
        )

    async def get_quarterly_financials(
        self,
        symbol: str,
        limit: int = DEFAULT_QUARTER_LIMIT,
        force_refresh: bool = False,
    ) -> FinancialReport:
        return await self.extractor.get_quarterly_financials(symbol, limit, force_refresh)
