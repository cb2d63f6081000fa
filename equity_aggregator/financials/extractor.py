"""Quarterly financial statement extraction.

Fetches the company page for a symbol (trying its aliases when the first
identifier has no page), parses the quarterly results table and derives the
report rows. Failures never raise: they become an ``unavailable`` report
with a diagnostic message and a provider trace.
"""

from datetime import UTC, datetime

import structlog

from equity_aggregator.cache.manager import CacheService, get_cache_service
from equity_aggregator.data.models import FinancialReport, ReportStatus, cap_trace
from equity_aggregator.errors import ParseError, short_error
from equity_aggregator.financials.parser import (
    DEFAULT_QUARTER_LIMIT,
    FinancialPageParser,
    ScreenerPageParser,
    clamp_quarter_limit,
)
from equity_aggregator.providers.screener import ScreenerProvider
from equity_aggregator.symbol_master import SymbolMasterLookup
from equity_aggregator.symbols import normalize_symbol, strip_exchange_suffix
from equity_aggregator.technicals.resolver import alias_candidates

logger = structlog.get_logger(__name__)

TABLE_MISSING_MESSAGE = "Quarterly financial table is not available for this stock right now."
UNREACHABLE_MESSAGE = (
    "Quarterly financial data is currently unavailable for this symbol. "
    "This might be due to: 1) The stock may not have quarterly financial data available, "
    "2) The data source is temporarily unreachable, or 3) The symbol format may not be "
    "recognized. Please try refreshing the page or check if the symbol is correct."
)


class FinancialStatementExtractor:
    """Builds quarterly financial reports from scraped company pages.

    Example:
        extractor = FinancialStatementExtractor(ScreenerProvider())
        report = await extractor.get_quarterly_financials("TCS.NS", limit=4)
    """

    def __init__(
        self,
        screener: ScreenerProvider | None = None,
        cache: CacheService | None = None,
        symbol_master: SymbolMasterLookup | None = None,
        parser_factory: type[FinancialPageParser] = ScreenerPageParser,
    ) -> None:
        self.screener = screener or ScreenerProvider()
        self.cache = cache or get_cache_service()
        self.symbol_master = symbol_master
        self.parser_factory = parser_factory
        self._logger = logger.bind(component="financial_extractor")

    def candidates(self, symbol: str) -> list[str]:
        return alias_candidates(symbol, "", self.symbol_master)

    async def get_quarterly_financials(
        self,
        symbol: str,
        limit: int = DEFAULT_QUARTER_LIMIT,
        force_refresh: bool = False,
    ) -> FinancialReport:
        """Quarterly report for a symbol.

        Args:
            symbol: Any symbol form.
            limit: Number of quarters, clamped to 1..8.
            force_refresh: Ignore a fresh cached report.

        Returns:
            Report; ``data_status`` is ``unavailable`` when extraction failed.

        Raises:
            ValueError: If the symbol cannot be normalized.
        """
        normalized = normalize_symbol(symbol)
        if not normalized:
            raise ValueError("Invalid stock symbol.")

        limit = clamp_quarter_limit(limit)
        key = f"{normalized}:{limit}"
        if not force_refresh:
            cached = await self.cache.financials.get_fresh(key)
            if cached is not None:
                return cached.value

        updated_at = datetime.now(UTC).isoformat()
        trace: list[str] = []
        last_unavailable: FinancialReport | None = None

        for candidate in self.candidates(normalized):
            try:
                html, url = await self.screener.fetch_page(candidate)
                if not html:
                    trace.append(f"screener:miss:{candidate}")
                    continue

                parser = self.parser_factory(html)
                try:
                    labels, rows = parser.quarterly_rows(limit)
                except ParseError as e:
                    self._logger.debug("quarterly_table_missing", symbol=candidate, error=str(e))
                    labels, rows = [], []

                report = FinancialReport(
                    symbol=normalized,
                    company_name=parser.company_name() or strip_exchange_suffix(normalized),
                    source_url=url,
                    data_status=ReportStatus.AVAILABLE if rows else ReportStatus.UNAVAILABLE,
                    updated_at=updated_at,
                    quarter_labels=labels if rows else [],
                    rows=rows,
                    provider_trace=cap_trace([*trace, f"screener:hit:{candidate}"]),
                    message="" if rows else TABLE_MISSING_MESSAGE,
                )
            except Exception as e:
                self._logger.debug("financial_candidate_failed", symbol=candidate, error=short_error(e))
                trace.append(f"screener:error:{candidate}:{short_error(e)}")
                continue

            if report.is_available:
                self._logger.info(
                    "quarterly_financials_resolved",
                    symbol=normalized,
                    candidate=candidate,
                    quarters=len(report.quarter_labels),
                    rows=len(report.rows),
                )
                await self.cache.financials.set(key, report)
                return report
            last_unavailable = report

        unavailable = last_unavailable or FinancialReport(
            symbol=normalized,
            company_name=strip_exchange_suffix(normalized),
            data_status=ReportStatus.UNAVAILABLE,
            updated_at=updated_at,
            provider_trace=cap_trace(trace) if trace else ["screener:miss"],
            message=UNREACHABLE_MESSAGE,
        )
        self._logger.warning(
            "quarterly_financials_unavailable", symbol=normalized, trace=unavailable.provider_trace
        )
        await self.cache.financials.set(key, unavailable)
        return unavailable
