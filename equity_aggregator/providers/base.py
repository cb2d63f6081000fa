"""Provider abstraction shared by every quote source.

This module provides:
- QuoteProvider: the adapter interface (``fetch(symbols) -> list[Quote]``)
- HttpProvider: httpx transport with status-to-error mapping and a bounded
  per-symbol worker pool
- ProviderRegistry: priority-ordered lookup of adapters by name
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any

import httpx
import structlog

from equity_aggregator.config import Settings, settings
from equity_aggregator.data.models import Quote
from equity_aggregator.errors import (
    SESSION_REJECTED_STATUSES,
    EquityAggregatorError,
    ProviderError,
    SessionRejectedError,
    short_error,
)

logger = structlog.get_logger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)
API_USER_AGENT = "equity-aggregator/1.0"
FAILURE_SAMPLE_SIZE = 3


class QuoteProvider(ABC):
    """A single quote source.

    Implementations translate vendor responses into canonical quotes and
    raise ``ProviderError`` when the whole batch failed.
    """

    name: str = ""

    def skip_reason(self) -> str:
        """Reason this provider must be skipped (e.g. missing API key), or ""."""
        return ""

    @abstractmethod
    async def fetch(self, symbols: Sequence[str]) -> list[Quote]:
        """Fetch quotes for canonical symbols.

        Args:
            symbols: Canonical symbols still unresolved.

        Returns:
            Quotes for whichever symbols this provider could serve.

        Raises:
            ProviderError: If the provider failed for the whole batch.
        """

    async def close(self) -> None:
        """Release transport resources."""


class HttpProvider(QuoteProvider):
    """Quote provider backed by an httpx ``AsyncClient``.

    The client is created lazily with the configured timeout unless one is
    injected (tests inject clients built on ``httpx.MockTransport``).
    """

    def __init__(
        self,
        config: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or settings
        self._client = client
        self._owns_client = client is None
        self._logger = logger.bind(component=f"{self.name}_provider")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.config.REQUEST_TIMEOUT_SECONDS,
                follow_redirects=True,
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._client and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpProvider":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        session_aware: bool = False,
        tolerate_client_errors: bool = False,
    ) -> httpx.Response:
        """Issue one request and map transport/status failures to errors.

        Args:
            method: HTTP method.
            url: Absolute URL.
            params: Query parameters.
            json: JSON body.
            headers: Request headers.
            session_aware: Map 401/403/429 to ``SessionRejectedError``.
            tolerate_client_errors: Return 4xx responses instead of raising.

        Returns:
            The httpx response.

        Raises:
            SessionRejectedError: Session-aware call rejected with 401/403/429.
            ProviderError: Network failure, timeout or non-success status.
        """
        client = await self._get_client()
        self._logger.debug("provider_request", method=method, url=url, params=params)

        try:
            response = await client.request(method, url, params=params, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise ProviderError(
                f"timeout calling {url}", provider=self.name, code="timeout"
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(str(e) or repr(e), provider=self.name, code="network") from e

        status = response.status_code
        if session_aware and status in SESSION_REJECTED_STATUSES:
            raise SessionRejectedError(
                f"session rejected with HTTP {status}", provider=self.name, status=status
            )
        if status >= 500 or (status >= 400 and not tolerate_client_errors):
            raise ProviderError(
                f"HTTP {status} from {url}", provider=self.name, status=status
            )
        return response

    async def _get_json(self, url: str, **kwargs: Any) -> Any:
        """GET and decode JSON."""
        response = await self._request("GET", url, **kwargs)
        return self._decode_json(response)

    def _decode_json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                "response is not valid JSON", provider=self.name, code="bad-json"
            ) from e

    async def _fetch_each(
        self,
        symbols: Sequence[str],
        fetch_one: Callable[[str], Awaitable[Quote | None]],
    ) -> list[Quote]:
        """Fetch symbols one call each, bounded by PROVIDER_CONCURRENCY.

        Returns:
            Quotes in input order.

        Raises:
            ProviderError: With code ``empty-result-set`` if every symbol failed.
        """
        if not symbols:
            return []

        semaphore = asyncio.Semaphore(self.config.PROVIDER_CONCURRENCY)

        async def guarded(symbol: str) -> Quote | str:
            async with semaphore:
                try:
                    quote = await fetch_one(symbol)
                except EquityAggregatorError as e:
                    self._logger.debug("symbol_fetch_failed", symbol=symbol, error=short_error(e))
                    return f"{symbol}:{short_error(e)}"
                return quote if quote is not None else f"{symbol}:empty"

        outcomes = await asyncio.gather(*(guarded(symbol) for symbol in symbols))
        quotes = [item for item in outcomes if isinstance(item, Quote)]
        failures = [item for item in outcomes if isinstance(item, str)]

        if not quotes and failures:
            raise ProviderError(
                f"{self.name}-empty-result-set:{';'.join(failures[:FAILURE_SAMPLE_SIZE])}",
                provider=self.name,
                code="empty-result-set",
            )
        return quotes


class ProviderRegistry:
    """Priority-ordered collection of quote providers.

    Example:
        registry = ProviderRegistry([NseIndiaProvider(), YahooProvider()])
        order = registry.effective_order(["nseindia", "yahoo"])
    """

    PRIMARY_EXCHANGE = "nseindia"
    SECONDARY_EXCHANGE = "bseindia"
    SCRAPE_FALLBACK = "screener"

    def __init__(self, providers: Iterable[QuoteProvider]) -> None:
        self._providers: dict[str, QuoteProvider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: QuoteProvider) -> None:
        if not provider.name:
            raise ValueError("provider must declare a name")
        self._providers[provider.name] = provider

    def get(self, name: str) -> QuoteProvider | None:
        return self._providers.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    @property
    def names(self) -> list[str]:
        return list(self._providers)

    def effective_order(self, configured: Iterable[str]) -> list[str]:
        """Resolve the provider order actually used for a request.

        The secondary exchange adapter is inserted right after the primary
        one (or first, if the primary is absent) and the scrape adapter is
        appended when missing. Names with no registered adapter are dropped.
        """
        order = list(dict.fromkeys(name for name in configured if name))

        if self.SECONDARY_EXCHANGE not in order:
            if self.PRIMARY_EXCHANGE in order:
                order.insert(order.index(self.PRIMARY_EXCHANGE) + 1, self.SECONDARY_EXCHANGE)
            else:
                order.insert(0, self.SECONDARY_EXCHANGE)

        if self.SCRAPE_FALLBACK not in order:
            order.append(self.SCRAPE_FALLBACK)

        unknown = [name for name in order if name not in self._providers]
        if unknown:
            logger.warning("unknown_providers_ignored", providers=unknown)
        return [name for name in order if name in self._providers]

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()
