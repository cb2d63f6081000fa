"""Cookie session management for the exchange endpoints.

NSE and BSE reject API calls that do not carry cookies issued by their
public pages. A ``SessionManager`` bootstraps those cookies, keeps them for
a TTL and hands out the merged ``Cookie`` header; the token and timestamp
are guarded by an asyncio lock so concurrent adapters share one bootstrap.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from equity_aggregator.errors import ProviderError, SessionRejectedError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def parse_cookie_header(header: str) -> dict[str, str]:
    """Split ``a=1; b=2`` into an ordered dict."""
    cookies: dict[str, str] = {}
    for part in (header or "").split(";"):
        name, sep, value = part.strip().partition("=")
        if sep and name.strip():
            cookies[name.strip()] = value.strip()
    return cookies


def merge_cookie_headers(current: str, set_cookies: Iterable[str]) -> str:
    """Merge ``Set-Cookie`` values into an existing ``Cookie`` header."""
    cookies = parse_cookie_header(current)
    for raw in set_cookies:
        name, sep, value = (raw or "").split(";", 1)[0].partition("=")
        if sep and name.strip():
            cookies[name.strip()] = value.strip()
    return "; ".join(f"{name}={value}" for name, value in cookies.items())


class SessionManager:
    """Bootstraps and caches an exchange cookie header.

    Example:
        session = SessionManager("nseindia", lambda hint: ["https://www.nseindia.com/"], ...)
        cookie = await session.ensure()
        cookie = await session.ensure(force_refresh=True)  # after a 401/403/429
    """

    def __init__(
        self,
        provider: str,
        bootstrap_urls: Callable[[str], list[str]],
        get_client: Callable[[], Awaitable[httpx.AsyncClient]],
        *,
        headers: dict[str, str] | None = None,
        ttl_seconds: float = 300.0,
        required: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the session manager.

        Args:
            provider: Provider name used in errors and logs.
            bootstrap_urls: Maps a bootstrap hint (base symbol) to page URLs.
            get_client: Coroutine returning the provider's httpx client.
            headers: Headers sent with bootstrap requests.
            ttl_seconds: How long a bootstrapped cookie is reused.
            required: Whether an empty cookie is a failure (NSE) or acceptable (BSE).
            clock: Monotonic clock, injectable for tests.
        """
        self._provider = provider
        self._bootstrap_urls = bootstrap_urls
        self._get_client = get_client
        self._headers = headers or {}
        self._ttl = ttl_seconds
        self._required = required
        self._clock = clock
        self._token = ""
        self._fetched_at: float | None = None
        self._lock = asyncio.Lock()
        self._logger = logger.bind(component="session_manager", provider=provider)

    @property
    def token(self) -> str:
        return self._token

    def _is_valid(self) -> bool:
        if self._fetched_at is None:
            return False
        if self._required and not self._token:
            return False
        return (self._clock() - self._fetched_at) < self._ttl

    async def ensure(self, force_refresh: bool = False, hint: str = "") -> str:
        """Return a usable cookie header, bootstrapping when needed.

        Args:
            force_refresh: Discard the current cookie and bootstrap again.
            hint: Base symbol some bootstrap pages are keyed on.

        Returns:
            Cookie header value (possibly "" for best-effort sessions).

        Raises:
            ProviderError: If a required session could not be bootstrapped.
        """
        async with self._lock:
            if not force_refresh and self._is_valid():
                return self._token

            merged = ""
            client = await self._get_client()
            for url in self._bootstrap_urls(hint):
                try:
                    response = await client.get(
                        url, headers={**self._headers, **({"cookie": merged} if merged else {})}
                    )
                except httpx.RequestError as e:
                    if self._required:
                        raise ProviderError(
                            f"session bootstrap failed: {e}",
                            provider=self._provider,
                            code="network",
                        ) from e
                    self._logger.debug("session_bootstrap_failed", url=url, error=str(e))
                    continue
                if response.status_code >= 500:
                    if self._required:
                        raise ProviderError(
                            f"session bootstrap failed with HTTP {response.status_code}",
                            provider=self._provider,
                            status=response.status_code,
                        )
                    continue
                merged = merge_cookie_headers(merged, response.headers.get_list("set-cookie"))

            if self._required and not merged:
                raise ProviderError(
                    "session bootstrap failed (missing set-cookie header)",
                    provider=self._provider,
                    code="no-cookie",
                )

            self._token = merged
            self._fetched_at = self._clock()
            self._logger.debug("session_bootstrapped", forced=force_refresh, cookies=bool(merged))
            return self._token

    async def call(self, request: Callable[[str], Awaitable[T]], hint: str = "") -> T:
        """Run ``request(cookie)``, refreshing the session once on rejection.

        Only ``SessionRejectedError`` (HTTP 401/403/429) triggers the retry;
        the second attempt uses a freshly bootstrapped cookie.
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(2),
            retry=retry_if_exception_type(SessionRejectedError),
            reraise=True,
        ):
            with attempt:
                forced = attempt.retry_state.attempt_number > 1
                if forced:
                    self._logger.info("session_refresh_retry", hint=hint)
                cookie = await self.ensure(force_refresh=forced, hint=hint)
                return await request(cookie)
        # Not reached: reraise=True propagates the last failure
        raise RuntimeError("Session retry loop exited unexpectedly")

    def invalidate(self) -> None:
        self._token = ""
        self._fetched_at = None
