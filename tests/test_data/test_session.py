"""Tests for the exchange SessionManager."""

import httpx
import pytest

from equity_aggregator.data.session import SessionManager, merge_cookie_headers, parse_cookie_header
from equity_aggregator.errors import ProviderError, SessionRejectedError


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def make_session(
    handler: httpx.MockTransport, *, required: bool = True, clock: FakeClock | None = None
) -> SessionManager:
    client = httpx.AsyncClient(transport=handler)

    async def get_client() -> httpx.AsyncClient:
        return client

    return SessionManager(
        "nseindia",
        lambda hint: ["https://example.test/", f"https://example.test/quote/{hint or 'X'}"],
        get_client,
        ttl_seconds=300,
        required=required,
        clock=clock or FakeClock(),
    )


def cookie_transport(calls: list[str]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(
            200,
            headers=[("set-cookie", "nsit=abc; Path=/"), ("set-cookie", f"seq={len(calls)}")],
        )

    return httpx.MockTransport(handler)


class TestCookieHelpers:
    """Tests for cookie header helpers."""

    def test_parse_cookie_header(self) -> None:
        """Test splitting a Cookie header."""
        assert parse_cookie_header("a=1; b=2") == {"a": "1", "b": "2"}

    def test_merge_cookie_headers(self) -> None:
        """Test Set-Cookie values override and extend."""
        merged = merge_cookie_headers("a=1; b=2", ["b=3; Path=/", "c=4; HttpOnly"])
        assert merged == "a=1; b=3; c=4"


class TestSessionManager:
    """Tests for SessionManager."""

    @pytest.mark.asyncio
    async def test_bootstrap_and_reuse(self) -> None:
        """Test the cookie is bootstrapped once and reused within the TTL."""
        calls: list[str] = []
        session = make_session(cookie_transport(calls))

        cookie = await session.ensure(hint="TCS")
        assert "nsit=abc" in cookie
        assert calls == ["/", "/quote/TCS"]

        assert await session.ensure() == cookie
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_expired_session_bootstraps_again(self) -> None:
        """Test the TTL forces a new bootstrap."""
        calls: list[str] = []
        clock = FakeClock()
        session = make_session(cookie_transport(calls), clock=clock)

        await session.ensure()
        clock.now = 301
        await session.ensure()
        assert len(calls) == 4

    @pytest.mark.asyncio
    async def test_required_session_without_cookie_fails(self) -> None:
        """Test a required session raises when no cookie arrives."""
        session = make_session(httpx.MockTransport(lambda request: httpx.Response(200)))
        with pytest.raises(ProviderError) as exc_info:
            await session.ensure()
        assert exc_info.value.code == "no-cookie"

    @pytest.mark.asyncio
    async def test_best_effort_session_tolerates_failures(self) -> None:
        """Test a best-effort session returns an empty cookie on errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        session = make_session(httpx.MockTransport(handler), required=False)
        assert await session.ensure() == ""

    @pytest.mark.asyncio
    async def test_call_refreshes_once_on_rejection(self) -> None:
        """Test one forced refresh and one retry after a 401/403/429."""
        calls: list[str] = []
        session = make_session(cookie_transport(calls))
        cookies_seen: list[str] = []

        async def request(cookie: str) -> str:
            cookies_seen.append(cookie)
            if len(cookies_seen) == 1:
                raise SessionRejectedError("rejected", provider="nseindia", status=403)
            return "ok"

        assert await session.call(request, hint="TCS") == "ok"
        assert len(cookies_seen) == 2
        assert cookies_seen[0] != cookies_seen[1]
        assert len(calls) == 4

    @pytest.mark.asyncio
    async def test_call_gives_up_after_one_retry(self) -> None:
        """Test a second rejection propagates."""
        session = make_session(cookie_transport([]))
        attempts = 0

        async def request(cookie: str) -> str:
            nonlocal attempts
            attempts += 1
            raise SessionRejectedError("rejected", provider="nseindia", status=429)

        with pytest.raises(SessionRejectedError):
            await session.call(request)
        assert attempts == 2

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self) -> None:
        """Test non-session errors propagate without a refresh."""
        session = make_session(cookie_transport([]))
        attempts = 0

        async def request(cookie: str) -> str:
            nonlocal attempts
            attempts += 1
            raise ProviderError("boom", provider="nseindia", status=500)

        with pytest.raises(ProviderError):
            await session.call(request)
        assert attempts == 1

    @pytest.mark.asyncio
    async def test_invalidate(self) -> None:
        """Test invalidate drops the cookie."""
        session = make_session(cookie_transport([]))
        await session.ensure()
        session.invalidate()
        assert session.token == ""
