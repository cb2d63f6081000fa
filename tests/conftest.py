"""Shared fixtures: settings without API keys and mock HTTP clients."""

from collections.abc import Callable

import httpx
import pytest

from equity_aggregator.cache.manager import CacheConfig, CacheService
from equity_aggregator.config import Settings

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def test_settings() -> Settings:
    """Settings with defaults and no vendor API keys."""
    return Settings()


@pytest.fixture
def cache() -> CacheService:
    """Fresh cache service per test."""
    return CacheService(CacheConfig())


@pytest.fixture
def mock_client() -> Callable[[Handler], httpx.AsyncClient]:
    """Factory building an httpx client on a MockTransport handler."""

    def build(handler: Handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return build
