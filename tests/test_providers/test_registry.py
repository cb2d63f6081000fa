"""Tests for provider ordering."""

from collections.abc import Sequence

import pytest

from equity_aggregator.data.models import Quote
from equity_aggregator.providers.base import ProviderRegistry, QuoteProvider


class NamedProvider(QuoteProvider):
    def __init__(self, name: str) -> None:
        self.name = name

    async def fetch(self, symbols: Sequence[str]) -> list[Quote]:
        return []


def registry(*names: str) -> ProviderRegistry:
    return ProviderRegistry([NamedProvider(name) for name in names])


class TestEffectiveOrder:
    """Tests for ProviderRegistry.effective_order."""

    def test_secondary_after_primary(self) -> None:
        """Test bseindia follows nseindia and screener is appended."""
        reg = registry("nseindia", "bseindia", "yahoo", "screener")
        assert reg.effective_order(["nseindia", "yahoo"]) == ["nseindia", "bseindia", "yahoo", "screener"]

    def test_secondary_first_without_primary(self) -> None:
        """Test bseindia leads when nseindia is not configured."""
        reg = registry("nseindia", "bseindia", "yahoo", "screener")
        assert reg.effective_order(["yahoo"]) == ["bseindia", "yahoo", "screener"]

    def test_configured_positions_kept(self) -> None:
        """Test explicitly ordered entries are not moved."""
        reg = registry("nseindia", "bseindia", "yahoo", "screener")
        assert reg.effective_order(["screener", "bseindia", "nseindia"]) == [
            "screener",
            "bseindia",
            "nseindia",
        ]

    def test_unknown_and_duplicate_names_dropped(self) -> None:
        """Test names without an adapter disappear."""
        reg = registry("bseindia", "yahoo", "screener")
        assert reg.effective_order(["yahoo", "bloomberg", "yahoo", ""]) == ["bseindia", "yahoo", "screener"]

    def test_register_requires_name(self) -> None:
        """Test nameless providers are rejected."""
        with pytest.raises(ValueError):
            registry("")
