"""Symbol master lookups used for alias resolution.

The technical resolver and the financial extractor only need two
capabilities from a symbol master: map a BSE listing to its NSE twin by
company name, and search listings by name. ``SymbolMasterLookup`` names that
contract; ``InMemorySymbolMaster`` implements it over a list of items.
"""

import re
from collections.abc import Iterable
from typing import Protocol

from pydantic import BaseModel

from equity_aggregator.symbols import exchange_for_symbol, normalize_symbol, strip_exchange_suffix

SEARCH_LIMIT_MAX = 50

NAME_MATCH_STOP_WORDS = frozenset(
    {"LIMITED", "LTD", "PVT", "PRIVATE", "COMPANY", "CO", "INDIA", "INDIAN", "THE", "INC", "PLC", "LLP"}
)


class SymbolMasterItem(BaseModel):
    """One listed security."""

    symbol: str
    base_symbol: str
    company_name: str
    exchange: str
    source: str = "unknown"

    @classmethod
    def create(cls, symbol: str, company_name: str = "", source: str = "unknown") -> "SymbolMasterItem | None":
        """Build an item from raw input, or None if the symbol is not NSE/BSE."""
        normalized = normalize_symbol(symbol)
        if not normalized.endswith((".NS", ".BO")):
            return None
        base = strip_exchange_suffix(normalized)
        return cls(
            symbol=normalized,
            base_symbol=base,
            company_name=re.sub(r"\s+", " ", company_name or "").strip() or base,
            exchange=exchange_for_symbol(normalized),
            source=source,
        )


class SymbolMasterLookup(Protocol):
    """Capability the aggregation engine needs from a symbol master."""

    def resolve_alias(self, symbol: str, name_hint: str = "") -> str:
        """NSE symbol listing the same company as a ``.BO`` symbol, or ""."""
        ...

    def search_by_name(self, query: str, limit: int = 10) -> list[SymbolMasterItem]:
        """Listings whose symbol or company name matches ``query``."""
        ...


def normalize_company_name_for_match(name: str, relaxed: bool = False) -> str:
    """Uppercase, ``&`` -> AND, punctuation stripped; relaxed also drops stop words."""
    base = re.sub(r"[^A-Z0-9 ]", " ", (name or "").upper().replace("&", " AND "))
    tokens = base.split()
    if relaxed:
        tokens = [token for token in tokens if token not in NAME_MATCH_STOP_WORDS]
    return " ".join(tokens)


class InMemorySymbolMaster:
    """Symbol master backed by a fixed item list.

    Example:
        master = InMemorySymbolMaster([
            SymbolMasterItem.create("RELIANCE.NS", "Reliance Industries Ltd"),
            SymbolMasterItem.create("500325.BO", "Reliance Industries Limited"),
        ])
        master.resolve_alias("500325.BO")  # "RELIANCE.NS"
    """

    def __init__(self, items: Iterable[SymbolMasterItem | None] = ()) -> None:
        self._items = [item for item in items if item is not None]
        self._strict: dict[str, list[str]] = {}
        self._relaxed: dict[str, list[str]] = {}
        self._bse_names: dict[str, str] = {}

        for item in self._items:
            if item.exchange == "NSE":
                for index, relaxed in ((self._strict, False), (self._relaxed, True)):
                    key = normalize_company_name_for_match(item.company_name, relaxed)
                    if key:
                        index.setdefault(key, []).append(item.symbol)
            elif item.company_name:
                self._bse_names.setdefault(item.symbol, item.company_name)

    def __len__(self) -> int:
        return len(self._items)

    def _unique_match(self, name: str) -> str:
        # Ambiguous names (several NSE listings) are never guessed.
        for index, relaxed in ((self._strict, False), (self._relaxed, True)):
            key = normalize_company_name_for_match(name, relaxed)
            matches = index.get(key, []) if key else []
            if len(matches) == 1:
                return matches[0]
        return ""

    def resolve_alias(self, symbol: str, name_hint: str = "") -> str:
        normalized = normalize_symbol(symbol)
        if not normalized.endswith(".BO"):
            return ""

        names = [name_hint.strip()] if name_hint and name_hint.strip() else []
        master_name = self._bse_names.get(normalized)
        if master_name and master_name not in names:
            names.append(master_name)

        for name in names:
            alias = self._unique_match(name)
            if alias:
                return alias
        return ""

    def search_by_name(self, query: str, limit: int = 10) -> list[SymbolMasterItem]:
        """Ranked search: exact symbol, base, prefixes, then substrings.

        Numeric queries favour BSE listings; everything else favours NSE.
        """
        normalized_query = re.sub(r"\s+", " ", query or "").strip().upper()
        if not normalized_query:
            return []
        compact = normalized_query.replace(" ", "")
        numeric = bool(re.match(r"^\d{3,}$", compact))
        limit = min(max(limit, 1), SEARCH_LIMIT_MAX)

        ranked: list[tuple[int, int, str, SymbolMasterItem]] = []
        for item in self._items:
            symbol, base, company = item.symbol.upper(), item.base_symbol.upper(), item.company_name.upper()
            if symbol in (compact, f"{compact}.NS", f"{compact}.BO"):
                score = 140
            elif base == compact:
                score = 130
            elif base.startswith(compact):
                score = 110
            elif company.startswith(normalized_query):
                score = 95
            elif compact in symbol:
                score = 85
            elif normalized_query in company:
                score = 70
            else:
                continue

            preferred = "BSE" if numeric else "NSE"
            if item.exchange == preferred:
                score += 20 if numeric else 5
            ranked.append((-score, 0 if item.exchange == preferred else 1, item.symbol, item))

        ranked.sort(key=lambda entry: entry[:3])
        return [entry[3] for entry in ranked[:limit]]
