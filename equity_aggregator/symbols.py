"""Canonical symbol handling for Indian exchange listings.

Every symbol in the system is ``BASE.NS`` (NSE) or ``BASE.BO`` (BSE). Five or
six digit bases are BSE scrip codes and always map to ``.BO``, even when the
input claims NSE.
"""

import re
from collections.abc import Iterable

NSE_SUFFIX = ".NS"
BSE_SUFFIX = ".BO"

_EXCHANGE_SUFFIX_MAP = {
    "NSE": NSE_SUFFIX,
    "NS": NSE_SUFFIX,
    "BSE": BSE_SUFFIX,
    "BO": BSE_SUFFIX,
}

_SCREENER_CODE_RE = re.compile(r"screener\.in/company/(\d{5,6})", re.IGNORECASE)
_SYMBOL_RE = re.compile(r"^([A-Z0-9\-_.]+?)(?:\.(NSE|NS|BSE|BO))?$")
_TRAILING_SUFFIX_RE = re.compile(r"\.(NS|BO)$", re.IGNORECASE)
_SCRIP_CODE_RE = re.compile(r"^\d{5,6}$")
_ALPHA_TICKER_RE = re.compile(r"^[A-Z][A-Z0-9\-_.]{1,24}$")


def is_scrip_code(base: str) -> bool:
    """Whether a base symbol looks like a numeric BSE scrip code."""
    return bool(_SCRIP_CODE_RE.match(base or ""))


def is_alpha_ticker(base: str) -> bool:
    """Whether a base symbol looks like an alphabetic exchange ticker."""
    return bool(_ALPHA_TICKER_RE.match(base or "")) and not is_scrip_code(base)


def normalize_symbol(value: str | None) -> str:
    """Canonicalize free-form input into ``BASE.NS`` / ``BASE.BO``.

    Args:
        value: Ticker, ticker with exchange suffix, or a screener.in company URL.

    Returns:
        Canonical symbol, or "" for empty/non-string input.
    """
    if not value or not isinstance(value, str):
        return ""

    code_match = _SCREENER_CODE_RE.search(value)
    raw = code_match.group(1) if code_match else value
    trimmed = re.sub(r"\s+", "", raw.strip().upper())
    if not trimmed:
        return ""

    match = _SYMBOL_RE.match(trimmed)
    if not match:
        return trimmed

    symbol_part, exchange_part = match.group(1), match.group(2)
    base = _TRAILING_SUFFIX_RE.sub("", symbol_part)
    if not exchange_part:
        return f"{base}{BSE_SUFFIX if is_scrip_code(base) else NSE_SUFFIX}"

    if is_scrip_code(base) and exchange_part in ("NSE", "NS"):
        return f"{base}{BSE_SUFFIX}"

    return f"{base}{_EXCHANGE_SUFFIX_MAP[exchange_part]}"


def strip_exchange_suffix(symbol: str) -> str:
    """Drop a trailing ``.NS``/``.BO``."""
    return re.sub(r"\.(NS|BO)$", "", (symbol or "").upper())


def to_display_symbol(symbol: str) -> str:
    """Human-readable form, e.g. ``RELIANCE (NSE)``."""
    if not symbol:
        return ""
    upper = symbol.upper()
    upper = re.sub(r"\.NS$", " (NSE)", upper)
    return re.sub(r"\.BO$", " (BSE)", upper)


def exchange_for_symbol(symbol: str) -> str:
    """Exchange code implied by the canonical suffix."""
    return "BSE" if symbol.endswith(BSE_SUFFIX) else "NSE"


def is_nse(symbol: str) -> bool:
    return symbol.endswith(NSE_SUFFIX)


def is_bse(symbol: str) -> bool:
    return symbol.endswith(BSE_SUFFIX)


def bse_scrip_code(symbol: str) -> str:
    """Numeric scrip code for a ``.BO`` symbol, or ""."""
    normalized = normalize_symbol(symbol)
    if not is_bse(normalized):
        return ""
    base = strip_exchange_suffix(normalized)
    return base if is_scrip_code(base) else ""


def dedupe_symbols(values: Iterable[str | None] | None) -> list[str]:
    """Normalize, drop empties and de-duplicate keeping first occurrence order."""
    seen: dict[str, None] = {}
    for value in values or []:
        normalized = normalize_symbol(value)
        if normalized:
            seen.setdefault(normalized, None)
    return list(seen)
