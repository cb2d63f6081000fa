"""Tolerant coercion helpers for vendor payloads.

Vendors send numbers as floats, strings with thousands separators, percent
signs, currency symbols, Indian magnitude suffixes (Cr, Lakh) and a zoo of
"no value" markers. Everything funnels into ``float | None``.
"""

import math
import re
from datetime import UTC, datetime
from typing import Any

_NULL_MARKERS = {"", "-", "--", "NA", "N/A"}

_SCALED_RE = re.compile(
    r"^([+-]?[0-9,]+(?:\.[0-9]+)?)\s*(CR|CRORE|LAC|LAKH|K|M|MN|B|BN)\.?$",
    re.IGNORECASE,
)
_DOTNET_DATE_RE = re.compile(r"/Date\((\d+)\)/", re.IGNORECASE)
_NSE_DATE_RE = re.compile(r"^(\d{1,2})-([A-Za-z]{3})-(\d{4})$")
_SLASH_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_MONTHS = {
    "JAN": 1, "FEB": 2, "MAR": 3, "APR": 4, "MAY": 5, "JUN": 6,
    "JUL": 7, "AUG": 8, "SEP": 9, "OCT": 10, "NOV": 11, "DEC": 12,
}


def to_number(value: Any) -> float | None:
    """Coerce a vendor value to a finite float.

    Args:
        value: int, float or string such as "1,234.5" or "12.3%".

    Returns:
        Parsed number, or None for missing/placeholder/non-finite values.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None

    if isinstance(value, str):
        cleaned = value.replace(",", "").replace("%", "").strip()
        if cleaned.upper() in _NULL_MARKERS:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
        return number if math.isfinite(number) else None

    return None


def apply_unit(value: Any, unit: str | None) -> float | None:
    """Scale a number by an Indian/international magnitude suffix."""
    number = to_number(value)
    if number is None:
        return None

    normalized = (unit or "").strip().upper().rstrip(".")
    if not normalized:
        return number
    if normalized.startswith("CR"):
        return number * 1e7
    if normalized.startswith(("LAC", "LAKH")):
        return number * 1e5
    if normalized == "K":
        return number * 1e3
    if normalized.startswith("M"):
        return number * 1e6
    if normalized.startswith("B"):
        return number * 1e9
    return number


def to_number_with_units(value: Any) -> float | None:
    """Like :func:`to_number`, but honours ``₹``/``$`` and magnitude suffixes."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return to_number(value)
    if not isinstance(value, str):
        return to_number(value)

    normalized = re.sub(r"\s+", " ", re.sub(r"[₹$]", "", value)).strip()
    if not normalized:
        return None

    scaled = _SCALED_RE.match(normalized)
    if scaled:
        return apply_unit(scaled.group(1), scaled.group(2))

    return to_number(normalized)


def first_finite(*values: Any) -> float | None:
    """First value that coerces to a finite number."""
    for value in values:
        number = to_number(value)
        if number is not None:
            return number
    return None


def first_with_units(*values: Any) -> float | None:
    for value in values:
        number = to_number_with_units(value)
        if number is not None:
            return number
    return None


def last_finite(values: Any) -> float | None:
    """Last value of a list that coerces to a finite number."""
    if not isinstance(values, list):
        return None
    for value in reversed(values):
        number = to_number(value)
        if number is not None:
            return number
    return None


def first_text(*values: Any) -> str:
    """First non-empty value rendered as a stripped string."""
    for value in values:
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def parse_market_date(value: Any) -> datetime | None:
    """Parse the date formats seen across exchange and vendor payloads.

    Accepts epoch seconds or milliseconds, ``/Date(ms)/``, ``dd-Mon-yyyy``,
    ISO-8601 dates and ``dd/mm/yyyy``. Naive results are treated as UTC.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        seconds = value / 1000 if value > 1e12 else value
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None

    raw = str(value).strip()
    if not raw:
        return None

    dotnet = _DOTNET_DATE_RE.search(raw)
    if dotnet:
        return parse_market_date(int(dotnet.group(1)))

    nse = _NSE_DATE_RE.match(raw)
    if nse:
        month = _MONTHS.get(nse.group(2).upper())
        if month is None:
            return None
        try:
            return datetime(int(nse.group(3)), month, int(nse.group(1)), tzinfo=UTC)
        except ValueError:
            return None

    slash = _SLASH_DATE_RE.match(raw)
    if slash:
        try:
            return datetime(
                int(slash.group(3)), int(slash.group(2)), int(slash.group(1)), tzinfo=UTC
            )
        except ValueError:
            return None

    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
