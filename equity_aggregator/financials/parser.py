"""Structured extraction from financial-data company pages.

``FinancialPageParser`` is the boundary between raw markup and the rest of
the engine: callers only ever see quarter labels, metric rows, quotes and
technical snapshots. The scraped site publishes no schema, so the parsing
below tracks its current markup and will need updating when that changes.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from bs4 import BeautifulSoup, Tag

from equity_aggregator.data.models import (
    DataStatus,
    FinancialRow,
    Quote,
    TechnicalSnapshot,
)
from equity_aggregator.data.normalize import normalize_quote_shape
from equity_aggregator.errors import ParseError
from equity_aggregator.parsing import apply_unit, first_finite, first_with_units, to_number
from equity_aggregator.symbols import is_bse, normalize_symbol, strip_exchange_suffix
from equity_aggregator.technicals.indicators import (
    classify_stage_from_ema_proxy,
    stage_from_price_vs_sma,
)

DEFAULT_QUARTER_LIMIT = 6
MAX_QUARTER_LIMIT = 8
HEADING_SEARCH_WINDOW = 220_000
TICKER_GUESS_MAX_LENGTH = 18

TICKER_GUESS_STOP_WORDS = frozenset(
    {"LTD", "LIMITED", "INDIA", "INDIAN", "COMPANY", "PVT", "PRIVATE", "THE", "AND", "CO", "INC", "PLC"}
)

_UNIT = r"(?:\s*(?:CR|CRORE|LAC|LAKH|K|M|MN|B|BN)\.?)?"
_NUM = r"[0-9,]+(?:\.[0-9]+)?"

_QUARTERLY_HEADING_RE = re.compile(r"Quarterly\s*Results", re.IGNORECASE)
_QUARTER_LABEL_RES = (
    re.compile(r"^(JAN|FEB|MAR|APR|MAY|JUN|JUL|AUG|SEP|SEPT|OCT|NOV|DEC)\s+\d{2,4}$", re.I),
    re.compile(r"^Q[1-4]\s+\d{2,4}$", re.I),
    re.compile(r"^\d{1,2}\s*[A-Z]{3}\s*\d{2,4}$", re.I),
)
_TTM_RE = re.compile(r"ttm", re.IGNORECASE)

_PRICE_RE = re.compile(
    rf"Current Price\s*₹?\s*({_NUM})(?:\s*([+\-−]?\d+(?:\.\d+)?)\s*%)?", re.IGNORECASE
)
_MARKET_CAP_RE = re.compile(rf"Market Cap\s*₹?\s*({_NUM})\s*([A-Za-z.]+)?", re.IGNORECASE)
_HIGH_LOW_RE = re.compile(rf"High\s*/\s*Low\s*₹?\s*({_NUM})\s*/\s*({_NUM})", re.IGNORECASE)
_PE_RE = re.compile(rf"Stock P/E\s*({_NUM})", re.IGNORECASE)
_PB_RE = re.compile(rf"Price to book value\s*({_NUM})", re.IGNORECASE)
_BOOK_VALUE_RE = re.compile(rf"Book Value\s*₹?\s*({_NUM})", re.IGNORECASE)
_FACE_VALUE_RE = re.compile(rf"Face Value\s*₹?\s*({_NUM})", re.IGNORECASE)
_UPDATED_RE = re.compile(r"(\d{1,2}\s+[A-Za-z]{3}(?:\s+\d{4})?\s*-\s*close price)", re.IGNORECASE)
_ISIN_RE = re.compile(r"\bISIN\b\s*([A-Z0-9]{12})", re.IGNORECASE)
_EXCHANGE_TICKER_RE = re.compile(r"\b(NSE|BSE)\s*[:\-]\s*([A-Z0-9]{2,20})\b", re.IGNORECASE)


def _ma_patterns(period: int) -> tuple[re.Pattern[str], ...]:
    return (
        re.compile(rf"{period}\s*Day\s*EMA\s*₹?\s*({_NUM}{_UNIT})", re.I),
        re.compile(rf"{period}\s*DMA\s*₹?\s*({_NUM}{_UNIT})", re.I),
        re.compile(rf"{period}\s*(?:D|DAY)?\s*(?:EMA|DMA)\s*[:\-]?\s*₹?\s*({_NUM})", re.I),
        re.compile(rf"(?:EMA|DMA)\s*{period}\s*(?:D|DAY)?\s*[:\-]?\s*₹?\s*({_NUM})", re.I),
        re.compile(rf"₹?\s*({_NUM})\s*(?:{period}\s*(?:D|DAY)?\s*(?:EMA|DMA))", re.I),
    )


_EMA50_RES = _ma_patterns(50)
_EMA200_RES = _ma_patterns(200)
_SMA_30W_RES = (re.compile(rf"30\s*Week\s*(?:MA|SMA)\s*₹?\s*({_NUM}{_UNIT})", re.I),)
_CURRENT_PRICE_RES = (re.compile(rf"Current Price\s*₹?\s*({_NUM})", re.I),)

# First metric row whose normalized key matches supplies the series.
METRIC_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    "sales": (re.compile(r"^sales\b"), re.compile(r"^revenue\b"), re.compile(r"^total income\b")),
    "operating_profit": (
        re.compile(r"^operating profit\b"),
        re.compile(r"^op profit\b"),
        re.compile(r"^ebitda\b"),
    ),
    "pat": (re.compile(r"^net profit\b"), re.compile(r"\bprofit after tax\b"), re.compile(r"^pat\b")),
    "opm": (re.compile(r"^opm\b"), re.compile(r"\boperating margin\b")),
    "eps": (re.compile(r"^eps\b"),),
}


def clean_text(value: str | None) -> str:
    return re.sub(r"\s+", " ", (value or "").replace("\xa0", " ")).strip()


def clamp_quarter_limit(limit: int | None) -> int:
    """Clamp a requested quarter count to 1..8 (default 6)."""
    try:
        value = int(limit) if limit else DEFAULT_QUARTER_LIMIT
    except (TypeError, ValueError):
        value = DEFAULT_QUARTER_LIMIT
    return min(max(value, 1), MAX_QUARTER_LIMIT)


def normalize_metric_key(label: str) -> str:
    """``"Sales +"`` -> ``"sales plus"``; ``"OPM %"`` -> ``"opm percent"``."""
    key = clean_text(label).lower().replace("+", " plus ").replace("%", " percent ")
    key = re.sub(r"\([^)]*\)", " ", key)
    return re.sub(r"[^a-z0-9]+", " ", key).strip()


def looks_like_quarter_label(label: str) -> bool:
    text = clean_text(label)
    if not text or _TTM_RE.search(text):
        return False
    return any(pattern.match(text) for pattern in _QUARTER_LABEL_RES)


def select_quarter_columns(header: list[str], limit: int) -> list[tuple[int, str]]:
    """Pick ``(column index, label)`` for the latest quarters, TTM excluded."""
    indexed = [(index, clean_text(label)) for index, label in enumerate(header)]
    columns = [(i, label) for i, label in indexed if i > 0 and looks_like_quarter_label(label)]
    if not columns:
        columns = [(i, label) for i, label in indexed if i > 0 and label and not _TTM_RE.search(label)]
    return columns[-limit:]


def growth_series(values: list[float | None], lag: int) -> list[float | None]:
    """Percent change against the value ``lag`` positions earlier, 2 dp."""
    result: list[float | None] = []
    for index, current in enumerate(values):
        previous = values[index - lag] if index >= lag else None
        if current is None or previous is None or abs(previous) < 1e-12:
            result.append(None)
            continue
        result.append(round((current - previous) / previous * 100, 2))
    return result


def fit_series(values: list[float | None], length: int, digits: int = 2) -> list[float | None]:
    """Pad or truncate to ``length`` values, rounding each."""
    fitted: list[float | None] = []
    for index in range(length):
        number = to_number(values[index]) if index < len(values) else None
        fitted.append(None if number is None else round(number, digits))
    return fitted


def company_name_to_ticker_guess(name: str) -> str:
    """Guess an exchange ticker from a company name (stop words dropped)."""
    tokens = re.sub(r"[^A-Z0-9 ]", " ", (name or "").upper()).split()
    kept = [token for token in tokens if token not in TICKER_GUESS_STOP_WORDS]
    return "".join(kept)[:TICKER_GUESS_MAX_LENGTH]


def _first_group(text: str, patterns: tuple[re.Pattern[str], ...]) -> str:
    for pattern in patterns:
        match = pattern.search(text)
        if match and match.group(1):
            return match.group(1).strip()
    return ""


@dataclass
class QuarterlyTable:
    """Quarter labels plus raw metric rows keyed by normalized label."""

    quarter_labels: list[str] = field(default_factory=list)
    metrics: list[tuple[str, str, list[float | None]]] = field(default_factory=list)

    def series(self, key: str) -> list[float | None]:
        for metric_key, _, values in self.metrics:
            if any(pattern.search(metric_key) for pattern in METRIC_PATTERNS[key]):
                return values
        return []


def build_quarterly_rows(table: QuarterlyTable) -> list[FinancialRow]:
    """Derive the output rows, keeping only rows with at least one value.

    Every emitted row has exactly ``len(table.quarter_labels)`` values.
    """
    count = len(table.quarter_labels)
    if count == 0:
        return []

    sales = fit_series(table.series("sales"), count)
    pat = fit_series(table.series("pat"), count)
    candidates = [
        ("sales", "Sales", "number", sales),
        ("sales_qoq", "Sales QoQ %", "percent", fit_series(growth_series(sales, 1), count)),
        ("sales_yoy", "Sales YoY %", "percent", fit_series(growth_series(sales, 4), count)),
        ("operating_profit", "Operating Profit", "number",
         fit_series(table.series("operating_profit"), count)),
        ("pat", "PAT", "number", pat),
        ("pat_qoq", "PAT QoQ %", "percent", fit_series(growth_series(pat, 1), count)),
        ("pat_yoy", "PAT YoY %", "percent", fit_series(growth_series(pat, 4), count)),
        ("opm", "OPM %", "percent", fit_series(table.series("opm"), count)),
        ("eps", "EPS", "number", fit_series(table.series("eps"), count)),
    ]
    return [
        FinancialRow(key=key, label=label, kind=kind, values=values)
        for key, label, kind, values in candidates
        if any(value is not None for value in values)
    ]


class FinancialPageParser(ABC):
    """Turns one company page into structured financial data."""

    @abstractmethod
    def company_name(self) -> str:
        """Company name shown on the page, or ""."""

    @abstractmethod
    def quarterly_table(self, limit: int = DEFAULT_QUARTER_LIMIT) -> QuarterlyTable:
        """Parse the quarterly results table.

        Raises:
            ParseError: If the page has no quarterly results table.
        """

    def quarterly_rows(self, limit: int = DEFAULT_QUARTER_LIMIT) -> tuple[list[str], list[FinancialRow]]:
        table = self.quarterly_table(limit)
        return table.quarter_labels, build_quarterly_rows(table)


class ScreenerPageParser(FinancialPageParser):
    """Parser for screener.in company pages.

    Example:
        parser = ScreenerPageParser(html)
        labels, rows = parser.quarterly_rows(limit=6)
        quote = parser.parse_quote("500325.BO")
    """

    def __init__(self, html: str) -> None:
        self.html = html or ""
        self.soup = BeautifulSoup(self.html, "html.parser")
        self._text: str | None = None

    def company_name(self) -> str:
        heading = self.soup.find("h1")
        return clean_text(heading.get_text(" ", strip=True)) if heading else ""

    @property
    def text(self) -> str:
        """Visible page text with whitespace collapsed."""
        if self._text is None:
            soup = BeautifulSoup(self.html, "html.parser")
            for node in soup(["script", "style", "noscript"]):
                node.decompose()
            self._text = clean_text(soup.get_text(" "))
        return self._text

    def _find_quarterly_table(self) -> Tag | None:
        section = self.soup.find("section", id="quarters")
        if isinstance(section, Tag):
            table = section.find("table")
            if isinstance(table, Tag):
                return table

        heading = _QUARTERLY_HEADING_RE.search(self.html)
        if heading is None:
            return None
        window = self.html[heading.start() : heading.start() + HEADING_SEARCH_WINDOW]
        table = BeautifulSoup(window, "html.parser").find("table")
        return table if isinstance(table, Tag) else None

    def quarterly_table(self, limit: int = DEFAULT_QUARTER_LIMIT) -> QuarterlyTable:
        table = self._find_quarterly_table()
        if table is None:
            raise ParseError("quarterly results table not found")

        rows = [
            [clean_text(cell.get_text(" ", strip=True)) for cell in tr.find_all(["th", "td"])]
            for tr in table.find_all("tr")
        ]
        if len(rows) < 2:
            return QuarterlyTable()

        columns = select_quarter_columns(rows[0], clamp_quarter_limit(limit))
        if not columns:
            return QuarterlyTable()

        parsed = QuarterlyTable(quarter_labels=[label for _, label in columns])
        for cells in rows[1:]:
            if len(cells) <= 1:
                continue
            key = normalize_metric_key(cells[0])
            if not key:
                continue
            values = [
                first_with_units(cells[index]) if index < len(cells) else None
                for index, _ in columns
            ]
            parsed.metrics.append((key, cells[0], values))
        return parsed

    def parse_quote(self, symbol: str) -> Quote | None:
        """Delayed quote from the page's key-ratio block.

        Previous close and change are back-derived from the change percent.
        """
        text = self.text
        if not text:
            return None

        price_match = _PRICE_RE.search(text)
        price = first_finite(price_match.group(1)) if price_match else None
        if price is None:
            return None

        change_percent = None
        if price_match.group(2):
            change_percent = to_number(price_match.group(2).replace("−", "-"))

        previous_close = change = None
        if change_percent is not None:
            denominator = 1 + change_percent / 100
            if abs(denominator) > 1e-12:
                previous_close = round(price / denominator, 4)
                change = round(price - previous_close, 4)

        high_low = _HIGH_LOW_RE.search(text)
        market_cap = _MARKET_CAP_RE.search(text)
        book_value = first_finite(_first_group(text, (_BOOK_VALUE_RE,)))
        pb_ratio = first_finite(
            _first_group(text, (_PB_RE,)),
            round(price / book_value, 4) if book_value and book_value > 0 else None,
        )
        isin = _ISIN_RE.search(text)
        updated = _UPDATED_RE.search(text)

        return normalize_quote_shape(
            {
                "symbol": symbol,
                "short_name": self.company_name() or strip_exchange_suffix(symbol),
                "exchange": "BSE",
                "currency": "INR",
                "regular_market_price": price,
                "regular_market_change": change,
                "regular_market_change_percent": change_percent,
                "previous_close": previous_close,
                "market_cap": apply_unit(market_cap.group(1), market_cap.group(2))
                if market_cap
                else None,
                "fifty_two_week_high": high_low.group(1) if high_low else None,
                "fifty_two_week_low": high_low.group(2) if high_low else None,
                "pe_ratio": _first_group(text, (_PE_RE,)),
                "pb_ratio": pb_ratio,
                "face_value": _first_group(text, (_FACE_VALUE_RE,)),
                "isin": isin.group(1) if isin else "",
                "last_update_time": updated.group(1) if updated else "",
                "source": "screener",
                "data_status": DataStatus.DELAYED,
            }
        )

    def parse_technicals(self, price_hint: float | None = None) -> TechnicalSnapshot | None:
        """Moving averages listed on the page, if any.

        Returns:
            Snapshot, or None when neither EMA is present.
        """
        text = self.text
        if not text:
            return None

        ema50 = first_with_units(_first_group(text, _EMA50_RES))
        ema200 = first_with_units(_first_group(text, _EMA200_RES))
        sma_30w = first_with_units(_first_group(text, _SMA_30W_RES))
        if ema50 is None and ema200 is None:
            return None

        close = first_with_units(_first_group(text, _CURRENT_PRICE_RES), price_hint)
        if close is not None and sma_30w is not None:
            stage, method = stage_from_price_vs_sma(close, sma_30w), "price-vs-30w"
        else:
            stage, method = classify_stage_from_ema_proxy(close, ema50, ema200), "ema-proxy"

        return TechnicalSnapshot(
            ema50=ema50,
            ema200=ema200,
            thirty_week_sma=sma_30w,
            market_cycle_stage=stage,
            source=f"screener-tech:{method}",
        )

    def ticker_candidates(self, symbol: str, name_hint: str = "") -> list[str]:
        """Alternative symbols named on the page, plus a name-based guess."""
        normalized = normalize_symbol(symbol)
        candidates: dict[str, None] = {normalized: None}

        for exchange, code in _EXCHANGE_TICKER_RE.findall(self.text):
            code = code.upper()
            if code.isdigit():
                continue
            suffix = ".NS" if exchange.upper() == "NSE" else ".BO"
            candidates[f"{code}{suffix}"] = None

        guessed = company_name_to_ticker_guess(
            self.company_name() or name_hint or strip_exchange_suffix(normalized)
        )
        if guessed:
            if is_bse(normalized):
                candidates[f"{guessed}.BO"] = None
            candidates[f"{guessed}.NS"] = None

        return [item for item in dict.fromkeys(map(normalize_symbol, candidates)) if item]
