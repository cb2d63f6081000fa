"""Tests for screener.in page parsing."""

import pytest

from equity_aggregator.data.models import MarketCycleStage
from equity_aggregator.errors import ParseError
from equity_aggregator.financials.parser import (
    ScreenerPageParser,
    clamp_quarter_limit,
    company_name_to_ticker_guess,
    growth_series,
    looks_like_quarter_label,
    normalize_metric_key,
)

LABELS = ["Mar 2023", "Jun 2023", "Sep 2023", "Dec 2023", "Mar 2024", "Jun 2024"]


def table_row(label: str, values: list[str]) -> str:
    cells = "".join(f"<td>{value}</td>" for value in values)
    return f"<tr><td class='text'>{label}</td>{cells}</tr>"


def quarters_page(wrap_in_section: bool = True) -> str:
    header = "<tr><th></th>" + "".join(f"<th>{label}</th>" for label in [*LABELS, "TTM"]) + "</tr>"
    body = "".join(
        [
            table_row("Sales&nbsp;+", ["100", "110", "121", "90", "95", "130", "436"]),
            table_row("Expenses +", ["80", "85", "90", "70", "75", "100", "340"]),
            table_row("Operating Profit", ["20", "25", "31", "20", "20", "30", "101"]),
            table_row("OPM %", ["20%", "23%", "26%", "22%", "21%", "23%", "23%"]),
            table_row("Net Profit +", ["10", "12", "15", "8", "11", "", "34"]),
            table_row("EPS in Rs", ["1.5", "1.8", "2.2", "1.2", "1.6", "2.0", "7.0"]),
        ]
    )
    table = f"<table class='data-table'><thead>{header}</thead><tbody>{body}</tbody></table>"
    if wrap_in_section:
        return f"<html><body><h1>Example Ltd</h1><section id='quarters'>{table}</section></body></html>"
    return f"<html><body><h1>Example Ltd</h1><h2>Quarterly Results</h2><p>Consolidated</p>{table}</body></html>"


RATIOS_PAGE = """
<html><body>
<h1>Reliance Industries Ltd</h1>
<div class="company-links">NSE: RELIANCE BSE: 500325</div>
<ul id="top-ratios">
<li><span>Market Cap</span> ₹ <span>1,000</span> Cr.</li>
<li><span>Current Price</span> ₹ <span>102</span> <span>−2 %</span></li>
<li><span>High / Low</span> ₹ <span>150</span> / <span>80</span></li>
<li><span>Stock P/E</span> <span>25.5</span></li>
<li><span>Book Value</span> ₹ <span>51</span></li>
<li><span>Face Value</span> ₹ <span>10</span></li>
<li><span>50 DMA</span> ₹ <span>95</span></li>
<li><span>200 DMA</span> ₹ <span>90</span></li>
</ul>
<script>var noise = "Current Price 1";</script>
</body></html>
"""


class TestHelpers:
    """Tests for label and series helpers."""

    def test_quarter_labels(self) -> None:
        """Test quarter headers are recognized and TTM is excluded."""
        assert looks_like_quarter_label("Mar 2024")
        assert looks_like_quarter_label("Q1 24")
        assert not looks_like_quarter_label("TTM")
        assert not looks_like_quarter_label("")

    def test_metric_keys(self) -> None:
        """Test label normalization."""
        assert normalize_metric_key("Sales +") == "sales plus"
        assert normalize_metric_key("OPM %") == "opm percent"
        assert normalize_metric_key("Net Profit (Cr)") == "net profit"

    def test_growth_series(self) -> None:
        """Test lagged growth with gaps and zero bases."""
        assert growth_series([100, 110, None, 0, 5], 1) == [None, 10.0, None, None, None]

    def test_clamp(self) -> None:
        """Test the quarter limit is clamped to 1..8."""
        assert clamp_quarter_limit(None) == 6
        assert clamp_quarter_limit(0) == 6
        assert clamp_quarter_limit(-3) == 1
        assert clamp_quarter_limit(20) == 8

    def test_ticker_guess(self) -> None:
        """Test stop words are dropped from the name guess."""
        assert company_name_to_ticker_guess("Tata Motors Ltd") == "TATAMOTORS"


class TestQuarterlyTable:
    """Tests for quarterly table extraction and derived rows."""

    def test_rows_and_growth(self) -> None:
        """Test labels, sales and growth rows for six quarters."""
        labels, rows = ScreenerPageParser(quarters_page()).quarterly_rows(6)
        by_key = {row.key: row for row in rows}

        assert labels == LABELS
        assert by_key["sales"].values == [100.0, 110.0, 121.0, 90.0, 95.0, 130.0]
        assert by_key["sales_yoy"].values[4] == -5.0
        assert by_key["sales_qoq"].values[4] == 5.56
        assert by_key["opm"].kind == "percent"
        assert by_key["pat"].values[5] is None
        assert by_key["pat_qoq"].values[5] is None

    def test_every_row_matches_label_count(self) -> None:
        """Test row lengths always equal the number of quarter labels."""
        for limit in (1, 3, 6, 8):
            labels, rows = ScreenerPageParser(quarters_page()).quarterly_rows(limit)
            assert rows
            assert all(len(row.values) == len(labels) for row in rows)

    def test_short_window_drops_empty_rows(self) -> None:
        """Test YoY rows disappear when the window is too short."""
        labels, rows = ScreenerPageParser(quarters_page()).quarterly_rows(4)
        keys = [row.key for row in rows]

        assert labels == LABELS[-4:]
        assert "sales_yoy" not in keys
        assert "sales_qoq" in keys

    def test_heading_fallback(self) -> None:
        """Test the table is found after a Quarterly Results heading."""
        labels, rows = ScreenerPageParser(quarters_page(wrap_in_section=False)).quarterly_rows(6)
        assert labels == LABELS
        assert rows

    def test_missing_table(self) -> None:
        """Test pages without the table raise ParseError."""
        with pytest.raises(ParseError):
            ScreenerPageParser("<html><h1>Example</h1><p>nothing</p></html>").quarterly_table()

    def test_company_name(self) -> None:
        """Test the h1 heading is the company name."""
        assert ScreenerPageParser(quarters_page()).company_name() == "Example Ltd"


class TestRatiosBlock:
    """Tests for quote and technical extraction from the ratio block."""

    def test_parse_quote(self) -> None:
        """Test price, back-derived previous close and ratios."""
        quote = ScreenerPageParser(RATIOS_PAGE).parse_quote("500325.BO")

        assert quote is not None
        assert quote.symbol == "500325.BO"
        assert quote.regular_market_price == 102
        assert quote.regular_market_change_percent == -2.0
        assert quote.previous_close == pytest.approx(104.0816, abs=1e-4)
        assert quote.market_cap == 1e10
        assert quote.fifty_two_week_high == 150
        assert quote.fifty_two_week_low == 80
        assert quote.pe_ratio == 25.5
        assert quote.pb_ratio == 2.0
        assert quote.face_value == 10
        assert quote.source == "screener"

    def test_parse_quote_without_price(self) -> None:
        """Test pages without a current price give no quote."""
        assert ScreenerPageParser("<html><h1>X</h1></html>").parse_quote("500325.BO") is None

    def test_parse_technicals(self) -> None:
        """Test DMA values and the EMA-proxy stage."""
        snapshot = ScreenerPageParser(RATIOS_PAGE).parse_technicals()

        assert snapshot is not None
        assert snapshot.ema50 == 95
        assert snapshot.ema200 == 90
        assert snapshot.market_cycle_stage == MarketCycleStage.MARKUP
        assert snapshot.source == "screener-tech:ema-proxy"

    def test_no_technicals(self) -> None:
        """Test pages without moving averages."""
        assert ScreenerPageParser(quarters_page()).parse_technicals() is None

    def test_ticker_candidates(self) -> None:
        """Test exchange tickers on the page and the name guess."""
        candidates = ScreenerPageParser(RATIOS_PAGE).ticker_candidates("500325.BO")
        assert candidates == [
            "500325.BO",
            "RELIANCE.NS",
            "RELIANCEINDUSTRIES.BO",
            "RELIANCEINDUSTRIES.NS",
        ]
