"""Tests for the in-memory symbol master."""

from equity_aggregator.symbol_master import (
    InMemorySymbolMaster,
    SymbolMasterItem,
    normalize_company_name_for_match,
)


def master() -> InMemorySymbolMaster:
    return InMemorySymbolMaster(
        [
            SymbolMasterItem.create("RELIANCE.NS", "Reliance Industries Ltd"),
            SymbolMasterItem.create("500325.BO", "Reliance Industries Limited"),
            SymbolMasterItem.create("TCS.NS", "Tata Consultancy Services Ltd"),
            SymbolMasterItem.create("532540.BO", "Tata Consultancy Services Limited"),
            SymbolMasterItem.create("TATAPOWER.NS", "Tata Power Co Ltd"),
            SymbolMasterItem.create("TATAPWR.NS", "Tata Power Co Ltd"),
            SymbolMasterItem.create("500400.BO", "Tata Power Co. Ltd."),
        ]
    )


class TestSymbolMasterItem:
    """Tests for SymbolMasterItem.create."""

    def test_create(self) -> None:
        """Test symbol normalization and derived fields."""
        item = SymbolMasterItem.create("500325", "  Reliance   Industries ")
        assert item is not None
        assert item.symbol == "500325.BO"
        assert item.base_symbol == "500325"
        assert item.exchange == "BSE"
        assert item.company_name == "Reliance Industries"

    def test_blank_name_defaults_to_base(self) -> None:
        """Test the base symbol stands in for a missing name."""
        item = SymbolMasterItem.create("TCS.NS")
        assert item is not None
        assert item.company_name == "TCS"

    def test_rejects_empty(self) -> None:
        """Test unusable input yields None."""
        assert SymbolMasterItem.create("") is None


class TestResolveAlias:
    """Tests for BSE-to-NSE alias resolution."""

    def test_name_match(self) -> None:
        """Test relaxed name matching ignores corporate suffixes."""
        assert master().resolve_alias("500325.BO") == "RELIANCE.NS"
        assert master().resolve_alias("532540") == "TCS.NS"

    def test_name_hint_first(self) -> None:
        """Test an explicit hint is tried before the master name."""
        assert master().resolve_alias("999999.BO", "Tata Consultancy Services") == "TCS.NS"

    def test_ambiguous_name(self) -> None:
        """Test several NSE candidates means no alias."""
        assert master().resolve_alias("500400.BO") == ""

    def test_nse_symbols_have_no_alias(self) -> None:
        """Test only BSE symbols are resolved."""
        assert master().resolve_alias("TCS.NS") == ""

    def test_name_normalization(self) -> None:
        """Test ampersand and punctuation handling."""
        assert normalize_company_name_for_match("Larsen & Toubro Ltd.") == "LARSEN AND TOUBRO LTD"
        assert normalize_company_name_for_match("Larsen & Toubro Ltd.", relaxed=True) == "LARSEN AND TOUBRO"


class TestSearchByName:
    """Tests for ranked search."""

    def test_exact_symbol_first(self) -> None:
        """Test an exact base symbol outranks prefix matches."""
        results = master().search_by_name("tcs")
        assert results[0].symbol == "TCS.NS"

    def test_numeric_prefers_bse(self) -> None:
        """Test scrip-code queries favour BSE listings."""
        results = master().search_by_name("500325")
        assert results[0].symbol == "500325.BO"

    def test_company_substring(self) -> None:
        """Test company-name matches and the result limit."""
        results = master().search_by_name("power", limit=2)
        assert len(results) == 2
        assert all("POWER" in item.company_name.upper() for item in results)

    def test_blank_query(self) -> None:
        """Test an empty query returns nothing."""
        assert master().search_by_name("  ") == []
