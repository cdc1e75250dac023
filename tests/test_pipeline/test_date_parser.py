"""
Tests for the layout-driven date parser.
"""

from datetime import date

import pytest

from csv_ingest.pipeline.date_parser import is_supported_layout, parse_date, to_date


class TestParseDate:
    """Test reassembly into ISO dates."""

    @pytest.mark.parametrize("raw,layout,expected", [
        ("01/03/2024", "DD/MM/YYYY", "2024-03-01"),
        ("03/01/2024", "MM/DD/YYYY", "2024-03-01"),
        ("01-03-2024", "DD-MM-YYYY", "2024-03-01"),
        ("03-01-2024", "MM-DD-YYYY", "2024-03-01"),
        ("01.03.2024", "DD.MM.YYYY", "2024-03-01"),
        ("2024-03-01", "YYYY-MM-DD", "2024-03-01"),
    ])
    def test_supported_layouts(self, raw, layout, expected):
        assert parse_date(raw, layout) == expected

    def test_zero_pads_day_and_month(self):
        assert parse_date("1/3/2024", "DD/MM/YYYY") == "2024-03-01"

    def test_layout_is_case_insensitive(self):
        assert parse_date("01/03/2024", "dd/mm/yyyy") == "2024-03-01"

    def test_iso_is_trimmed(self):
        assert parse_date(" 2024-03-01 ", "YYYY-MM-DD") == "2024-03-01"

    def test_unknown_layout_returns_input(self):
        assert parse_date("1 March 2024", "D MONTH YYYY") == "1 March 2024"

    def test_wrong_separator_returns_input(self):
        assert parse_date("01-03-2024", "DD/MM/YYYY") == "01-03-2024"

    def test_missing_part_returns_input(self):
        assert parse_date("01/03", "DD/MM/YYYY") == "01/03"

    def test_empty(self):
        assert parse_date("", "DD/MM/YYYY") == ""
        assert parse_date(None, "DD/MM/YYYY") == ""


class TestToDate:
    """Test validation of reassembled dates."""

    def test_valid(self):
        assert to_date("2024-03-01") == date(2024, 3, 1)

    def test_impossible_date(self):
        assert to_date("2024-02-30") is None

    def test_unreassembled_input(self):
        assert to_date("01-03-2024") is None
        assert to_date("invalid") is None

    def test_empty(self):
        assert to_date("") is None


class TestLayouts:
    """Test the list of supported layouts."""

    def test_supported(self):
        assert is_supported_layout("DD.MM.YYYY")
        assert not is_supported_layout("YYYYMMDD")
