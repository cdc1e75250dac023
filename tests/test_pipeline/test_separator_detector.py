"""
Tests for delimiter detection and line splitting.
"""

import csv

import pytest
from pydantic import ValidationError

from csv_ingest.oracle.base import OracleError, OracleKind
from csv_ingest.pipeline.separator_detector import detect_separator, header_names, row_dict, split_line


class TestDetectSeparator:
    """Test delimiter detection through the oracle."""

    async def test_oracle_answer(self, oracle, sample_csv):
        lines = sample_csv.splitlines()[:5]
        detection = await detect_separator(oracle, lines)
        assert detection.separator == ";"
        assert detection.confidence == pytest.approx(0.97)
        assert oracle.calls == [OracleKind.DETECT_SEPARATOR]

    async def test_spelled_out_tab(self, scripted_oracle):
        detection = await detect_separator(scripted_oracle(separator="tab"), ["a\tb"])
        assert detection.separator == "\t"

    async def test_unsupported_separator_rejected(self, scripted_oracle):
        with pytest.raises(ValidationError):
            await detect_separator(scripted_oracle(separator="#"), ["a#b"])

    async def test_oracle_failure_propagates(self, scripted_oracle):
        with pytest.raises(OracleError):
            await detect_separator(scripted_oracle(separator=None), ["a;b"])


class TestSplitLine:
    """Test quote-aware splitting of physical lines."""

    def test_semicolon(self):
        assert split_line("01/03/2024;POS ESSELUNGA;45,20;;EUR", ";") == [
            "01/03/2024", "POS ESSELUNGA", "45,20", "", "EUR",
        ]

    def test_quoted_separator(self):
        assert split_line('2024-03-01,"ACME, INC",12.50', ",") == ["2024-03-01", "ACME, INC", "12.50"]

    def test_escaped_quotes(self):
        assert split_line('a,"say ""hi""",b', ",") == ["a", 'say "hi"', "b"]

    def test_fields_trimmed(self):
        assert split_line(" a | b |c ", "|") == ["a", "b", "c"]

    def test_space_separator_collapses_runs(self):
        assert split_line("2024-03-01  12.50 COFFEE", " ") == ["2024-03-01", "12.50", "COFFEE"]

    def test_quote_followed_by_text(self):
        line = '01/03/2024;"AMAZON" MARKETPLACE;45,20;;EUR'
        assert split_line(line, ";") == ["01/03/2024", "AMAZON MARKETPLACE", "45,20", "", "EUR"]

    def test_unterminated_quote_keeps_text(self):
        assert split_line('a,"unterminated', ",") == ["a", "unterminated"]

    def test_rejected_line_split_on_separator(self):
        old_limit = csv.field_size_limit(8)
        try:
            fields = split_line("a;BONIFICO SEPA ISTANTANEO;c", ";")
        finally:
            csv.field_size_limit(old_limit)
        assert fields == ["a", "BONIFICO SEPA ISTANTANEO", "c"]


class TestHeaders:
    """Test header naming and row keying."""

    def test_blank_header_uses_index(self):
        assert header_names("Date;;Amount", ";") == ["Date", "1", "Amount"]

    def test_row_dict_pads_and_truncates(self):
        headers = ["a", "b", "c"]
        assert row_dict(headers, ["1"]) == {"a": "1", "b": "", "c": ""}
        assert row_dict(headers, ["1", "2", "3", "4"]) == {"a": "1", "b": "2", "c": "3"}
