"""
Tests for cache-first categorization.
"""

import json

import pytest

from csv_ingest.oracle.base import ClassificationOracle, OracleKind
from csv_ingest.pipeline.categorizer import CategorizationEngine, build_statistics
from csv_ingest.pipeline.merchant_cache import CacheEntry, MerchantCache, merchant_key
from csv_ingest.schemas.canonical import CanonicalRow


def _row(description, kind="-", amount=10.0):
    return CanonicalRow(date="2024-03-01", kind=kind, amount=amount, currency="EUR", description=description)


ROWS = [
    _row("POS ESSELUNGA MILANO", "-", 45.20),
    _row("STIPENDIO ACME SRL", "+", 2500.0),
    _row("Saldo contabile", "+", 1234.56),
]


class DroppingOracle(ClassificationOracle):
    """Answers for the first item of each batch only."""

    async def classify(self, request):
        items = json.loads(request.input_text)
        first = items[0]
        return {
            "categorizedTransactions": [{
                "transactionId": first["transactionId"],
                "category": "Shopping",
                "subcategory": "Online",
                "merchantName": "Shop",
                "merchantType": "retail",
                "confidence": 0.8,
            }],
            "batchSummary": None,
        }


class MalformedOracle(ClassificationOracle):

    async def classify(self, request):
        return {"unexpected": True}


class TestCategorize:
    """Test batch categorization through cache and oracle."""

    async def test_oracle_resolves_and_fills_cache(self, oracle):
        engine = CategorizationEngine(oracle, batch_size=50)
        result = await engine.categorize(ROWS)

        assert [r.source for r in result.rows] == ["oracle"] * 3
        assert [r.category for r in result.rows] == ["Food & Dining", "Income", "Balance"]
        assert oracle.calls == [OracleKind.CATEGORIZE_BATCH]
        assert merchant_key("POS ESSELUNGA MILANO") in result.cache

    async def test_second_run_served_from_cache(self, oracle):
        engine = CategorizationEngine(oracle, batch_size=50)
        first = await engine.categorize(ROWS)
        oracle.calls.clear()

        second = await engine.categorize(ROWS, cache=first.cache)

        assert oracle.calls == []
        assert [r.source for r in second.rows] == ["cache"] * 3
        assert second.statistics.cache_hits == 3

    async def test_failed_batch_only_affects_its_rows(self, scripted_oracle):
        oracle = scripted_oracle(fail_when=lambda items: items[0]["description"].startswith("STIPENDIO"))
        engine = CategorizationEngine(oracle, batch_size=1, parallel_batches=3)

        result = await engine.categorize(ROWS)

        assert [r.source for r in result.rows] == ["oracle", "fallback", "oracle"]
        failed = result.rows[1]
        assert failed.category == "Other"
        assert failed.subcategory == "Unknown"
        assert failed.error
        assert merchant_key("STIPENDIO ACME SRL") not in result.cache

    async def test_order_preserved_across_parallel_batches(self, oracle):
        rows = [_row(f"MERCHANT NUMBER {i}") for i in range(7)]
        engine = CategorizationEngine(oracle, batch_size=2, parallel_batches=2)

        result = await engine.categorize(rows)

        assert [r.row.description for r in result.rows] == [r.description for r in rows]
        assert oracle.calls == [OracleKind.CATEGORIZE_BATCH] * 4

    async def test_rows_missing_from_answer_fall_back(self):
        engine = CategorizationEngine(DroppingOracle(), batch_size=3)
        result = await engine.categorize(ROWS)

        assert result.rows[0].category == "Shopping"
        assert [r.source for r in result.rows[1:]] == ["fallback", "fallback"]
        assert result.statistics.fallback_rows == 2

    async def test_malformed_answer_falls_back(self):
        engine = CategorizationEngine(MalformedOracle(), batch_size=3)
        result = await engine.categorize(ROWS)
        assert all(r.source == "fallback" for r in result.rows)

    async def test_raw_line_ids_carried(self, oracle):
        engine = CategorizationEngine(oracle)
        result = await engine.categorize(ROWS[:2], raw_line_ids=["a", "b"])
        assert [r.raw_line_id for r in result.rows] == ["a", "b"]

    async def test_empty_input(self, oracle):
        result = await CategorizationEngine(oracle).categorize([])
        assert result.rows == []
        assert oracle.calls == []


class TestFuzzyLookup:
    """Test the fuzzy cache lookup flag."""

    def _cache(self):
        return MerchantCache({
            merchant_key("NETFLIX.COM") + "_old": CacheEntry(category="Entertainment", confidence=0.9),
        })

    async def test_disabled_by_flag(self, oracle):
        engine = CategorizationEngine(oracle, use_fuzzy=False)
        result = await engine.categorize([_row("NETFLIX.COM")], cache=self._cache())
        assert result.rows[0].source == "oracle"

    async def test_enabled(self, oracle):
        engine = CategorizationEngine(oracle, use_fuzzy=True, similarity_threshold=0.75)
        result = await engine.categorize([_row("NETFLIX.COM")], cache=self._cache())
        assert result.rows[0].source == "fuzzy_cache"
        assert result.rows[0].category == "Entertainment"
        assert oracle.calls == []


class TestStatistics:
    """Test categorization statistics."""

    async def test_balance_counted_not_summed(self, oracle):
        result = await CategorizationEngine(oracle).categorize(ROWS)
        stats = result.statistics

        assert stats.total_transactions == 3
        assert stats.balance_entries_count == 1
        assert "Balance" not in stats.by_category
        assert stats.total_spent == pytest.approx(45.20)
        assert stats.total_income == pytest.approx(2500.0)
        assert stats.avg_confidence == pytest.approx(0.9)

    async def test_category_totals(self, oracle):
        result = await CategorizationEngine(oracle).categorize(ROWS)
        by_category = result.statistics.by_category

        assert by_category["Food & Dining"].count == 1
        assert by_category["Food & Dining"].total == pytest.approx(45.20)
        # Income is counted but only outgoing amounts add to a category total
        assert by_category["Income"].total == 0.0
        assert by_category["Income"].subcategories["Salary"].total == pytest.approx(2500.0)

    async def test_persistable_excludes_balance(self, oracle):
        result = await CategorizationEngine(oracle).categorize(ROWS)
        assert [r.category for r in result.persistable] == ["Food & Dining", "Income"]

    async def test_top_merchants(self, oracle):
        rows = [_row("POS ESSELUNGA MILANO"), _row("POS ESSELUNGA MILANO"), _row("BAR ROMA")]
        result = await CategorizationEngine(oracle).categorize(rows)
        top = result.statistics.top_merchants
        assert top[0].merchant == "MILANO"
        assert top[0].count == 2

    def test_empty(self):
        stats = build_statistics([])
        assert stats.total_transactions == 0
        assert stats.avg_confidence == 0.0
