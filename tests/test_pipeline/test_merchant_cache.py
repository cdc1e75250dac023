"""
Tests for merchant keys, similarity and the in-memory cache.
"""

import pytest

from csv_ingest.pipeline.merchant_cache import (
    MAX_KEY_LENGTH,
    CacheEntry,
    MerchantCache,
    _rolling_hash,
    merchant_key,
    merchant_similarity,
)


class TestMerchantKey:
    """Test merchant key normalisation."""

    def test_known_hash(self):
        # 32-bit rolling hash of "hello" is 99162322
        assert merchant_key("hello") == "hello_5e918d2"

    def test_stable(self):
        assert merchant_key("POS ESSELUNGA MILANO") == merchant_key("POS ESSELUNGA MILANO")

    def test_prefix_uses_significant_words(self):
        key = merchant_key("POS 1234 ESSELUNGA MI MILANO VIA ROMA")
        assert key.startswith("pos_esselunga_milano_")

    def test_same_prefix_different_beneficiary(self):
        a = merchant_key("BONIFICO SEPA FAVORE MARIO ROSSI")
        b = merchant_key("BONIFICO SEPA FAVORE LUIGI VERDI")
        assert a.startswith("bonifico_sepa_favore_")
        assert b.startswith("bonifico_sepa_favore_")
        assert a != b

    def test_long_description_keeps_hash(self):
        desc = "SUPERCALIFRAGILISTICEXPIALIDOCIOUS " * 3 + "LTD"
        key = merchant_key(desc)
        assert len(key) <= MAX_KEY_LENGTH
        digest = format(abs(_rolling_hash(desc)), "x")
        assert key.endswith("_" + digest)

    def test_empty(self):
        assert merchant_key("") == "unknown"
        assert merchant_key(None) == "unknown"

    def test_no_significant_words(self):
        key = merchant_key("12 34 AB")
        assert key.startswith("_")


class TestSimilarity:
    """Test Levenshtein similarity scores."""

    def test_equal_ignores_case(self):
        assert merchant_similarity("Amazon", "amazon ") == 1.0

    def test_containment(self):
        assert merchant_similarity("amazon", "amazon eu") == pytest.approx(0.8 + 0.2 * 6 / 9)

    def test_unrelated(self):
        assert merchant_similarity("abc", "xyz") == 0.0

    def test_blend(self):
        score = merchant_similarity("netflix com", "netflix inc")
        assert 0.0 < score < 0.8

    def test_empty(self):
        assert merchant_similarity("", "x") == 0.0
        assert merchant_similarity(None, None) == 0.0


class TestMerchantCache:
    """Test the in-memory merchant cache."""

    def test_get_bumps_usage_and_marks_dirty(self):
        cache = MerchantCache({"k": CacheEntry(category="Shopping")})
        entry = cache.get("k")
        assert entry.usage_count == 2
        assert [k for k, _ in cache.dirty_items()] == ["k"]

    def test_peek_does_not_count(self):
        cache = MerchantCache({"k": CacheEntry(category="Shopping")})
        assert cache.peek("k").usage_count == 1
        assert cache.dirty_items() == []

    def test_miss(self):
        cache = MerchantCache()
        assert cache.get("missing") is None
        assert cache.dirty_items() == []

    def test_put_overwrites_and_counts(self):
        cache = MerchantCache()
        cache.put("k", CacheEntry(category="Shopping"))
        cache.put("k", CacheEntry(category="Entertainment"))
        entry = cache.peek("k")
        assert entry.category == "Entertainment"
        assert entry.usage_count == 2
        assert len(cache) == 1
        assert "k" in cache

    def test_clear_dirty(self):
        cache = MerchantCache()
        cache.put("k", CacheEntry(category="Shopping"))
        cache.clear_dirty()
        assert cache.dirty_items() == []
        assert cache.keys() == ["k"]

    def test_find_similar_best_match(self):
        cache = MerchantCache({
            "amazon_marketplace": CacheEntry(category="Shopping"),
            "amazon": CacheEntry(category="Other"),
        })
        key, entry, score = cache.find_similar("amazon_marketplace_eu", threshold=0.75)
        assert key == "amazon_marketplace"
        assert entry.category == "Shopping"
        assert score >= 0.75

    def test_find_similar_below_threshold(self):
        cache = MerchantCache({"netflix": CacheEntry(category="Entertainment")})
        assert cache.find_similar("esselunga", threshold=0.75) is None
