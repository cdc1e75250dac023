"""
Canonical row schemas.
A CanonicalRow is the dialect-independent shape of one CSV transaction;
everything downstream of the row transformer works on these.
"""

from typing import Optional

from pydantic import BaseModel, Field


class CanonicalRow(BaseModel):
    """One transaction normalised from any CSV dialect."""
    date: str = ""                          # ISO YYYY-MM-DD, or raw text if unparseable
    kind: str = ""                          # "+", "-", or "" when no amount resolved
    amount: float = 0.0                     # always non-negative
    currency: str = ""
    description: str = ""
    code: str = ""


class CategorizedRow(BaseModel):
    """A canonical row with the category the cache or the oracle assigned."""
    row: CanonicalRow
    category: str
    subcategory: str = "Unknown"
    merchant_name: str = "Unknown"
    merchant_type: str = "Unknown"
    confidence: float = 0.0
    source: str = "oracle"                  # cache, fuzzy_cache, oracle, fallback
    error: bool = False
    raw_line_id: Optional[str] = None


class SubcategoryTotals(BaseModel):
    count: int = 0
    total: float = 0.0


class CategoryTotals(BaseModel):
    count: int = 0
    total: float = 0.0
    subcategories: dict[str, SubcategoryTotals] = Field(default_factory=dict)


class MerchantFrequency(BaseModel):
    merchant: str
    category: str
    count: int


class CategorizationStatistics(BaseModel):
    """Aggregates over one categorization run. Balance rows are counted but never summed."""
    total_transactions: int = 0
    by_category: dict[str, CategoryTotals] = Field(default_factory=dict)
    total_spent: float = 0.0
    total_income: float = 0.0
    avg_confidence: float = 0.0
    balance_entries_count: int = 0
    top_merchants: list[MerchantFrequency] = Field(default_factory=list)
    cache_hits: int = 0
    oracle_resolved: int = 0
    fallback_rows: int = 0
