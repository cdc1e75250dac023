"""
Cache-first transaction categorization.

1. Exact lookup of each row's description key in the merchant cache.
2. Optional fuzzy lookup, only when enabled in settings.
3. Remaining rows go to the oracle in fixed-size batches, several batches
   in flight at once.
4. A failed batch falls back to Other/Unknown for its own rows only.
5. Results are merged back in input order and summarised.
"""

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

import structlog

from csv_ingest.config import settings
from csv_ingest.models.enums import Category, TransactionKind
from csv_ingest.observability.metrics import (
    categorization_fallbacks_total,
    merchant_cache_lookups_total,
)
from csv_ingest.oracle.base import ClassificationOracle
from csv_ingest.oracle.prompts import categorization_request
from csv_ingest.pipeline.merchant_cache import CacheEntry, MerchantCache, merchant_key
from csv_ingest.schemas.canonical import (
    CanonicalRow,
    CategorizationStatistics,
    CategorizedRow,
    CategoryTotals,
    MerchantFrequency,
    SubcategoryTotals,
)
from csv_ingest.schemas.contracts import CategorizationBatchResponse

logger = structlog.get_logger(__name__)

UNKNOWN = "Unknown"
TOP_MERCHANTS = 10


@dataclass
class CategorizationResult:
    rows: list[CategorizedRow]
    statistics: CategorizationStatistics
    cache: MerchantCache

    @property
    def persistable(self) -> list[CategorizedRow]:
        """Rows that represent money movements. Balance snapshots are excluded."""
        return [r for r in self.rows if r.category != Category.BALANCE.value]


@dataclass
class _Pending:
    index: int
    key: str
    row: CanonicalRow
    raw_line_id: Optional[str] = None


def fallback_row(row: CanonicalRow, raw_line_id: Optional[str] = None) -> CategorizedRow:
    return CategorizedRow(
        row=row,
        category=Category.OTHER.value,
        subcategory=UNKNOWN,
        merchant_name=UNKNOWN,
        merchant_type=UNKNOWN,
        confidence=0.0,
        source="fallback",
        error=True,
        raw_line_id=raw_line_id,
    )


def _from_cache(row: CanonicalRow, entry: CacheEntry, source: str, raw_line_id: Optional[str]) -> CategorizedRow:
    return CategorizedRow(
        row=row,
        category=entry.category,
        subcategory=entry.subcategory,
        merchant_name=entry.merchant_name,
        merchant_type=entry.merchant_type,
        confidence=entry.confidence,
        source=source,
        raw_line_id=raw_line_id,
    )


class CategorizationEngine:

    def __init__(
        self,
        oracle: ClassificationOracle,
        batch_size: Optional[int] = None,
        parallel_batches: Optional[int] = None,
        use_fuzzy: Optional[bool] = None,
        similarity_threshold: Optional[float] = None,
    ):
        self.oracle = oracle
        self.batch_size = max(1, batch_size or settings.CATEGORIZATION_BATCH_SIZE)
        self.parallel_batches = max(1, parallel_batches or settings.MAX_PARALLEL_BATCHES)
        self.use_fuzzy = settings.ENABLE_FUZZY_CACHE if use_fuzzy is None else use_fuzzy
        self.similarity_threshold = (
            similarity_threshold if similarity_threshold is not None
            else settings.MERCHANT_SIMILARITY_THRESHOLD
        )

    async def categorize(
        self,
        rows: list[CanonicalRow],
        cache: Optional[MerchantCache] = None,
        raw_line_ids: Optional[list[str]] = None,
    ) -> CategorizationResult:
        cache = cache if cache is not None else MerchantCache()
        resolved: dict[int, CategorizedRow] = {}
        pending: list[_Pending] = []

        for index, row in enumerate(rows):
            line_id = raw_line_ids[index] if raw_line_ids else None
            key = merchant_key(row.description)

            entry = cache.get(key)
            if entry is not None:
                merchant_cache_lookups_total.labels("hit").inc()
                resolved[index] = _from_cache(row, entry, "cache", line_id)
                continue

            if self.use_fuzzy:
                match = cache.find_similar(key, self.similarity_threshold)
                if match is not None:
                    merchant_cache_lookups_total.labels("fuzzy").inc()
                    resolved[index] = _from_cache(row, match[1], "fuzzy_cache", line_id)
                    continue

            merchant_cache_lookups_total.labels("miss").inc()
            pending.append(_Pending(index, key, row, line_id))

        batches = [pending[i:i + self.batch_size] for i in range(0, len(pending), self.batch_size)]
        for g in range(0, len(batches), self.parallel_batches):
            group = batches[g:g + self.parallel_batches]
            results = await asyncio.gather(*(self._categorize_batch(b, cache) for b in group))
            for partial in results:
                resolved.update(partial)

        ordered = []
        for index, row in enumerate(rows):
            item = resolved.get(index)
            if item is None:
                line_id = raw_line_ids[index] if raw_line_ids else None
                item = fallback_row(row, line_id)
                categorization_fallbacks_total.inc()
            ordered.append(item)

        stats = build_statistics(ordered)
        logger.info(
            "categorization_complete",
            rows=len(rows),
            cache_hits=stats.cache_hits,
            oracle_resolved=stats.oracle_resolved,
            fallback_rows=stats.fallback_rows,
            batches=len(batches),
        )
        return CategorizationResult(rows=ordered, statistics=stats, cache=cache)

    async def _categorize_batch(self, batch: list[_Pending], cache: MerchantCache) -> dict[int, CategorizedRow]:
        by_id = {str(p.index): p for p in batch}
        items = [
            {
                "transactionId": str(p.index),
                "date": p.row.date,
                "amount": p.row.amount,
                "currency": p.row.currency,
                "description": p.row.description,
                "kind": p.row.kind,
            }
            for p in batch
        ]

        try:
            answer = await self.oracle.classify(categorization_request(items))
            response = CategorizationBatchResponse.model_validate(answer)
        except Exception as e:
            logger.warning("categorization_batch_failed", batch_rows=len(batch), error=str(e))
            categorization_fallbacks_total.inc(len(batch))
            return {p.index: fallback_row(p.row, p.raw_line_id) for p in batch}

        out: dict[int, CategorizedRow] = {}
        for item in response.categorized_transactions:
            p = by_id.get(item.transaction_id)
            if p is None or p.index in out:
                continue
            out[p.index] = CategorizedRow(
                row=p.row,
                category=item.category,
                subcategory=item.subcategory,
                merchant_name=item.merchant_name,
                merchant_type=item.merchant_type,
                confidence=item.confidence,
                source="oracle",
                raw_line_id=p.raw_line_id,
            )
            cache.put(p.key, CacheEntry(
                category=item.category,
                subcategory=item.subcategory,
                merchant_name=item.merchant_name,
                merchant_type=item.merchant_type,
                confidence=item.confidence,
            ))

        missing = len(batch) - len(out)
        if missing:
            logger.warning("categorization_rows_missing", batch_rows=len(batch), missing=missing)
        return out


def build_statistics(rows: list[CategorizedRow]) -> CategorizationStatistics:
    """Totals by category, spend/income, confidence and top merchants. Balance rows are only counted."""
    stats = CategorizationStatistics(total_transactions=len(rows))
    merchants: Counter = Counter()
    confidence_sum = 0.0
    movements = 0

    for r in rows:
        if r.source in ("cache", "fuzzy_cache"):
            stats.cache_hits += 1
        elif r.source == "oracle":
            stats.oracle_resolved += 1
        else:
            stats.fallback_rows += 1

        if r.category == Category.BALANCE.value:
            stats.balance_entries_count += 1
            continue

        movements += 1
        amount = r.row.amount or 0.0
        cat = stats.by_category.setdefault(r.category, CategoryTotals())
        cat.count += 1
        if r.row.kind == TransactionKind.OUTGOING.value:
            cat.total += amount
            stats.total_spent += amount
        elif r.row.kind == TransactionKind.INCOMING.value:
            stats.total_income += amount

        sub = cat.subcategories.setdefault(r.subcategory, SubcategoryTotals())
        sub.count += 1
        sub.total += amount

        if r.merchant_name and r.merchant_name != UNKNOWN:
            merchants[(r.merchant_name, r.category)] += 1

        confidence_sum += r.confidence

    stats.avg_confidence = confidence_sum / movements if movements else 0.0
    stats.total_spent = round(stats.total_spent, 2)
    stats.total_income = round(stats.total_income, 2)
    for cat in stats.by_category.values():
        cat.total = round(cat.total, 2)
        for sub in cat.subcategories.values():
            sub.total = round(sub.total, 2)

    stats.top_merchants = [
        MerchantFrequency(merchant=name, category=category, count=count)
        for (name, category), count in merchants.most_common(TOP_MERCHANTS)
    ]
    return stats
