"""
Prometheus metrics for the ingestion pipeline.
"""

from prometheus_client import Counter, Histogram, Gauge


# ── Uploads ──────────────────────────────────────────────────
uploads_received_total = Counter(
    "uploads_received_total",
    "Total CSV uploads received",
)

uploads_completed_total = Counter(
    "uploads_completed_total",
    "Total uploads processed to completion",
)

uploads_failed_total = Counter(
    "uploads_failed_total",
    "Total uploads that failed processing",
    ["error_code"],
)

uploads_active = Gauge(
    "uploads_active",
    "Number of uploads currently being processed",
)

# ── Lines ────────────────────────────────────────────────────
lines_processed_total = Counter(
    "lines_processed_total",
    "Raw lines consumed by the batch loop",
    ["outcome"],
)

batch_duration_seconds = Histogram(
    "batch_duration_seconds",
    "Time to parse, categorize and persist one line batch",
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 120],
)

# ── Oracle ───────────────────────────────────────────────────
oracle_calls_total = Counter(
    "oracle_calls_total",
    "Oracle model attempts",
    ["kind", "model", "outcome"],
)

oracle_latency_seconds = Histogram(
    "oracle_latency_seconds",
    "Latency of oracle model attempts",
    ["kind", "model"],
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30, 60, 120],
)

# ── Categorization ───────────────────────────────────────────
merchant_cache_lookups_total = Counter(
    "merchant_cache_lookups_total",
    "Merchant cache lookups",
    ["result"],
)

categorization_fallbacks_total = Counter(
    "categorization_fallbacks_total",
    "Rows that received the fallback category after a batch failure",
)

# ── Persistence ──────────────────────────────────────────────
transactions_persisted_total = Counter(
    "transactions_persisted_total",
    "Categorized rows by persistence outcome",
    ["outcome"],
)
