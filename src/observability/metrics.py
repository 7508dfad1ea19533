"""Prometheus metric definitions for ingestion self-instrumentation.

All metrics are module-level singletons registered with the default
prometheus_client registry.  Import them wherever instrumentation is needed.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# ---------------------------------------------------------------------------
# Histogram bucket definitions
# ---------------------------------------------------------------------------

REQUEST_DURATION_BUCKETS = (0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0)
CHUNK_DURATION_BUCKETS = (0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0)

# ---------------------------------------------------------------------------
# API request metrics
# ---------------------------------------------------------------------------

REQUEST_DURATION = Histogram(
    "thread_insights_request_duration_seconds",
    "End-to-end API request duration in seconds",
    labelnames=["endpoint"],
    buckets=REQUEST_DURATION_BUCKETS,
)

REQUESTS_TOTAL = Counter(
    "thread_insights_requests_total",
    "Total number of API requests",
    labelnames=["endpoint", "status"],
)

# ---------------------------------------------------------------------------
# Ingestion metrics (populated by fetcher and orchestrator)
# ---------------------------------------------------------------------------

CHUNK_FETCH_DURATION = Histogram(
    "thread_insights_chunk_fetch_duration_seconds",
    "Duration of individual chunk fetches in seconds",
    buckets=CHUNK_DURATION_BUCKETS,
)

CHUNK_FETCHES_TOTAL = Counter(
    "thread_insights_chunk_fetches_total",
    "Total number of chunk fetches by outcome",
    labelnames=["status"],
)

INGESTION_RUNS_TOTAL = Counter(
    "thread_insights_ingestion_runs_total",
    "Total number of ingestion runs by outcome",
    labelnames=["outcome"],
)

RECORDS_FETCHED_TOTAL = Counter(
    "thread_insights_records_fetched_total",
    "Total number of thread records fetched from the remote API",
)

# ---------------------------------------------------------------------------
# Cache metrics
# ---------------------------------------------------------------------------

CACHE_LOOKUPS_TOTAL = Counter(
    "thread_insights_cache_lookups_total",
    "Range cache lookups by result (exact, superset, miss)",
    labelnames=["result"],
)

CACHE_ENTRIES = Gauge(
    "thread_insights_cache_entries",
    "Number of live range cache entries",
)

# ---------------------------------------------------------------------------
# Info
# ---------------------------------------------------------------------------

APP_INFO = Info(
    "thread_insights",
    "Thread insights build information",
)
