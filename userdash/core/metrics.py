"""Prometheus metrics — the full inventory of what the service measures.

Other modules import the metric they own and increment/observe it at
the point of action.  Prometheus scrapes GET /metrics.

HTTP metrics are filled in by MetricsMiddleware.  The integrity
pipeline metrics answer the operational questions that matter for
this service:

  - How many signatures has this process issued?  (SIGNATURES_ISSUED)
  - Did the keypair come from disk or was it freshly generated on boot?
    A "generated" sample on a node that already had keys means the key
    volume was lost and every older signature is now unverifiable.
  - Are exports succeeding, and how large are they?
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    # RSA signing sits in the 1-5ms range; full exports of large tables
    # land in the upper buckets.
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Integrity pipeline
# ---------------------------------------------------------------------------

KEYPAIR_INITIALIZATIONS = Counter(
    "keypair_initializations_total",
    "Keypair initializations by source",
    ["source"],  # "loaded" or "generated"
)

SIGNATURES_ISSUED = Counter(
    "signatures_issued_total",
    "Email hash signatures produced with the private key",
)

EXPORTS = Counter(
    "user_exports_total",
    "Binary user exports by result",
    ["result"],  # "ok" or "error"
)

EXPORT_SIZE = Histogram(
    "user_export_records",
    "Number of records per binary export",
    buckets=[0, 10, 100, 1_000, 10_000, 100_000],
)

# ---------------------------------------------------------------------------
# Stats cache
# ---------------------------------------------------------------------------

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit" or "miss"
)
