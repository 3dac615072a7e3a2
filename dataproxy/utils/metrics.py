"""Prometheus Metrics - Observability for the secure data proxy

Self-Explanatory: Counters and histograms exported at /metrics.
How: prometheus_client default registry; request logic only writes these, never reads them.

Metrics Categories:
1. Traffic: proxy requests per action and status
2. Security: gate rejections, cipher operations
3. Upstream: Supabase call latency per target
"""

import structlog
from prometheus_client import (
    Counter,
    Histogram,
    Info,
    generate_latest,
    REGISTRY,
)

logger = structlog.get_logger()

# ============================================================================
# TRAFFIC METRICS
# ============================================================================

proxy_requests_total = Counter(
    "dataproxy_requests_total",
    "Proxy requests by action and response status",
    ["action", "status"],
)

# ============================================================================
# SECURITY METRICS
# ============================================================================

gate_rejections_total = Counter(
    "dataproxy_gate_rejections_total",
    "Requests rejected by the access-control gate",
    ["reason"],  # missing_token, invalid_token, forbidden
)

cipher_operations_total = Counter(
    "dataproxy_cipher_operations_total",
    "Field encryption/decryption operations",
    ["operation", "result"],
)

# ============================================================================
# UPSTREAM METRICS
# ============================================================================

upstream_duration_seconds = Histogram(
    "dataproxy_upstream_duration_seconds",
    "Latency of calls to the identity service and backing store",
    ["target"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10],
)

# ============================================================================
# SYSTEM INFO
# ============================================================================

system_info = Info(
    "dataproxy_system",
    "Secure data proxy information",
)

system_info.info({
    "version": "1.0.0",
    "cipher": "AES-256-GCM",
})

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


def record_request(action: str, status: int):
    """Record a proxy request outcome"""
    proxy_requests_total.labels(action=action, status=str(status)).inc()


def get_metrics_text() -> bytes:
    """Get Prometheus metrics in text format"""
    return generate_latest(REGISTRY)
