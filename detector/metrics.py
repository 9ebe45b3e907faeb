"""Prometheus metrics for the detector and the reconciler.

Each metric auto-registers in the global REGISTRY on import; the service
mains expose it with start_http_server() when --metrics-port is set.
"""

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# Streaming path
# ---------------------------------------------------------------------------
records_total = Counter(
    "waf_alarm_records_total",
    "WAF log records processed, by outcome",
    ["outcome"],
)
blocked_by_country = Counter(
    "waf_alarm_blocked_requests_total",
    "Decoded blocked requests by client country",
    ["country"],
)
batch_size = Histogram(
    "waf_alarm_batch_size",
    "Records per consumed batch",
    buckets=[1, 10, 50, 100, 250, 500, 1000],
)

# ---------------------------------------------------------------------------
# Alerts (both paths)
# ---------------------------------------------------------------------------
alerts_total = Counter(
    "waf_alarm_alerts_total",
    "Alerts published",
    ["path"],
)
claims_lost_total = Counter(
    "waf_alarm_claims_lost_total",
    "Alerts skipped because another evaluator already claimed the records",
    ["path"],
)
publish_errors_total = Counter(
    "waf_alarm_publish_errors_total",
    "Alerts that could not be rendered or delivered",
    ["path"],
)

# ---------------------------------------------------------------------------
# Reconcile path
# ---------------------------------------------------------------------------
sweeps_total = Counter(
    "waf_alarm_sweeps_total",
    "Reconciler sweeps, by result",
    ["result"],
)
sweep_duration = Histogram(
    "waf_alarm_sweep_duration_seconds",
    "Wall time of one reconciler sweep",
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 120],
)
clients_scanned = Gauge(
    "waf_alarm_clients_scanned",
    "Clients evaluated in the last reconciler sweep",
)
