"""Prometheus metrics for kubesentry.

All counters are module-level singletons registered in the default
prometheus_client registry.  ``start_metrics_server`` exposes them over HTTP
when a port is configured.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, start_http_server

events_received_total = Counter(
    "kubesentry_events_received_total",
    "Cluster events received from the watch feed",
)

events_filtered_total = Counter(
    "kubesentry_events_filtered_total",
    "Cluster events dropped by the filter policy",
    ["reason"],
)

reports_enqueued_total = Counter(
    "kubesentry_reports_enqueued_total",
    "Reports accepted by the delivery queue",
)

reports_lost_total = Counter(
    "kubesentry_reports_lost_total",
    "Reports that were never delivered because of backpressure or shutdown",
    ["cause"],
)

deliveries_total = Counter(
    "kubesentry_deliveries_total",
    "Delivery attempts by outcome",
    ["outcome"],
)

watch_reconnects_total = Counter(
    "kubesentry_watch_reconnects_total",
    "Watch session reconnects by cause",
    ["cause"],
)

delivery_queue_pending = Gauge(
    "kubesentry_delivery_queue_pending",
    "Reports currently held by the delivery queue (queued, in flight or awaiting retry)",
)


def start_metrics_server(port: int) -> bool:
    """Expose the default registry on *port*.  Returns False when disabled."""
    if port <= 0:
        return False
    start_http_server(port)
    return True
