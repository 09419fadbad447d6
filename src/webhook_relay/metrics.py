"""
Prometheus metrics for the webhook relay.

Registered on the global REGISTRY at import time; expose them with
``prometheus_client.start_http_server`` from the host if desired.
"""

from prometheus_client import Counter, Gauge, Histogram

RELAY_DELIVERIES_TOTAL = Counter(
    "relay_deliveries_total",
    "Delivery attempts by outcome",
    ["pipeline", "outcome"],
)

RELAY_DELIVERY_LATENCY = Histogram(
    "relay_delivery_latency_seconds",
    "Webhook POST latency in seconds",
    ["pipeline"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

RELAY_DROPPED_TOTAL = Counter(
    "relay_dropped_total",
    "Records removed from the queue without successful delivery",
    ["pipeline", "reason"],
)

RELAY_ENDPOINT_REFRESH_TOTAL = Counter(
    "relay_endpoint_refresh_total",
    "Endpoint resolver refreshes",
    ["pipeline", "trigger"],
)

RELAY_QUEUE_DEPTH = Gauge(
    "relay_queue_depth",
    "Records waiting for delivery",
    ["pipeline"],
)

RELAY_QUEUE_CAPACITY = Gauge(
    "relay_queue_capacity",
    "Configured queue capacity",
    ["pipeline"],
)

RELAY_WORKER_ALIVE = Gauge(
    "relay_worker_alive",
    "1 while the delivery worker task is running",
    ["pipeline"],
)


class MetricsRegistry:
    """Grouped access to relay metrics."""

    deliveries_total = RELAY_DELIVERIES_TOTAL
    delivery_latency = RELAY_DELIVERY_LATENCY
    dropped_total = RELAY_DROPPED_TOTAL
    endpoint_refresh_total = RELAY_ENDPOINT_REFRESH_TOTAL
    queue_depth = RELAY_QUEUE_DEPTH
    queue_capacity = RELAY_QUEUE_CAPACITY
    worker_alive = RELAY_WORKER_ALIVE


# Singleton instance
metrics_registry = MetricsRegistry()
