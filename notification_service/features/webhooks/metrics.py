"""Prometheus metrics for outbound webhooks."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

webhook_delivery_total = Counter(
    "webhook_delivery_total",
    "Total number of webhook delivery attempts by outcome",
    labelnames=["event_type", "outcome"],
)
"""
Counter for webhook POST attempts.

Labels:
    event_type: notification.sent, notification.failed, ...
    outcome: success, retrying or failed
"""

webhook_delivery_duration_seconds = Histogram(
    "webhook_delivery_duration_seconds",
    "Webhook POST duration in seconds",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

webhook_signature_rejected_total = Counter(
    "webhook_signature_rejected_total",
    "Total number of inbound webhook payloads rejected for a bad signature",
)

webhook_pending_gauge = Gauge(
    "webhook_pending_gauge",
    "Webhook events waiting for delivery",
)

webhook_failed_gauge = Gauge(
    "webhook_failed_gauge",
    "Webhook events that exhausted their retries",
)
