"""Prometheus metrics for the notification pipeline.

This module provides metrics for tracking notifications:
- Submissions and idempotent duplicates
- Channel sends by outcome and duration
- Retries, exhaustion and dead-letter routing
- Sweep activity of the retry scheduler

Usage:
    from notification_service.features.notifications.metrics import (
        notification_submitted_total,
        notification_sent_total,
    )

    notification_submitted_total.labels(
        notification_type="APPOINTMENT_CREATED",
        mode="async",
    ).inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# =============================================================================
# Intake Metrics
# =============================================================================

notification_submitted_total = Counter(
    "notification_submitted_total",
    "Total number of notification requests accepted by the idempotency gate",
    labelnames=["notification_type", "mode"],
)
"""
Counter for new notification records.

Labels:
    notification_type: APPOINTMENT_CREATED, QR_RESEND, ...
    mode: async (published to the bus) or sync (dispatched inline)
"""

notification_duplicate_total = Counter(
    "notification_duplicate_total",
    "Total number of submissions answered from an existing record",
    labelnames=["notification_type"],
)

notification_rejected_total = Counter(
    "notification_rejected_total",
    "Total number of submissions rejected before persistence",
    labelnames=["reason"],
)

notification_publish_failed_total = Counter(
    "notification_publish_failed_total",
    "Total number of persisted notifications whose event could not be published",
)

# =============================================================================
# Delivery Metrics
# =============================================================================

notification_sent_total = Counter(
    "notification_sent_total",
    "Total number of channel send attempts by outcome",
    labelnames=["channel", "outcome"],
)
"""
Counter for channel send attempts.

Labels:
    channel: EMAIL, SMS or PUSH
    outcome: sent, retrying or failed
"""

notification_send_duration_seconds = Histogram(
    "notification_send_duration_seconds",
    "Channel send duration in seconds",
    labelnames=["channel"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

notification_stale_event_total = Counter(
    "notification_stale_event_total",
    "Total number of events dropped because their attempt was already handled",
)

# =============================================================================
# Retry Metrics
# =============================================================================

notification_retry_scheduled_total = Counter(
    "notification_retry_scheduled_total",
    "Total number of retries re-enqueued by the retry sweep",
)

notification_retry_exhausted_total = Counter(
    "notification_retry_exhausted_total",
    "Total number of notifications that exhausted all retry attempts",
    labelnames=["channel"],
)

notification_dead_lettered_total = Counter(
    "notification_dead_lettered_total",
    "Total number of events routed to the dead-letter topic",
)

notification_orphan_requeued_total = Counter(
    "notification_orphan_requeued_total",
    "Total number of PENDING records re-published by the reconciliation sweep",
)
