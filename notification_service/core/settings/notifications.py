"""Notification pipeline settings."""

from __future__ import annotations

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from notification_service.features.notifications.schemas import Channel


class NotificationSettings(BaseSettings):
    """Configuration for intake, dispatch and retry of notifications.

    Environment variables use NOTIFICATION_ prefix.
    Example: NOTIFICATION_ASYNC_ENABLED=false, NOTIFICATION_MAX_RETRIES=5
    """

    # Intake
    default_channel: Channel | None = Field(
        default=Channel.SMS,
        description="Channel used when a request has no preferred channel (None disables fallback)",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Maximum delivery attempts after the first failure",
    )
    async_enabled: bool = Field(
        default=True,
        description="Publish to the message bus (True) or dispatch inline (False)",
    )

    # Topics
    topic: str = Field(default="notification-events", description="Main event topic")
    dead_letter_topic: str = Field(
        default="notification-events-dlq",
        description="Topic for events that exhausted their retries",
    )
    topic_partitions: int = Field(default=3, ge=1, le=64, description="Main topic partitions")
    topic_replication_factor: int = Field(default=2, ge=1, le=7)
    topic_retention_days: int = Field(default=7, ge=1, description="Main topic retention")
    dead_letter_retention_days: int = Field(default=30, ge=1, description="DLQ retention")

    # Consumer
    consumer_group: str = Field(
        default="notification-service-group",
        description="Consumer group id for the dispatcher",
    )
    consumer_concurrency: int = Field(
        default=3,
        ge=1,
        le=64,
        description="Concurrent dispatcher workers per topic",
    )
    forward_to_dead_letter: bool = Field(
        default=True,
        description="Forward events of FAILED notifications to the dead-letter topic",
    )
    fail_fast_on_permanent_error: bool = Field(
        default=False,
        description="Fail immediately on permanent channel errors instead of consuming retries",
    )
    max_redeliveries: int = Field(
        default=3,
        ge=0,
        description="Bus-level redeliveries of a message whose handler raised",
    )

    # Retry sweep
    retry_interval_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="Interval of the notification retry sweep",
    )
    retry_base_delay_ms: float = Field(
        default=100.0,
        gt=0.0,
        description="Base delay of the notification backoff (ms)",
    )
    retry_multiplier: float = Field(
        default=1.5,
        ge=1.0,
        description="Multiplier of the notification backoff",
    )
    retry_claim_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Lease put on a record claimed by the retry sweep",
    )

    # Reconciliation of PENDING records with no in-flight event
    orphan_threshold_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Age after which a PENDING record is considered orphaned",
    )
    orphan_sweep_interval_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Interval of the orphan reconciliation sweep",
    )

    # Optional delivery confirmation
    confirmation_webhook_url: AnyHttpUrl | None = Field(
        default=None,
        description="URL that receives notification.sent / notification.failed webhooks",
    )

    optimistic_lock_attempts: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Attempts to reapply a state transition after a version conflict",
    )

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )
