"""Webhook delivery configuration settings.

Provides settings for HMAC signing, HTTP delivery, retry scheduling and
timeouts of outbound delivery-confirmation webhooks.
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class WebhookSettings(BaseSettings):
    """Configuration for webhook delivery system.

    Controls the shared signing secret, HTTP timeouts and the retry
    behavior of outbound webhook notifications.
    """

    secret: SecretStr = Field(
        default=SecretStr("your-secret-key"),
        description="Shared secret used for the HMAC-SHA256 signature",
    )

    # HTTP delivery settings
    timeout_seconds: float = Field(
        default=30.0,
        ge=1,
        le=300,
        description="Read timeout for webhook HTTP requests (seconds)",
    )
    connect_timeout_seconds: float = Field(
        default=10.0,
        ge=1,
        le=60,
        description="Connection timeout for webhook HTTP requests (seconds)",
    )

    # Retry configuration
    max_retries: int = Field(
        default=5,
        ge=0,
        le=20,
        description="Maximum retry attempts for failed webhook delivery",
    )
    retry_interval_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Interval of the webhook retry sweep (5 min default)",
    )
    monitor_interval_seconds: float = Field(
        default=600.0,
        gt=0.0,
        description="Interval of the pending/failed webhook monitor (10 min default)",
    )
    max_response_body_chars: int = Field(
        default=5000,
        ge=0,
        description="Response bodies are truncated to this many characters",
    )

    model_config = SettingsConfigDict(
        env_prefix="WEBHOOK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )


__all__ = ["WebhookSettings"]
