"""Channel sender settings (SMTP and HTTP gateways)."""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChannelSettings(BaseSettings):
    """Provider endpoints for EMAIL, SMS and PUSH delivery.

    Environment variables use CHANNEL_ prefix.
    A channel whose endpoint is not configured is not registered.
    """

    # EMAIL via SMTP
    smtp_host: str | None = Field(default=None, description="SMTP server host")
    smtp_port: int = Field(default=587, ge=1, le=65535, description="SMTP server port")
    smtp_username: str | None = Field(default=None, description="SMTP username")
    smtp_password: SecretStr | None = Field(default=None, description="SMTP password")
    smtp_use_tls: bool = Field(default=False, description="Use implicit TLS")
    smtp_start_tls: bool = Field(default=True, description="Upgrade with STARTTLS")
    email_from: str = Field(
        default="no-reply@appointments.local",
        description="Sender address of notification emails",
    )

    # SMS / PUSH via HTTP gateways
    sms_gateway_url: str | None = Field(default=None, description="SMS gateway endpoint")
    sms_gateway_token: SecretStr | None = Field(default=None, description="SMS gateway token")
    push_gateway_url: str | None = Field(default=None, description="Push gateway endpoint")
    push_gateway_token: SecretStr | None = Field(default=None, description="Push gateway token")

    connect_timeout_seconds: float = Field(default=10.0, gt=0.0, le=60.0)
    timeout_seconds: float = Field(default=30.0, gt=0.0, le=300.0)

    model_config = SettingsConfigDict(
        env_prefix="CHANNEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )
