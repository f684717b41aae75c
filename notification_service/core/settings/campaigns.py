"""Campaign orchestration settings."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CampaignSettings(BaseSettings):
    """Configuration for bulk campaign fan-out and progress tracking.

    Environment variables use CAMPAIGN_ prefix.
    """

    batch_size: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Beneficiaries persisted and published per fan-out batch",
    )
    progress_interval_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Interval of the campaign progress tracker",
    )
    pause_poll_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="How often a paused fan-out re-reads the campaign status",
    )
    shutdown_grace_seconds: float = Field(
        default=10.0,
        ge=0.0,
        description="How long shutdown waits for running fan-outs before cancelling them",
    )

    model_config = SettingsConfigDict(
        env_prefix="CAMPAIGN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )
