"""Schemas and enums for webhook events."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class WebhookStatus(StrEnum):
    """Delivery state of a webhook event.

    pending -> success | pending (retry scheduled) | failed
    """

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class WebhookEventView(BaseModel):
    """Read model of a stored webhook event."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    notification_id: UUID | None
    webhook_url: str
    event_type: str
    status: WebhookStatus
    retry_count: int
    max_retries: int
    next_retry_at: datetime | None
    response_code: int | None
    processed_at: datetime | None
    created_at: datetime


class WebhookStats(BaseModel):
    """Counts reported by the webhook monitor."""

    pending: int = 0
    due: int = 0
    failed: int = 0
    succeeded: int = 0
