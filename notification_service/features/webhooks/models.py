"""Database model for outbound webhook events."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from notification_service.core.database import (
    Base,
    StrEnumType,
    TimestampMixin,
    UTCDateTime,
    UUIDPKMixin,
)
from notification_service.features.webhooks.schemas import WebhookStatus


class WebhookEventRecord(Base, UUIDPKMixin, TimestampMixin):
    """One webhook callback and the lifecycle of its delivery attempts.

    ``payload`` is the exact JSON text that was signed; retries POST the
    same bytes so the stored ``signature`` stays valid.
    """

    __tablename__ = "webhook_events"

    notification_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    webhook_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False, comment="Signed JSON body")
    signature: Mapped[str] = mapped_column(String(128), nullable=False, comment="base64 HMAC-SHA256")

    status: Mapped[WebhookStatus] = mapped_column(
        StrEnumType(WebhookStatus),
        nullable=False,
        default=WebhookStatus.PENDING,
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    next_retry_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    response_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (Index("ix_webhook_events_status_next_retry_at", "status", "next_retry_at"),)

    def __repr__(self) -> str:
        return (
            f"<WebhookEventRecord(id={self.id}, event_type={self.event_type}, "
            f"status={self.status}, retry_count={self.retry_count})>"
        )
