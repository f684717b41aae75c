"""Database models for notification records."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from notification_service.core.database import (
    Base,
    StrEnumType,
    TimestampMixin,
    UTCDateTime,
    UUIDPKMixin,
)
from notification_service.features.notifications.schemas import (
    AppointmentDetails,
    NotificationPriority,
    NotificationRequest,
    NotificationStatus,
    NotificationType,
)


class NotificationRecord(Base, UUIDPKMixin, TimestampMixin):
    """One logical notification and the lifecycle of its delivery attempts.

    Created PENDING by the idempotency gate or a campaign fan-out, then
    mutated only by the dispatcher and the retry sweeps. Never deleted.
    ``next_retry_at`` is set exactly while the status is RETRYING.
    """

    __tablename__ = "notifications"

    idempotency_key: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        comment="Deduplication key; the unique constraint is the authority",
    )
    beneficiary_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    mobile_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    device_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    preferred_channel: Mapped[str | None] = mapped_column(String(16), nullable=True)
    channel: Mapped[str | None] = mapped_column(
        String(16),
        nullable=True,
        comment="Channel of the last attempt",
    )
    notification_type: Mapped[NotificationType] = mapped_column(
        StrEnumType(NotificationType), nullable=False
    )
    priority: Mapped[NotificationPriority] = mapped_column(
        StrEnumType(NotificationPriority),
        nullable=False,
        default=NotificationPriority.NORMAL,
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Type-specific request data (appointment, cancellation reason, message)",
    )

    status: Mapped[NotificationStatus] = mapped_column(
        StrEnumType(NotificationStatus),
        nullable=False,
        default=NotificationStatus.PENDING,
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    next_retry_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    campaign_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_notifications_status_next_retry_at", "status", "next_retry_at"),
        Index("ix_notifications_campaign_status", "campaign_id", "status"),
    )

    @classmethod
    def from_request(
        cls,
        request: NotificationRequest,
        *,
        idempotency_key: str,
        preferred_channel: str | None,
        max_retries: int,
        campaign_id: uuid.UUID | None = None,
    ) -> NotificationRecord:
        """Build a PENDING record from an accepted request."""
        payload: dict[str, Any] = {"has_installed_mobile_app": request.has_installed_mobile_app}
        if request.appointment is not None:
            payload["appointment"] = request.appointment.model_dump(mode="json")
        if request.cancellation_reason is not None:
            payload["cancellation_reason"] = request.cancellation_reason
        if request.message is not None:
            payload["message"] = request.message

        return cls(
            id=uuid.uuid4(),
            idempotency_key=idempotency_key,
            beneficiary_id=request.beneficiary_id,
            mobile_number=request.mobile_number,
            email=request.email,
            device_id=request.device_id,
            preferred_channel=preferred_channel,
            notification_type=request.notification_type,
            priority=request.priority,
            payload=payload,
            status=NotificationStatus.PENDING,
            retry_count=0,
            max_retries=max_retries,
            campaign_id=campaign_id,
        )

    def to_request(self) -> NotificationRequest:
        """Rebuild the request that this record was created from."""
        appointment = self.payload.get("appointment")
        return NotificationRequest(
            beneficiary_id=self.beneficiary_id,
            notification_type=self.notification_type,
            mobile_number=self.mobile_number,
            email=self.email,
            device_id=self.device_id,
            has_installed_mobile_app=bool(self.payload.get("has_installed_mobile_app", False)),
            preferred_channel=self.preferred_channel,
            appointment=AppointmentDetails.model_validate(appointment) if appointment else None,
            cancellation_reason=self.payload.get("cancellation_reason"),
            message=self.payload.get("message"),
            priority=self.priority,
        )

    def __repr__(self) -> str:
        return (
            f"<NotificationRecord(id={self.id}, type={self.notification_type}, "
            f"status={self.status}, retry_count={self.retry_count})>"
        )
