"""Database model for notification campaigns."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from notification_service.core.database import (
    Base,
    StrEnumType,
    TenantMixin,
    TimestampMixin,
    UTCDateTime,
    UUIDPKMixin,
)
from notification_service.features.campaigns.schemas import CampaignStatus
from notification_service.features.notifications.schemas import NotificationType


class CampaignRecord(Base, UUIDPKMixin, TimestampMixin, TenantMixin):
    """A bulk notification job tracked as one aggregate.

    ``success_count + failure_count`` never exceeds
    ``target_beneficiary_count``; the progress tracker clamps both.
    """

    __tablename__ = "notification_campaigns"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    notification_type: Mapped[NotificationType] = mapped_column(StrEnumType(NotificationType), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True, comment="Broadcast text")
    status: Mapped[CampaignStatus] = mapped_column(
        StrEnumType(CampaignStatus),
        nullable=False,
        default=CampaignStatus.DRAFT,
    )
    target_beneficiary_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (Index("ix_notification_campaigns_status", "status"),)

    def __repr__(self) -> str:
        return f"<CampaignRecord(id={self.id}, name={self.name!r}, status={self.status})>"
