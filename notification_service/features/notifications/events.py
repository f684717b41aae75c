"""Events placed on the notification topics."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, ClassVar
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from notification_service.features.notifications.schemas import (
    NotificationPriority,
    NotificationRequest,
)

if TYPE_CHECKING:
    from notification_service.features.notifications.models import NotificationRecord


class NotificationEvent(BaseModel):
    """Immutable snapshot of one delivery attempt.

    A new event is produced for the first attempt and for every retry;
    ``retry_count`` mirrors the record at publish time, which lets the
    dispatcher recognise stale duplicates of an attempt that was already
    handled.

    Example:
        event = NotificationEvent.for_record(record)
        await bus.publish("notification-events", event, key=str(record.id))
    """

    event_type: ClassVar[str] = "notification.requested"

    model_config = ConfigDict(frozen=True, extra="forbid")

    event_id: UUID = Field(default_factory=uuid4, description="Unique event identifier")
    notification_id: UUID
    campaign_id: UUID | None = None
    request: NotificationRequest
    retry_count: int = Field(ge=0)
    max_retries: int = Field(ge=0)
    idempotency_key: str
    priority: NotificationPriority = NotificationPriority.NORMAL
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def for_record(cls, record: NotificationRecord) -> NotificationEvent:
        """Snapshot a NotificationRecord's current attempt."""
        return cls(
            notification_id=record.id,
            campaign_id=record.campaign_id,
            request=record.to_request(),
            retry_count=record.retry_count,
            max_retries=record.max_retries,
            idempotency_key=record.idempotency_key,
            priority=record.priority,
        )

    @property
    def partition_key(self) -> str:
        """Events of one notification share a partition."""
        return str(self.notification_id)
