"""Pydantic schemas and enums for the notification pipeline."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class Channel(StrEnum):
    """Delivery medium."""

    EMAIL = "EMAIL"
    SMS = "SMS"
    PUSH = "PUSH"


class NotificationType(StrEnum):
    """Appointment lifecycle events that trigger a notification."""

    APPOINTMENT_CREATED = "APPOINTMENT_CREATED"
    APPOINTMENT_REMINDER = "APPOINTMENT_REMINDER"
    APPOINTMENT_CANCELLED = "APPOINTMENT_CANCELLED"
    QR_RESEND = "QR_RESEND"
    VERIFICATION_CODE_SENT = "VERIFICATION_CODE_SENT"
    APPOINTMENT_VERIFIED = "APPOINTMENT_VERIFIED"


class NotificationPriority(StrEnum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"


class NotificationStatus(StrEnum):
    """Lifecycle of a notification record.

    PENDING -> SENT | RETRYING | FAILED
    RETRYING -> SENT | RETRYING | FAILED
    SENT -> DELIVERED | BOUNCED (provider confirmation)
    """

    PENDING = "PENDING"
    RETRYING = "RETRYING"
    SENT = "SENT"
    FAILED = "FAILED"
    DELIVERED = "DELIVERED"
    BOUNCED = "BOUNCED"

    @property
    def is_terminal(self) -> bool:
        """No further delivery attempt will be made."""
        return self not in (NotificationStatus.PENDING, NotificationStatus.RETRYING)

    @property
    def is_success(self) -> bool:
        return self in (NotificationStatus.SENT, NotificationStatus.DELIVERED)

    @property
    def is_failure(self) -> bool:
        return self in (NotificationStatus.FAILED, NotificationStatus.BOUNCED)

    def can_transition_to(self, target: NotificationStatus) -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[NotificationStatus, frozenset[NotificationStatus]] = {
    NotificationStatus.PENDING: frozenset(
        {NotificationStatus.SENT, NotificationStatus.RETRYING, NotificationStatus.FAILED}
    ),
    NotificationStatus.RETRYING: frozenset(
        {NotificationStatus.SENT, NotificationStatus.RETRYING, NotificationStatus.FAILED}
    ),
    NotificationStatus.SENT: frozenset({NotificationStatus.DELIVERED, NotificationStatus.BOUNCED}),
    NotificationStatus.FAILED: frozenset(),
    NotificationStatus.DELIVERED: frozenset(),
    NotificationStatus.BOUNCED: frozenset(),
}


class AppointmentDetails(BaseModel):
    """Appointment data carried by appointment notifications."""

    model_config = ConfigDict(frozen=True)

    appointment_id: str
    appointment_code: str | None = None
    qr_code_url: str | None = None
    verification_code: str | None = None
    verification_code_expires_at: datetime | None = None
    appointment_date: str | None = None
    appointment_time: str | None = None
    beneficiary_name: str | None = None
    service_type: str | None = None
    center_name: str | None = None


class NotificationRequest(BaseModel):
    """A request to notify one beneficiary.

    ``preferred_channel`` is kept as free text so that an unsupported
    channel is reported as a validation failure of the request rather
    than a schema error.
    """

    model_config = ConfigDict(frozen=True)

    beneficiary_id: str = Field(min_length=1)
    notification_type: NotificationType
    mobile_number: str | None = None
    email: str | None = None
    device_id: str | None = None
    has_installed_mobile_app: bool = False
    preferred_channel: str | None = None
    appointment: AppointmentDetails | None = None
    cancellation_reason: str | None = None
    message: str | None = Field(default=None, description="Free text for campaign broadcasts")
    priority: NotificationPriority = NotificationPriority.NORMAL

    @property
    def correlation_id(self) -> str:
        """Id of the entity the notification is about."""
        if self.appointment is not None and self.appointment.appointment_id:
            return self.appointment.appointment_id
        return "unknown"

    def contact_for(self, channel: Channel) -> str | None:
        """Address used to reach the beneficiary on ``channel``."""
        if channel is Channel.EMAIL:
            return self.email
        if channel is Channel.SMS:
            return self.mobile_number
        return self.device_id


ASYNC_QUEUED_CHANNEL = "ASYNC_QUEUED"
ERROR_CHANNEL = "ERROR"


class NotificationResult(BaseModel):
    """Outcome returned by the public dispatch API.

    Attributes:
        channel: Channel used, ``ASYNC_QUEUED`` when handed to the bus, or
            ``ERROR`` when the request was rejected.
        success: Whether the request succeeded (or was accepted).
        error_message: Failure reason, if any.
        sent_at: Epoch milliseconds of the outcome.
    """

    channel: str
    success: bool
    error_message: str | None = None
    sent_at: int = Field(default_factory=lambda: epoch_ms(datetime.now(UTC)))

    @classmethod
    def succeeded(cls, channel: str, sent_at: datetime | None = None) -> NotificationResult:
        return cls(channel=channel, success=True, sent_at=epoch_ms(sent_at or datetime.now(UTC)))

    @classmethod
    def failed(cls, channel: str, error_message: str | None) -> NotificationResult:
        return cls(channel=channel, success=False, error_message=error_message)

    @classmethod
    def queued(cls) -> NotificationResult:
        return cls(channel=ASYNC_QUEUED_CHANNEL, success=True)


class NotificationView(BaseModel):
    """Read model of a stored notification."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    beneficiary_id: str
    notification_type: NotificationType
    preferred_channel: str | None
    channel: str | None
    status: NotificationStatus
    retry_count: int
    max_retries: int
    next_retry_at: datetime | None
    created_at: datetime
    sent_at: datetime | None
    error_message: str | None
    campaign_id: UUID | None


def epoch_ms(moment: datetime) -> int:
    """Milliseconds since the Unix epoch."""
    return int(moment.timestamp() * 1000)
