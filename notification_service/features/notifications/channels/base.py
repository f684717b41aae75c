"""Base protocol and types for channel senders."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from notification_service.features.notifications.schemas import Channel, NotificationRequest


@dataclass(slots=True)
class ChannelResult:
    """Result of a channel send attempt.

    Attributes:
        success: Whether the provider accepted the message
        error_message: Error description if failed
        permanent: The provider rejected the message for good
        status_code: Provider status code, when there is one
        response_time_ms: Time taken for the attempt in milliseconds
    """

    success: bool
    error_message: str | None = None
    permanent: bool = False
    status_code: int | None = None
    response_time_ms: int | None = None

    @classmethod
    def ok(cls, *, status_code: int | None = None, response_time_ms: int | None = None) -> ChannelResult:
        return cls(success=True, status_code=status_code, response_time_ms=response_time_ms)

    @classmethod
    def transient(cls, error_message: str, **kwargs: int | None) -> ChannelResult:
        return cls(success=False, error_message=error_message, **kwargs)

    @classmethod
    def rejected(cls, error_message: str, **kwargs: int | None) -> ChannelResult:
        return cls(success=False, error_message=error_message, permanent=True, **kwargs)


class ChannelSender(Protocol):
    """Capability to deliver a notification over one medium.

    Vendor specifics stay behind this interface. Implementations either
    return a ChannelResult or raise TransientChannelError /
    PermanentChannelError; the dispatcher treats both the same way.
    """

    channel: Channel

    async def send(self, request: NotificationRequest) -> ChannelResult:
        """Send ``request`` to the beneficiary's address for this channel."""
        ...


def render_text(request: NotificationRequest) -> tuple[str, str]:
    """Plain subject and body for a request.

    Template rendering belongs to the providers; this only gives senders
    a readable fallback text.
    """
    title = request.notification_type.replace("_", " ").title()
    lines: list[str] = []
    if request.message:
        lines.append(request.message)

    appointment = request.appointment
    if appointment is not None:
        if appointment.beneficiary_name:
            lines.append(f"Dear {appointment.beneficiary_name},")
        when = " ".join(part for part in (appointment.appointment_date, appointment.appointment_time) if part)
        where = appointment.center_name or ""
        lines.append(f"{title}: appointment {appointment.appointment_code or appointment.appointment_id} {when} {where}".strip())
        if appointment.verification_code:
            lines.append(f"Verification code: {appointment.verification_code}")
        if appointment.qr_code_url:
            lines.append(f"QR code: {appointment.qr_code_url}")

    if request.cancellation_reason:
        lines.append(f"Reason: {request.cancellation_reason}")

    return title, "\n".join(lines) or title
