"""EMAIL channel sender over SMTP."""

from __future__ import annotations

import logging
import time
from email.message import EmailMessage
from typing import TYPE_CHECKING

import aiosmtplib

from notification_service.features.notifications.channels.base import ChannelResult, render_text
from notification_service.features.notifications.schemas import Channel

if TYPE_CHECKING:
    from notification_service.core.settings.channels import ChannelSettings
    from notification_service.features.notifications.schemas import NotificationRequest

logger = logging.getLogger(__name__)


class EmailChannelSender:
    """Send plain-text notification emails with aiosmtplib.

    Refused recipients are permanent failures; connection problems and
    other SMTP errors are transient.
    """

    channel = Channel.EMAIL

    def __init__(self, settings: ChannelSettings) -> None:
        if not settings.smtp_host:
            raise ValueError("EmailChannelSender requires CHANNEL_SMTP_HOST")
        self._settings = settings

    def _build_message(self, request: NotificationRequest) -> EmailMessage:
        subject, body = render_text(request)
        message = EmailMessage()
        message["From"] = self._settings.email_from
        message["To"] = request.email or ""
        message["Subject"] = subject
        message.set_content(body)
        return message

    async def send(self, request: NotificationRequest) -> ChannelResult:
        if not request.email:
            return ChannelResult.rejected("No email address for EMAIL delivery")

        settings = self._settings
        start = time.monotonic()
        try:
            await aiosmtplib.send(
                self._build_message(request),
                hostname=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username,
                password=settings.smtp_password.get_secret_value() if settings.smtp_password else None,
                use_tls=settings.smtp_use_tls,
                start_tls=settings.smtp_start_tls,
                timeout=settings.timeout_seconds,
            )
        except (aiosmtplib.SMTPRecipientsRefused, aiosmtplib.SMTPSenderRefused) as exc:
            logger.warning(
                "SMTP server refused message",
                extra={"beneficiary_id": request.beneficiary_id, "error": str(exc)},
            )
            return ChannelResult.rejected(f"SMTP refused: {exc}")
        except (aiosmtplib.SMTPException, OSError) as exc:
            logger.warning(
                "SMTP delivery failed",
                extra={"beneficiary_id": request.beneficiary_id, "error": str(exc)},
            )
            return ChannelResult.transient(f"SMTP error: {exc}")

        elapsed_ms = int((time.monotonic() - start) * 1000)
        return ChannelResult.ok(response_time_ms=elapsed_ms)
