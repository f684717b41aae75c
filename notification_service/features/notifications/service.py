"""Idempotency gate and public dispatch API of the notification pipeline."""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from notification_service.core.database import run_with_optimistic_retry
from notification_service.core.exceptions import (
    AppException,
    InvalidStateTransition,
    NotFoundException,
    NotificationValidationError,
    PersistenceError,
)
from notification_service.core.services.base import BaseService
from notification_service.features.notifications.channels.registry import parse_channel
from notification_service.features.notifications.events import NotificationEvent
from notification_service.features.notifications.metrics import (
    notification_duplicate_total,
    notification_rejected_total,
    notification_submitted_total,
)
from notification_service.features.notifications.models import NotificationRecord
from notification_service.features.notifications.publisher import NotificationPublisher
from notification_service.features.notifications.repository import (
    NotificationRepository,
    get_notification_repository,
)
from notification_service.features.notifications.schemas import (
    ERROR_CHANNEL,
    AppointmentDetails,
    Channel,
    NotificationRequest,
    NotificationResult,
    NotificationStatus,
    NotificationType,
    NotificationView,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_service.core.settings.notifications import NotificationSettings
    from notification_service.features.notifications.dispatcher import NotificationDispatcher
    from notification_service.infra.messaging.bus import MessageBus


def compute_idempotency_key(beneficiary_id: str, notification_type: str, correlation_id: str) -> str:
    """SHA-256 hex digest of ``beneficiary_id:notification_type:correlation_id``."""
    raw = f"{beneficiary_id}:{notification_type}:{correlation_id}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def request_idempotency_key(request: NotificationRequest) -> str:
    return compute_idempotency_key(
        request.beneficiary_id, str(request.notification_type), request.correlation_id
    )


class NotificationService(BaseService):
    """Accept notification requests exactly once and hand them to delivery.

    Provides:
    - Validation of channel and contact details before anything is stored
    - Deduplication on a deterministic idempotency key
    - Async (bus) or sync (inline dispatcher) delivery
    - Read helpers and provider delivery confirmation
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: NotificationSettings,
        *,
        bus: MessageBus | None = None,
        dispatcher: NotificationDispatcher | None = None,
        repository: NotificationRepository | None = None,
        channels: Iterable[Channel] | None = None,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._settings = settings
        self._publisher = NotificationPublisher(settings, bus=bus, dispatcher=dispatcher)
        self._dispatcher = dispatcher
        self._repository = repository or get_notification_repository()
        self._channels = frozenset(channels) if channels is not None else None

    def resolve_channel(self, request: NotificationRequest) -> Channel:
        """Channel the request will be delivered on.

        Raises:
            NotificationValidationError: If the channel is unsupported,
                missing or has no registered sender, or the beneficiary has
                no address for it.
        """
        if request.preferred_channel:
            channel = parse_channel(request.preferred_channel)
            if channel is None:
                raise NotificationValidationError(
                    detail=f"Unsupported channel: {request.preferred_channel}",
                    extra={"beneficiary_id": request.beneficiary_id},
                )
        else:
            channel = self._settings.default_channel
            if channel is None:
                raise NotificationValidationError(
                    detail="No preferred channel and no default channel configured",
                    extra={"beneficiary_id": request.beneficiary_id},
                )

        if self._channels is not None and channel not in self._channels:
            raise NotificationValidationError(
                detail=f"No sender registered for {channel} delivery",
                extra={"beneficiary_id": request.beneficiary_id, "channel": str(channel)},
            )

        if not request.contact_for(channel):
            raise NotificationValidationError(
                detail=f"No contact information for {channel} delivery",
                extra={"beneficiary_id": request.beneficiary_id, "channel": str(channel)},
            )
        return channel

    async def submit_notification(
        self,
        request: NotificationRequest,
        *,
        now: datetime | None = None,
    ) -> NotificationResult:
        """Public dispatch API; never raises.

        Rejections and infrastructure failures come back as a failed
        result on the ``ERROR`` channel.
        """
        try:
            return await self.submit(request, now=now)
        except AppException as exc:
            return NotificationResult.failed(ERROR_CHANNEL, exc.detail)

    async def submit(
        self,
        request: NotificationRequest,
        *,
        now: datetime | None = None,
    ) -> NotificationResult:
        """Validate, deduplicate, persist and dispatch one request.

        Raises:
            NotificationValidationError: If the request cannot be delivered.
            PersistenceError: If the record could not be stored; nothing
                was published.
        """
        try:
            channel = self.resolve_channel(request)
        except NotificationValidationError as exc:
            notification_rejected_total.labels(reason="validation").inc()
            self.logger.info(
                "Notification request rejected",
                extra={
                    "beneficiary_id": request.beneficiary_id,
                    "notification_type": str(request.notification_type),
                    "reason": exc.detail,
                    "operation": "notification.submit",
                },
            )
            raise

        key = request_idempotency_key(request)
        record, created = await self._store(request, key, channel)

        if not created:
            notification_duplicate_total.labels(notification_type=str(request.notification_type)).inc()
            self.logger.info(
                "Duplicate notification request",
                extra={
                    "notification_id": str(record.id),
                    "status": str(record.status),
                    "operation": "notification.submit",
                },
            )
            return self._outcome(record)

        mode = "async" if self._settings.async_enabled else "sync"
        notification_submitted_total.labels(
            notification_type=str(request.notification_type), mode=mode
        ).inc()
        self.logger.info(
            "Notification accepted",
            extra={
                "notification_id": str(record.id),
                "beneficiary_id": record.beneficiary_id,
                "notification_type": str(record.notification_type),
                "channel": str(channel),
                "mode": mode,
                "operation": "notification.submit",
            },
        )

        event = NotificationEvent.for_record(record)
        if self._publisher.is_async:
            await self._publisher.enqueue(event)
            return NotificationResult.queued()

        assert self._dispatcher is not None
        processed = await self._dispatcher.process(event, now=now)
        return self._outcome(processed or record)

    async def _store(
        self,
        request: NotificationRequest,
        key: str,
        channel: Channel,
    ) -> tuple[NotificationRecord, bool]:
        """Insert a PENDING record unless ``key`` is already known."""
        try:
            async with self._session_factory() as session, session.begin():
                existing = await self._repository.find_by_idempotency_key(session, key)
                if existing is not None:
                    return existing, False
                record = NotificationRecord.from_request(
                    request,
                    idempotency_key=key,
                    preferred_channel=str(channel),
                    max_retries=self._settings.max_retries,
                )
                await self._repository.save(session, record)
            return record, True
        except IntegrityError:
            # Lost the insert race to a concurrent submission of the same request.
            async with self._session_factory() as session:
                existing = await self._repository.find_by_idempotency_key(session, key)
            if existing is None:
                raise PersistenceError(
                    detail="Notification could not be stored",
                    extra={"idempotency_key": key},
                ) from None
            return existing, False
        except SQLAlchemyError as exc:
            self.logger.exception(
                "Persisting notification failed",
                extra={"beneficiary_id": request.beneficiary_id, "operation": "notification.store"},
            )
            raise PersistenceError(
                detail="Notification could not be stored",
                extra={"idempotency_key": key},
            ) from exc

    def _outcome(self, record: NotificationRecord) -> NotificationResult:
        """Result of a request as recorded on its notification."""
        channel = record.channel or record.preferred_channel or ERROR_CHANNEL
        if record.status.is_success:
            return NotificationResult.succeeded(channel, record.sent_at)
        if record.status.is_failure:
            return NotificationResult.failed(channel, record.error_message)
        if self._settings.async_enabled:
            return NotificationResult.queued()
        return NotificationResult.failed(channel, record.error_message or "Delivery in progress")

    # ------------------------------------------------------------------
    # Typed entry points
    # ------------------------------------------------------------------

    async def _notify(
        self,
        notification_type: NotificationType,
        beneficiary_id: str,
        appointment: AppointmentDetails | None,
        **fields: Any,
    ) -> NotificationResult:
        request = NotificationRequest(
            beneficiary_id=beneficiary_id,
            notification_type=notification_type,
            appointment=appointment,
            **fields,
        )
        return await self.submit_notification(request)

    async def notify_appointment_created(
        self, beneficiary_id: str, appointment: AppointmentDetails, **contact: Any
    ) -> NotificationResult:
        return await self._notify(NotificationType.APPOINTMENT_CREATED, beneficiary_id, appointment, **contact)

    async def notify_appointment_reminder(
        self, beneficiary_id: str, appointment: AppointmentDetails, **contact: Any
    ) -> NotificationResult:
        return await self._notify(NotificationType.APPOINTMENT_REMINDER, beneficiary_id, appointment, **contact)

    async def notify_appointment_cancelled(
        self,
        beneficiary_id: str,
        appointment: AppointmentDetails,
        cancellation_reason: str | None = None,
        **contact: Any,
    ) -> NotificationResult:
        return await self._notify(
            NotificationType.APPOINTMENT_CANCELLED,
            beneficiary_id,
            appointment,
            cancellation_reason=cancellation_reason,
            **contact,
        )

    async def resend_qr_code(
        self, beneficiary_id: str, appointment: AppointmentDetails, **contact: Any
    ) -> NotificationResult:
        return await self._notify(NotificationType.QR_RESEND, beneficiary_id, appointment, **contact)

    async def notify_verification_code_sent(
        self, beneficiary_id: str, appointment: AppointmentDetails, **contact: Any
    ) -> NotificationResult:
        return await self._notify(NotificationType.VERIFICATION_CODE_SENT, beneficiary_id, appointment, **contact)

    async def notify_appointment_verified(
        self, beneficiary_id: str, appointment: AppointmentDetails, **contact: Any
    ) -> NotificationResult:
        return await self._notify(NotificationType.APPOINTMENT_VERIFIED, beneficiary_id, appointment, **contact)

    # ------------------------------------------------------------------
    # Queries and confirmation
    # ------------------------------------------------------------------

    async def get_notification(self, notification_id: UUID) -> NotificationView:
        """Current state of one notification.

        Raises:
            NotFoundException: If no such notification exists.
        """
        async with self._session_factory() as session:
            record = await self._repository.find_by_id(session, notification_id)
        if record is None:
            raise NotFoundException(
                detail=f"Notification {notification_id} not found",
                type="notification-not-found",
                extra={"notification_id": str(notification_id)},
            )
        return NotificationView.model_validate(record)

    async def get_notification_history(self, beneficiary_id: str, *, limit: int = 100) -> list[NotificationView]:
        """Notifications of a beneficiary, newest first."""
        async with self._session_factory() as session:
            records = await self._repository.find_by_beneficiary(session, beneficiary_id, limit=limit)
        return [NotificationView.model_validate(record) for record in records]

    async def confirm_delivery(
        self,
        notification_id: UUID,
        *,
        delivered: bool,
        error_message: str | None = None,
    ) -> NotificationView:
        """Record the provider's verdict on a SENT notification.

        Raises:
            NotFoundException: If no such notification exists.
            InvalidStateTransition: If the notification is not SENT.
        """
        target = NotificationStatus.DELIVERED if delivered else NotificationStatus.BOUNCED

        async def apply(session: AsyncSession) -> NotificationRecord:
            record = await self._repository.find_by_id(session, notification_id)
            if record is None:
                raise NotFoundException(
                    detail=f"Notification {notification_id} not found",
                    type="notification-not-found",
                    extra={"notification_id": str(notification_id)},
                )
            if not record.status.can_transition_to(target):
                raise InvalidStateTransition(
                    detail=f"Notification {notification_id} is {record.status} and cannot become {target}",
                    extra={"notification_id": str(notification_id), "from": str(record.status), "to": str(target)},
                )
            record.status = target
            if error_message is not None:
                record.error_message = error_message
            return await self._repository.save(session, record)

        record = await run_with_optimistic_retry(
            self._session_factory,
            apply,
            name="notification.confirm_delivery",
            attempts=self._settings.optimistic_lock_attempts,
        )
        self.logger.info(
            "Delivery confirmation recorded",
            extra={
                "notification_id": str(notification_id),
                "status": str(target),
                "operation": "notification.confirm_delivery",
            },
        )
        return NotificationView.model_validate(record)
