"""Consumer side of the notification pipeline.

The dispatcher turns one ``NotificationEvent`` into one delivery attempt
and one state transition of the matching record. Retries are not driven
by the bus: a failed attempt is persisted as RETRYING with a
``next_retry_at`` and the retry sweep re-publishes it when due.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from notification_service.core.database import run_with_optimistic_retry, utcnow
from notification_service.core.exceptions import ChannelError
from notification_service.core.services.base import BaseService
from notification_service.features.notifications.backoff import notification_retry_delay
from notification_service.features.notifications.channels.base import ChannelResult
from notification_service.features.notifications.events import NotificationEvent
from notification_service.features.notifications.metrics import (
    notification_dead_lettered_total,
    notification_retry_exhausted_total,
    notification_send_duration_seconds,
    notification_sent_total,
    notification_stale_event_total,
)
from notification_service.features.notifications.repository import (
    NotificationRepository,
    get_notification_repository,
)
from notification_service.features.notifications.schemas import NotificationStatus
from notification_service.infra.logging import log_context

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_service.core.settings.notifications import NotificationSettings
    from notification_service.features.notifications.channels.registry import ChannelRegistry
    from notification_service.features.notifications.models import NotificationRecord
    from notification_service.features.webhooks.service import WebhookNotifier
    from notification_service.infra.messaging.bus import MessageBus

SENT_EVENT_TYPE = "notification.sent"
FAILED_EVENT_TYPE = "notification.failed"


def is_current_attempt(record: NotificationRecord, event: NotificationEvent) -> bool:
    """Whether ``event`` is the attempt the record is waiting for."""
    return not record.status.is_terminal and record.retry_count == event.retry_count


class NotificationDispatcher(BaseService):
    """Deliver notification events through the channel registry.

    Bus handlers never raise: every failure ends up on the record's
    ``error_message`` and the message is acknowledged.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: ChannelRegistry,
        settings: NotificationSettings,
        *,
        bus: MessageBus | None = None,
        webhook_notifier: WebhookNotifier | None = None,
        repository: NotificationRepository | None = None,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._registry = registry
        self._settings = settings
        self._bus = bus
        self._webhook_notifier = webhook_notifier
        self._repository = repository or get_notification_repository()

    def subscribe(self, bus: MessageBus) -> None:
        """Consume the main topic and its dead-letter topic."""
        settings = self._settings
        bus.subscribe(
            settings.topic,
            settings.consumer_group,
            settings.consumer_concurrency,
            self.on_event,
            NotificationEvent,
        )
        bus.subscribe(
            settings.dead_letter_topic,
            f"{settings.consumer_group}-dlq",
            1,
            self.on_dead_letter,
            NotificationEvent,
        )

    async def on_event(self, event: NotificationEvent) -> None:
        """Bus handler for ``notification-events``."""
        with log_context(
            notification_id=str(event.notification_id),
            campaign_id=str(event.campaign_id) if event.campaign_id else None,
        ):
            try:
                await self.process(event)
            except Exception:
                self.logger.exception(
                    "Notification event processing failed",
                    extra={
                        "event_id": str(event.event_id),
                        "retry_count": event.retry_count,
                        "operation": "dispatcher.on_event",
                    },
                )

    async def on_dead_letter(self, event: NotificationEvent) -> None:
        """Bus handler for the dead-letter topic: surface for operators."""
        self.logger.critical(
            "Notification dead-lettered",
            extra={
                "notification_id": str(event.notification_id),
                "campaign_id": str(event.campaign_id) if event.campaign_id else None,
                "beneficiary_id": event.request.beneficiary_id,
                "notification_type": str(event.request.notification_type),
                "retry_count": event.retry_count,
                "max_retries": event.max_retries,
                "operation": "dispatcher.dead_letter",
            },
        )

    async def process(
        self,
        event: NotificationEvent,
        *,
        now: datetime | None = None,
    ) -> NotificationRecord | None:
        """Run one delivery attempt for ``event``.

        Returns:
            The record after the attempt, the unchanged record when the
            event was stale, or None when no record exists.
        """
        async with self._session_factory() as session:
            record = await self._repository.find_by_id(session, event.notification_id)

        if record is None:
            self.logger.info(
                "Notification not found, dropping event",
                extra={"notification_id": str(event.notification_id), "operation": "dispatcher.process"},
            )
            return None

        if not is_current_attempt(record, event):
            notification_stale_event_total.inc()
            self._lazy.debug(
                lambda: f"Stale event for {record.id}: status={record.status} "
                f"record retry_count={record.retry_count} event retry_count={event.retry_count}"
            )
            return record

        request = event.request
        resolved = self._registry.resolve(record.preferred_channel, self._settings.default_channel)
        if resolved is None:
            channel_name = record.preferred_channel or "NONE"
            result = ChannelResult.rejected(f"No channel sender available for {channel_name}")
        else:
            channel, sender = resolved
            channel_name = str(channel)
            start = time.perf_counter()
            try:
                result = await sender.send(request)
            except ChannelError as exc:
                result = ChannelResult(success=False, error_message=exc.detail, permanent=not exc.retryable)
            except Exception as exc:
                self.logger.exception(
                    "Channel sender raised",
                    extra={"channel": channel_name, "operation": "dispatcher.send"},
                )
                result = ChannelResult.transient(f"{type(exc).__name__}: {exc}")
            notification_send_duration_seconds.labels(channel=channel_name).observe(
                time.perf_counter() - start
            )

        async def apply(session: AsyncSession) -> NotificationRecord | None:
            current = await self._repository.find_by_id(session, event.notification_id)
            if current is None or not is_current_attempt(current, event):
                return None
            self._apply_outcome(current, result, channel_name, now or utcnow())
            await self._repository.save(session, current)
            return current

        updated = await run_with_optimistic_retry(
            self._session_factory,
            apply,
            name="notification.dispatch",
            attempts=self._settings.optimistic_lock_attempts,
        )
        if updated is None:
            notification_stale_event_total.inc()
            self.logger.info(
                "Attempt outcome superseded by a concurrent writer",
                extra={"notification_id": str(event.notification_id), "operation": "dispatcher.process"},
            )
            return record

        await self._after_transition(updated)
        return updated

    def _apply_outcome(
        self,
        record: NotificationRecord,
        result: ChannelResult,
        channel_name: str,
        now: datetime,
    ) -> None:
        record.channel = channel_name

        if result.success:
            record.status = NotificationStatus.SENT
            record.sent_at = now
            record.next_retry_at = None
            record.error_message = None
            notification_sent_total.labels(channel=channel_name, outcome="sent").inc()
            self.logger.info(
                "Notification sent",
                extra={
                    "notification_id": str(record.id),
                    "channel": channel_name,
                    "retry_count": record.retry_count,
                    "operation": "dispatcher.sent",
                },
            )
            return

        record.error_message = result.error_message or "Channel send failed"
        fail_fast = result.permanent and self._settings.fail_fast_on_permanent_error
        if not fail_fast:
            record.retry_count = min(record.retry_count + 1, record.max_retries)

        if not fail_fast and record.retry_count < record.max_retries:
            record.status = NotificationStatus.RETRYING
            record.next_retry_at = now + notification_retry_delay(
                record.retry_count,
                base_delay_ms=self._settings.retry_base_delay_ms,
                multiplier=self._settings.retry_multiplier,
            )
            notification_sent_total.labels(channel=channel_name, outcome="retrying").inc()
            self.logger.warning(
                "Notification send failed, retry scheduled",
                extra={
                    "notification_id": str(record.id),
                    "channel": channel_name,
                    "retry_count": record.retry_count,
                    "max_retries": record.max_retries,
                    "next_retry_at": record.next_retry_at.isoformat(),
                    "error": record.error_message,
                    "operation": "dispatcher.retrying",
                },
            )
            return

        record.status = NotificationStatus.FAILED
        record.next_retry_at = None
        notification_sent_total.labels(channel=channel_name, outcome="failed").inc()
        notification_retry_exhausted_total.labels(channel=channel_name).inc()
        self.logger.error(
            "Notification failed",
            extra={
                "notification_id": str(record.id),
                "channel": channel_name,
                "retry_count": record.retry_count,
                "permanent": result.permanent,
                "error": record.error_message,
                "operation": "dispatcher.failed",
            },
        )

    async def _after_transition(self, record: NotificationRecord) -> None:
        """Dead-letter and confirm a committed transition.

        Failures are logged and never undo or mask the transition itself.
        """
        if record.status is NotificationStatus.FAILED and self._settings.forward_to_dead_letter and self._bus:
            try:
                await self._bus.publish(
                    self._settings.dead_letter_topic,
                    NotificationEvent.for_record(record),
                    key=str(record.id),
                )
                notification_dead_lettered_total.inc()
            except Exception:
                self.logger.exception(
                    "Forwarding notification to dead letter topic failed",
                    extra={"notification_id": str(record.id), "operation": "dispatcher.dead_letter"},
                )

        url = self._settings.confirmation_webhook_url
        if url and self._webhook_notifier is not None and record.status.is_terminal:
            event_type = SENT_EVENT_TYPE if record.status.is_success else FAILED_EVENT_TYPE
            try:
                await self._webhook_notifier.publish_webhook_event(
                    notification_id=record.id,
                    webhook_url=str(url),
                    event_type=event_type,
                    payload=confirmation_payload(record, event_type),
                )
            except Exception:
                self.logger.exception(
                    "Confirmation webhook could not be published",
                    extra={
                        "notification_id": str(record.id),
                        "event_type": event_type,
                        "operation": "dispatcher.confirm",
                    },
                )


def confirmation_payload(record: NotificationRecord, event_type: str) -> dict[str, Any]:
    """Body of the delivery confirmation webhook."""
    return {
        "event_type": event_type,
        "notification_id": str(record.id),
        "beneficiary_id": record.beneficiary_id,
        "notification_type": str(record.notification_type),
        "status": str(record.status),
        "channel": record.channel,
        "retry_count": record.retry_count,
        "error_message": record.error_message,
        "sent_at": record.sent_at.isoformat() if record.sent_at else None,
        "campaign_id": str(record.campaign_id) if record.campaign_id else None,
    }
