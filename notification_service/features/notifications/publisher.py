"""Hand notification attempts over to delivery."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from notification_service.features.notifications.metrics import notification_publish_failed_total

if TYPE_CHECKING:
    from datetime import datetime

    from notification_service.core.settings.notifications import NotificationSettings
    from notification_service.features.notifications.dispatcher import NotificationDispatcher
    from notification_service.features.notifications.events import NotificationEvent
    from notification_service.infra.messaging.bus import MessageBus

logger = logging.getLogger(__name__)


class NotificationPublisher:
    """Publish attempts to the bus in async mode, dispatch them inline otherwise.

    A failed publish is logged and reported as False. The record it
    belongs to is already persisted, so the retry lease or the orphan
    reconciliation sweep brings it back.
    """

    def __init__(
        self,
        settings: NotificationSettings,
        *,
        bus: MessageBus | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ) -> None:
        if settings.async_enabled and bus is None:
            raise ValueError("Async notification mode requires a message bus")
        if not settings.async_enabled and dispatcher is None:
            raise ValueError("Sync notification mode requires a dispatcher")
        self._settings = settings
        self._bus = bus
        self._dispatcher = dispatcher

    @property
    def is_async(self) -> bool:
        return self._settings.async_enabled

    async def enqueue(self, event: NotificationEvent, *, now: datetime | None = None) -> bool:
        """Hand one attempt over; False if it could not be handed over."""
        try:
            if self.is_async:
                assert self._bus is not None
                await self._bus.publish(self._settings.topic, event, key=event.partition_key)
            else:
                assert self._dispatcher is not None
                await self._dispatcher.process(event, now=now)
        except Exception:
            notification_publish_failed_total.inc()
            logger.exception(
                "Handing over notification event failed",
                extra={
                    "notification_id": str(event.notification_id),
                    "retry_count": event.retry_count,
                    "mode": "async" if self.is_async else "sync",
                    "operation": "notification.publish",
                },
            )
            return False
        return True
