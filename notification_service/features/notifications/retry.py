"""Retry sweep and orphan reconciliation for notification records.

Both sweeps read persisted state only. A due record is claimed with a
versioned update that leases its ``next_retry_at`` forward, so that
overlapping sweeps (or a second worker process) cannot enqueue the same
attempt twice; the lease expires if the enqueued attempt is lost.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from notification_service.core.database import run_with_optimistic_retry, utcnow
from notification_service.core.services.base import BaseService
from notification_service.features.notifications.events import NotificationEvent
from notification_service.features.notifications.metrics import (
    notification_orphan_requeued_total,
    notification_retry_scheduled_total,
)
from notification_service.features.notifications.repository import (
    NotificationRepository,
    get_notification_repository,
)
from notification_service.features.notifications.schemas import NotificationStatus

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_service.core.settings.notifications import NotificationSettings
    from notification_service.features.notifications.publisher import NotificationPublisher


class NotificationRetryScheduler(BaseService):
    """Re-attempt due RETRYING records and requeue orphaned PENDING ones.

    Claimed attempts go through the NotificationPublisher: onto the bus
    in async mode, straight through the dispatcher in sync mode.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: NotificationSettings,
        publisher: NotificationPublisher,
        *,
        repository: NotificationRepository | None = None,
        batch_limit: int = 500,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._settings = settings
        self._publisher = publisher
        self._repository = repository or get_notification_repository()
        self._batch_limit = batch_limit

    async def sweep(self, now: datetime | None = None) -> int:
        """Enqueue one new attempt for every due RETRYING record.

        Returns:
            Number of attempts enqueued.
        """
        now = now or utcnow()
        async with self._session_factory() as session:
            due = await self._repository.find_ready_for_retry(
                session, NotificationStatus.RETRYING, now, limit=self._batch_limit
            )
            due_ids = [record.id for record in due]

        enqueued = 0
        for notification_id in due_ids:
            event = await self._claim_retry(notification_id, now)
            if event is None:
                continue
            if await self._publisher.enqueue(event, now=now):
                enqueued += 1
                notification_retry_scheduled_total.inc()

        if due_ids:
            self.logger.info(
                "Notification retry sweep finished",
                extra={"due": len(due_ids), "enqueued": enqueued, "operation": "retry.sweep"},
            )
        return enqueued

    async def reconcile_orphans(self, now: datetime | None = None) -> int:
        """Re-publish PENDING records that never got an in-flight event.

        Covers the window between persisting a record and publishing its
        event. Returns the number of records requeued.
        """
        now = now or utcnow()
        threshold = now - timedelta(seconds=self._settings.orphan_threshold_seconds)
        async with self._session_factory() as session:
            stale = await self._repository.find_orphaned_pending(session, threshold, limit=self._batch_limit)
            stale_ids = [record.id for record in stale]

        requeued = 0
        for notification_id in stale_ids:
            event = await self._claim_orphan(notification_id, threshold, now)
            if event is None:
                continue
            if await self._publisher.enqueue(event, now=now):
                requeued += 1
                notification_orphan_requeued_total.inc()

        if stale_ids:
            self.logger.warning(
                "Requeued orphaned PENDING notifications",
                extra={"found": len(stale_ids), "requeued": requeued, "operation": "retry.reconcile_orphans"},
            )
        return requeued

    async def _claim_retry(self, notification_id: UUID, now: datetime) -> NotificationEvent | None:
        lease = timedelta(seconds=self._settings.retry_claim_seconds)

        async def claim(session: AsyncSession) -> NotificationEvent | None:
            record = await self._repository.find_by_id(session, notification_id)
            if (
                record is None
                or record.status is not NotificationStatus.RETRYING
                or record.next_retry_at is None
                or record.next_retry_at > now
                or record.retry_count >= record.max_retries
            ):
                return None
            record.next_retry_at = now + lease
            await self._repository.save(session, record)
            return NotificationEvent.for_record(record)

        return await run_with_optimistic_retry(
            self._session_factory,
            claim,
            name="notification.claim_retry",
            attempts=self._settings.optimistic_lock_attempts,
        )

    async def _claim_orphan(
        self, notification_id: UUID, threshold: datetime, now: datetime
    ) -> NotificationEvent | None:
        async def claim(session: AsyncSession) -> NotificationEvent | None:
            record = await self._repository.find_by_id(session, notification_id)
            if (
                record is None
                or record.status is not NotificationStatus.PENDING
                or record.updated_at >= threshold
            ):
                return None
            record.updated_at = now
            await self._repository.save(session, record)
            return NotificationEvent.for_record(record)

        return await run_with_optimistic_retry(
            self._session_factory,
            claim,
            name="notification.claim_orphan",
            attempts=self._settings.optimistic_lock_attempts,
        )
