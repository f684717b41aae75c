"""Repository for notification records."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func, select

from notification_service.core.database.repository import BaseRepository
from notification_service.features.notifications.models import NotificationRecord
from notification_service.features.notifications.schemas import NotificationStatus

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession


class NotificationRepository(BaseRepository[NotificationRecord]):
    """Store contract of the notification pipeline.

    Inherits from BaseRepository:
        - get(session, id) -> NotificationRecord | None
        - save(session, instance) -> NotificationRecord
        - create_many(session, instances) -> Sequence[NotificationRecord]

    Feature-specific queries below.
    """

    def __init__(self) -> None:
        super().__init__(NotificationRecord)

    async def find_by_id(self, session: AsyncSession, notification_id: UUID) -> NotificationRecord | None:
        return await self.get(session, notification_id)

    async def find_by_idempotency_key(
        self, session: AsyncSession, idempotency_key: str
    ) -> NotificationRecord | None:
        return await self.get_by(session, NotificationRecord.idempotency_key, idempotency_key)

    async def find_ready_for_retry(
        self,
        session: AsyncSession,
        status: NotificationStatus,
        now: datetime,
        *,
        limit: int = 500,
    ) -> Sequence[NotificationRecord]:
        """Records in ``status`` whose backoff window has elapsed.

        Only records that still have retry budget are returned, oldest
        due first.
        """
        stmt = (
            select(NotificationRecord)
            .where(
                NotificationRecord.status == status,
                NotificationRecord.next_retry_at.is_not(None),
                NotificationRecord.next_retry_at <= now,
                NotificationRecord.retry_count < NotificationRecord.max_retries,
            )
            .order_by(NotificationRecord.next_retry_at.asc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        items = result.scalars().all()

        self._lazy.debug(lambda: f"find_ready_for_retry({status}) -> {len(items)} due")
        return items

    async def find_by_campaign(
        self,
        session: AsyncSession,
        campaign_id: UUID,
        *,
        limit: int | None = None,
    ) -> Sequence[NotificationRecord]:
        stmt = (
            select(NotificationRecord)
            .where(NotificationRecord.campaign_id == campaign_id)
            .order_by(NotificationRecord.created_at.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await session.execute(stmt)
        return result.scalars().all()

    async def count_by_campaign_status(
        self, session: AsyncSession, campaign_id: UUID
    ) -> dict[NotificationStatus, int]:
        """Number of records per status among those linked to ``campaign_id``."""
        stmt = (
            select(NotificationRecord.status, func.count())
            .where(NotificationRecord.campaign_id == campaign_id)
            .group_by(NotificationRecord.status)
        )
        result = await session.execute(stmt)
        return {NotificationStatus(status): count for status, count in result.all()}

    async def find_existing_keys(self, session: AsyncSession, keys: Sequence[str]) -> set[str]:
        """Subset of ``keys`` that already belong to a record."""
        if not keys:
            return set()
        stmt = select(NotificationRecord.idempotency_key).where(NotificationRecord.idempotency_key.in_(keys))
        result = await session.execute(stmt)
        return set(result.scalars().all())

    async def find_by_beneficiary(
        self,
        session: AsyncSession,
        beneficiary_id: str,
        *,
        limit: int = 100,
    ) -> Sequence[NotificationRecord]:
        """Notification history of a beneficiary, newest first."""
        stmt = (
            select(NotificationRecord)
            .where(NotificationRecord.beneficiary_id == beneficiary_id)
            .order_by(NotificationRecord.created_at.desc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def find_orphaned_pending(
        self,
        session: AsyncSession,
        created_before: datetime,
        *,
        limit: int = 500,
    ) -> Sequence[NotificationRecord]:
        """PENDING records created before ``created_before`` and never attempted."""
        stmt = (
            select(NotificationRecord)
            .where(
                NotificationRecord.status == NotificationStatus.PENDING,
                NotificationRecord.created_at < created_before,
                NotificationRecord.updated_at < created_before,
            )
            .order_by(NotificationRecord.created_at.asc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return result.scalars().all()


_notification_repository: NotificationRepository | None = None


def get_notification_repository() -> NotificationRepository:
    """Get the shared NotificationRepository instance."""
    global _notification_repository
    if _notification_repository is None:
        _notification_repository = NotificationRepository()
    return _notification_repository
