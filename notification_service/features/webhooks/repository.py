"""Repository for webhook event records."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func, select

from notification_service.core.database.repository import BaseRepository
from notification_service.features.webhooks.models import WebhookEventRecord
from notification_service.features.webhooks.schemas import WebhookStatus

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession


class WebhookEventRepository(BaseRepository[WebhookEventRecord]):
    """Repository for webhook events."""

    def __init__(self) -> None:
        super().__init__(WebhookEventRecord)

    async def find_ready_for_retry(
        self,
        session: AsyncSession,
        now: datetime,
        *,
        limit: int = 100,
    ) -> Sequence[WebhookEventRecord]:
        """Pending events whose retry time has come and that have budget left."""
        stmt = (
            select(WebhookEventRecord)
            .where(
                WebhookEventRecord.status == WebhookStatus.PENDING,
                WebhookEventRecord.next_retry_at.is_not(None),
                WebhookEventRecord.next_retry_at <= now,
                WebhookEventRecord.retry_count < WebhookEventRecord.max_retries,
            )
            .order_by(WebhookEventRecord.next_retry_at.asc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        items = result.scalars().all()

        self._lazy.debug(lambda: f"find_ready_for_retry -> {len(items)} due")
        return items

    async def find_by_notification(
        self, session: AsyncSession, notification_id: UUID
    ) -> Sequence[WebhookEventRecord]:
        stmt = (
            select(WebhookEventRecord)
            .where(WebhookEventRecord.notification_id == notification_id)
            .order_by(WebhookEventRecord.created_at.asc())
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def count_by_status(self, session: AsyncSession) -> dict[WebhookStatus, int]:
        stmt = select(WebhookEventRecord.status, func.count()).group_by(WebhookEventRecord.status)
        result = await session.execute(stmt)
        return {WebhookStatus(status): count for status, count in result.all()}

    async def count_due(self, session: AsyncSession, now: datetime) -> int:
        stmt = select(func.count()).where(
            WebhookEventRecord.status == WebhookStatus.PENDING,
            WebhookEventRecord.next_retry_at <= now,
        )
        result = await session.execute(stmt)
        return int(result.scalar_one())


_webhook_event_repository: WebhookEventRepository | None = None


def get_webhook_event_repository() -> WebhookEventRepository:
    """Get the shared WebhookEventRepository instance."""
    global _webhook_event_repository
    if _webhook_event_repository is None:
        _webhook_event_repository = WebhookEventRepository()
    return _webhook_event_repository
