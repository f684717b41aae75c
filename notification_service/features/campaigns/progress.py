"""Periodic recomputation of campaign progress."""

from __future__ import annotations

from typing import TYPE_CHECKING

from notification_service.core.database import run_with_optimistic_retry, utcnow
from notification_service.core.services.base import BaseService
from notification_service.features.campaigns.repository import (
    CampaignRepository,
    get_campaign_repository,
)
from notification_service.features.campaigns.schemas import CampaignProgress, CampaignStatus
from notification_service.features.campaigns.service import progress_of
from notification_service.features.notifications.repository import (
    NotificationRepository,
    get_notification_repository,
)
from notification_service.features.notifications.schemas import NotificationStatus

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_service.features.campaigns.models import CampaignRecord


def clamp_counts(target: int, success: int, failure: int) -> tuple[int, int]:
    """Bound the counts so that ``success + failure <= target``."""
    success = min(success, target)
    failure = min(failure, target - success)
    return success, failure


class CampaignProgressTracker(BaseService):
    """Count outcomes of each running campaign's own notifications.

    Only records linked through ``campaign_id`` are counted, so campaigns
    running at the same time do not see each other's outcomes. A campaign
    whose counts reach its target becomes COMPLETED.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        repository: CampaignRepository | None = None,
        notification_repository: NotificationRepository | None = None,
        optimistic_lock_attempts: int = 5,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._repository = repository or get_campaign_repository()
        self._notifications = notification_repository or get_notification_repository()
        self._lock_attempts = optimistic_lock_attempts

    async def update_all(self, now: datetime | None = None) -> list[CampaignProgress]:
        """Refresh every ACTIVE or PAUSED campaign."""
        now = now or utcnow()
        async with self._session_factory() as session:
            running = await self._repository.find_running(session)
            campaign_ids = [campaign.id for campaign in running]

        updated: list[CampaignProgress] = []
        for campaign_id in campaign_ids:
            progress = await self.update(campaign_id, now=now)
            if progress is not None:
                updated.append(progress)
        return updated

    async def update(self, campaign_id: UUID, *, now: datetime | None = None) -> CampaignProgress | None:
        """Recount one campaign; None if it is no longer running."""
        now = now or utcnow()

        async def apply(session: AsyncSession) -> CampaignRecord | None:
            campaign = await self._repository.get(session, campaign_id)
            if campaign is None or not campaign.status.is_running:
                return None

            counts = await self._notifications.count_by_campaign_status(session, campaign_id)
            success = counts.get(NotificationStatus.SENT, 0) + counts.get(NotificationStatus.DELIVERED, 0)
            failure = counts.get(NotificationStatus.FAILED, 0) + counts.get(NotificationStatus.BOUNCED, 0)
            target = campaign.target_beneficiary_count
            campaign.success_count, campaign.failure_count = clamp_counts(target, success, failure)

            if target > 0 and campaign.success_count + campaign.failure_count >= target:
                campaign.status = CampaignStatus.COMPLETED
                campaign.completed_at = now
                self.logger.info(
                    "Campaign completed",
                    extra={
                        "campaign_id": str(campaign_id),
                        "success_count": campaign.success_count,
                        "failure_count": campaign.failure_count,
                        "operation": "campaign.progress",
                    },
                )
            return await self._repository.save(session, campaign)

        campaign = await run_with_optimistic_retry(
            self._session_factory,
            apply,
            name="campaign.progress",
            attempts=self._lock_attempts,
        )
        if campaign is None:
            return None

        progress = progress_of(campaign)
        self._lazy.debug(
            lambda: f"campaign {campaign_id}: {progress.progress_percentage}% "
            f"({progress.success_count} ok / {progress.failure_count} failed of {progress.target_beneficiary_count})"
        )
        return progress
