"""Repository for campaign records."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from notification_service.core.database.repository import BaseRepository
from notification_service.features.campaigns.models import CampaignRecord
from notification_service.features.campaigns.schemas import CampaignStatus

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession


class CampaignRepository(BaseRepository[CampaignRecord]):
    """Repository for notification campaigns."""

    def __init__(self) -> None:
        super().__init__(CampaignRecord)

    async def find_for_tenant(
        self, session: AsyncSession, campaign_id: UUID, tenant_id: str | None
    ) -> CampaignRecord | None:
        """Campaign ``campaign_id`` if it belongs to ``tenant_id`` (any tenant when None)."""
        campaign = await self.get(session, campaign_id)
        if campaign is None or (tenant_id is not None and campaign.tenant_id != tenant_id):
            return None
        return campaign

    async def find_running(self, session: AsyncSession) -> Sequence[CampaignRecord]:
        """ACTIVE and PAUSED campaigns."""
        stmt = (
            select(CampaignRecord)
            .where(CampaignRecord.status.in_([CampaignStatus.ACTIVE, CampaignStatus.PAUSED]))
            .order_by(CampaignRecord.started_at.asc())
        )
        result = await session.execute(stmt)
        return result.scalars().all()


_campaign_repository: CampaignRepository | None = None


def get_campaign_repository() -> CampaignRepository:
    """Get the shared CampaignRepository instance."""
    global _campaign_repository
    if _campaign_repository is None:
        _campaign_repository = CampaignRepository()
    return _campaign_repository
