"""Campaign orchestrator: bulk fan-out of notifications in batches."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypeAlias

from notification_service.core.database import run_with_optimistic_retry, utcnow
from notification_service.core.exceptions import InvalidStateTransition, NotFoundException
from notification_service.core.services.base import BaseService
from notification_service.features.campaigns.models import CampaignRecord
from notification_service.features.campaigns.repository import (
    CampaignRepository,
    get_campaign_repository,
)
from notification_service.features.campaigns.schemas import (
    BeneficiaryContact,
    CampaignProgress,
    CampaignStatus,
    CampaignView,
    FanOutJob,
)
from notification_service.features.notifications.channels.registry import parse_channel
from notification_service.features.notifications.events import NotificationEvent
from notification_service.features.notifications.models import NotificationRecord
from notification_service.features.notifications.repository import (
    NotificationRepository,
    get_notification_repository,
)
from notification_service.features.notifications.schemas import NotificationRequest, NotificationType
from notification_service.features.notifications.service import compute_idempotency_key
from notification_service.infra.logging import log_context

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_service.core.settings.campaigns import CampaignSettings
    from notification_service.core.settings.notifications import NotificationSettings
    from notification_service.features.notifications.publisher import NotificationPublisher

FanOutLauncher: TypeAlias = "Callable[[FanOutJob], Awaitable[None]]"


def batched(items: Sequence[str], size: int) -> list[list[str]]:
    """Split ``items`` into consecutive batches of at most ``size``."""
    return [list(items[start : start + size]) for start in range(0, len(items), size)]


class CampaignOrchestrator(BaseService):
    """Create, start, pause and resume campaigns and fan them out.

    ``start_campaign`` returns as soon as the campaign is ACTIVE. The
    fan-out runs elsewhere: on a background task tracked here by default,
    or wherever ``launcher`` sends the FanOutJob (a taskiq task in the
    worker). Before each batch the campaign is re-read; PAUSED waits,
    COMPLETED or FAILED stops. Pausing never recalls published events.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: CampaignSettings,
        notification_settings: NotificationSettings,
        publisher: NotificationPublisher,
        *,
        launcher: FanOutLauncher | None = None,
        repository: CampaignRepository | None = None,
        notification_repository: NotificationRepository | None = None,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._settings = settings
        self._notification_settings = notification_settings
        self._publisher = publisher
        self._launcher = launcher
        self._repository = repository or get_campaign_repository()
        self._notifications = notification_repository or get_notification_repository()
        self._tasks: set[asyncio.Task[list[int]]] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_campaign(
        self,
        tenant_id: str | None,
        name: str,
        notification_type: NotificationType,
        *,
        message: str | None = None,
    ) -> CampaignView:
        """Store a new DRAFT campaign."""
        campaign = CampaignRecord(
            tenant_id=tenant_id,
            name=name,
            notification_type=notification_type,
            message=message,
            status=CampaignStatus.DRAFT,
            target_beneficiary_count=0,
            success_count=0,
            failure_count=0,
        )
        async with self._session_factory() as session, session.begin():
            await self._repository.save(session, campaign)

        self.logger.info(
            "Campaign created",
            extra={"campaign_id": str(campaign.id), "tenant_id": tenant_id, "operation": "campaign.create"},
        )
        return CampaignView.model_validate(campaign)

    async def start_campaign(
        self,
        campaign_id: UUID,
        beneficiary_ids: Iterable[str],
        *,
        tenant_id: str | None = None,
        contacts: Mapping[str, BeneficiaryContact] | None = None,
        now: datetime | None = None,
    ) -> CampaignView:
        """Activate a campaign and launch its fan-out.

        Duplicate beneficiary ids are ignored; the target is the number of
        distinct ids. A campaign without beneficiaries completes at once.

        Raises:
            NotFoundException: If the campaign does not exist.
            InvalidStateTransition: If the campaign was already started.
        """
        ids = list(dict.fromkeys(beneficiary_ids))
        now = now or utcnow()

        async def activate(session: AsyncSession) -> CampaignRecord:
            campaign = await self._get_or_raise(session, campaign_id, tenant_id)
            target = CampaignStatus.ACTIVE if ids else CampaignStatus.COMPLETED
            self._check_transition(campaign, target)
            campaign.status = target
            campaign.started_at = now
            campaign.target_beneficiary_count = len(ids)
            campaign.success_count = 0
            campaign.failure_count = 0
            if not ids:
                campaign.completed_at = now
            return await self._repository.save(session, campaign)

        campaign = await run_with_optimistic_retry(
            self._session_factory,
            activate,
            name="campaign.start",
            attempts=self._notification_settings.optimistic_lock_attempts,
        )
        self.logger.info(
            "Campaign started",
            extra={
                "campaign_id": str(campaign_id),
                "target_beneficiary_count": len(ids),
                "batch_size": self._settings.batch_size,
                "operation": "campaign.start",
            },
        )

        if ids:
            job = FanOutJob(campaign_id=campaign_id, beneficiary_ids=ids, contacts=dict(contacts or {}))
            await self._launch(job)
        return CampaignView.model_validate(campaign)

    async def _launch(self, job: FanOutJob) -> None:
        if self._launcher is not None:
            await self._launcher(job)
            return
        task = asyncio.create_task(self.fan_out(job), name=f"campaign-fan-out:{job.campaign_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_for_fan_outs(self) -> None:
        """Wait for fan-outs launched on background tasks."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float | None = None) -> None:
        """Give running fan-outs ``timeout`` seconds, then cancel the rest.

        A cancelled fan-out can be launched again for the same campaign:
        batches skip beneficiaries that already have a record, and the
        orphan sweep publishes records that were stored but not published.
        """
        if not self._tasks:
            return
        timeout = self._settings.shutdown_grace_seconds if timeout is None else timeout
        _, pending = await asyncio.wait(list(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            self.logger.warning(
                "Cancelled unfinished campaign fan-outs",
                extra={"cancelled": len(pending), "operation": "campaign.shutdown"},
            )

    async def pause_campaign(self, campaign_id: UUID, tenant_id: str | None = None) -> CampaignView:
        """ACTIVE -> PAUSED; stops publication of further batches."""
        return await self._toggle(campaign_id, tenant_id, CampaignStatus.ACTIVE, CampaignStatus.PAUSED)

    async def resume_campaign(self, campaign_id: UUID, tenant_id: str | None = None) -> CampaignView:
        """PAUSED -> ACTIVE."""
        return await self._toggle(campaign_id, tenant_id, CampaignStatus.PAUSED, CampaignStatus.ACTIVE)

    async def _toggle(
        self,
        campaign_id: UUID,
        tenant_id: str | None,
        source: CampaignStatus,
        target: CampaignStatus,
    ) -> CampaignView:
        async def apply(session: AsyncSession) -> CampaignRecord:
            campaign = await self._get_or_raise(session, campaign_id, tenant_id)
            if campaign.status is not source:
                raise InvalidStateTransition(
                    detail=f"Campaign {campaign_id} is {campaign.status}, expected {source}",
                    extra={"campaign_id": str(campaign_id), "from": str(campaign.status), "to": str(target)},
                )
            campaign.status = target
            return await self._repository.save(session, campaign)

        campaign = await run_with_optimistic_retry(
            self._session_factory,
            apply,
            name=f"campaign.{target.lower()}",
            attempts=self._notification_settings.optimistic_lock_attempts,
        )
        self.logger.info(
            "Campaign status changed",
            extra={"campaign_id": str(campaign_id), "status": str(target), "operation": "campaign.toggle"},
        )
        return CampaignView.model_validate(campaign)

    async def get_campaign_progress(self, campaign_id: UUID, tenant_id: str | None = None) -> CampaignProgress:
        """Counts as last recorded by the progress tracker."""
        async with self._session_factory() as session:
            campaign = await self._get_or_raise(session, campaign_id, tenant_id)
        return progress_of(campaign)

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def fan_out(self, job: FanOutJob) -> list[int]:
        """Persist and publish the campaign's notifications batch by batch.

        Returns:
            Sizes of the batches that were processed.
        """
        sizes: list[int] = []
        with log_context(campaign_id=str(job.campaign_id)):
            try:
                async with self._session_factory() as session:
                    campaign = await self._repository.get(session, job.campaign_id)
                if campaign is None:
                    self.logger.warning(
                        "Campaign vanished before fan-out",
                        extra={"operation": "campaign.fan_out"},
                    )
                    return sizes

                for index, batch in enumerate(batched(job.beneficiary_ids, self._settings.batch_size)):
                    status = await self._wait_while_paused(job.campaign_id)
                    if status is not CampaignStatus.ACTIVE:
                        self.logger.info(
                            "Campaign no longer active, stopping fan-out",
                            extra={"status": str(status), "batch": index, "operation": "campaign.fan_out"},
                        )
                        break

                    records = await self._persist_batch(campaign, batch, job.contacts)
                    for record in records:
                        await self._publisher.enqueue(NotificationEvent.for_record(record))
                    sizes.append(len(batch))
                    self._lazy.debug(lambda: f"campaign batch {index}: {len(batch)} ids, {len(records)} new")
            except Exception as exc:
                self.logger.exception(
                    "Campaign fan-out failed",
                    extra={"batches_done": len(sizes), "operation": "campaign.fan_out"},
                )
                await self._mark_failed(job.campaign_id, exc)
                return sizes

            self.logger.info(
                "Campaign fan-out finished",
                extra={"batches": len(sizes), "batch_sizes": sizes, "operation": "campaign.fan_out"},
            )
        return sizes

    async def _wait_while_paused(self, campaign_id: UUID) -> CampaignStatus | None:
        while True:
            async with self._session_factory() as session:
                campaign = await self._repository.get(session, campaign_id)
            if campaign is None:
                return None
            if campaign.status is not CampaignStatus.PAUSED:
                return campaign.status
            await asyncio.sleep(self._settings.pause_poll_seconds)

    async def _persist_batch(
        self,
        campaign: CampaignRecord,
        batch: Sequence[str],
        contacts: Mapping[str, BeneficiaryContact],
    ) -> list[NotificationRecord]:
        keys = {
            beneficiary_id: compute_idempotency_key(beneficiary_id, str(campaign.notification_type), str(campaign.id))
            for beneficiary_id in batch
        }
        async with self._session_factory() as session, session.begin():
            existing = await self._notifications.find_existing_keys(session, list(keys.values()))
            records = [
                self._build_record(campaign, beneficiary_id, key, contacts.get(beneficiary_id))
                for beneficiary_id, key in keys.items()
                if key not in existing
            ]
            await self._notifications.create_many(session, records)
        return records

    def _build_record(
        self,
        campaign: CampaignRecord,
        beneficiary_id: str,
        key: str,
        contact: BeneficiaryContact | None,
    ) -> NotificationRecord:
        contact = contact or BeneficiaryContact()
        request = NotificationRequest(
            beneficiary_id=beneficiary_id,
            notification_type=campaign.notification_type,
            message=campaign.message,
            **contact.model_dump(),
        )
        channel = parse_channel(contact.preferred_channel) or self._notification_settings.default_channel
        return NotificationRecord.from_request(
            request,
            idempotency_key=key,
            preferred_channel=str(channel) if channel else None,
            max_retries=self._notification_settings.max_retries,
            campaign_id=campaign.id,
        )

    async def _mark_failed(self, campaign_id: UUID, exc: Exception) -> None:
        async def apply(session: AsyncSession) -> None:
            campaign = await self._repository.get(session, campaign_id)
            if campaign is None or not campaign.status.can_transition_to(CampaignStatus.FAILED):
                return
            campaign.status = CampaignStatus.FAILED
            campaign.completed_at = utcnow()
            await self._repository.save(session, campaign)

        await run_with_optimistic_retry(
            self._session_factory,
            apply,
            name="campaign.fail",
            attempts=self._notification_settings.optimistic_lock_attempts,
        )
        self.logger.error(
            "Campaign marked FAILED",
            extra={"campaign_id": str(campaign_id), "error": str(exc), "operation": "campaign.fail"},
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_or_raise(self, session: AsyncSession, campaign_id: UUID, tenant_id: str | None) -> CampaignRecord:
        campaign = await self._repository.find_for_tenant(session, campaign_id, tenant_id)
        if campaign is None:
            raise NotFoundException(
                detail=f"Campaign {campaign_id} not found",
                type="campaign-not-found",
                extra={"campaign_id": str(campaign_id)},
            )
        return campaign

    @staticmethod
    def _check_transition(campaign: CampaignRecord, target: CampaignStatus) -> None:
        if not campaign.status.can_transition_to(target):
            raise InvalidStateTransition(
                detail=f"Campaign {campaign.id} is {campaign.status} and cannot become {target}",
                extra={"campaign_id": str(campaign.id), "from": str(campaign.status), "to": str(target)},
            )


def progress_of(campaign: CampaignRecord) -> CampaignProgress:
    return CampaignProgress(
        campaign_id=campaign.id,
        name=campaign.name,
        status=campaign.status,
        target_beneficiary_count=campaign.target_beneficiary_count,
        success_count=campaign.success_count,
        failure_count=campaign.failure_count,
        started_at=campaign.started_at,
        completed_at=campaign.completed_at,
    )
