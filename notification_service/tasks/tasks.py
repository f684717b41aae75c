"""Background tasks of the notification pipeline.

Every task resolves the process-wide ServiceContainer, so a taskiq worker
process builds its own pipeline on first use.
"""

from __future__ import annotations

import logging
from typing import Any

from notification_service.app.container import get_container
from notification_service.features.campaigns.schemas import CampaignStatus, FanOutJob
from notification_service.tasks.broker import broker

logger = logging.getLogger(__name__)


@broker.task(task_name="notifications.retry_sweep")
async def notification_retry_sweep() -> dict[str, Any]:
    """Re-enqueue due RETRYING notifications.

    Scheduled: every NOTIFICATION_RETRY_INTERVAL_SECONDS (5 s).
    """
    container = await get_container()
    enqueued = await container.retry_scheduler.sweep()
    return {"status": "success", "enqueued": enqueued}


@broker.task(task_name="notifications.reconcile_orphans")
async def notification_reconcile_orphans() -> dict[str, Any]:
    """Requeue PENDING notifications that never got an event.

    Scheduled: every NOTIFICATION_ORPHAN_SWEEP_INTERVAL_SECONDS (60 s).
    """
    container = await get_container()
    requeued = await container.retry_scheduler.reconcile_orphans()
    return {"status": "success", "requeued": requeued}


@broker.task(task_name="webhooks.retry_pending")
async def webhook_retry_sweep() -> dict[str, Any]:
    """Redeliver due pending webhooks.

    Scheduled: every WEBHOOK_RETRY_INTERVAL_SECONDS (5 min).
    """
    container = await get_container()
    attempted = await container.webhook_notifier.retry_pending()
    return {"status": "success", "attempted": attempted}


@broker.task(task_name="webhooks.monitor")
async def webhook_monitor() -> dict[str, Any]:
    """Report pending and failed webhooks.

    Scheduled: every WEBHOOK_MONITOR_INTERVAL_SECONDS (10 min).
    """
    container = await get_container()
    stats = await container.webhook_notifier.monitor()
    return {"status": "success", **stats.model_dump()}


@broker.task(task_name="campaigns.update_progress")
async def campaign_progress() -> dict[str, Any]:
    """Recount running campaigns and complete finished ones.

    Scheduled: every CAMPAIGN_PROGRESS_INTERVAL_SECONDS (30 s).
    """
    container = await get_container()
    updated = await container.progress_tracker.update_all()
    completed = sum(1 for progress in updated if progress.status is CampaignStatus.COMPLETED)
    return {"status": "success", "updated": len(updated), "completed": completed}


@broker.task(task_name="campaigns.fan_out")
async def campaign_fan_out(job: dict[str, Any]) -> dict[str, Any]:
    """Persist and publish the notifications of a started campaign."""
    fan_out_job = FanOutJob.model_validate(job)
    container = await get_container()
    sizes = await container.campaigns.fan_out(fan_out_job)
    logger.info(
        "Campaign fan-out task finished",
        extra={"campaign_id": str(fan_out_job.campaign_id), "batches": len(sizes)},
    )
    return {"status": "success", "campaign_id": str(fan_out_job.campaign_id), "batch_sizes": sizes}


async def enqueue_fan_out(job: FanOutJob) -> None:
    """Fan-out launcher that hands the job to a taskiq worker."""
    await campaign_fan_out.kiq(job.model_dump(mode="json"))
