"""APScheduler integration for the periodic sweeps.

APScheduler triggers the sweeps on fixed intervals; Taskiq executes them:
    APScheduler (in-process) -> Taskiq kiq() -> broker -> Taskiq worker

Each loop is independent: notification retries every few seconds, webhook
retries every 5 minutes, campaign progress every 30 seconds.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from notification_service.core.settings import (
    get_campaign_settings,
    get_notification_settings,
    get_webhook_settings,
)
from notification_service.tasks.tasks import (
    campaign_progress,
    notification_reconcile_orphans,
    notification_retry_sweep,
    webhook_monitor,
    webhook_retry_sweep,
)

if TYPE_CHECKING:
    from notification_service.core.settings import (
        CampaignSettings,
        NotificationSettings,
        WebhookSettings,
    )

logger = logging.getLogger(__name__)


# APScheduler requires callable functions that properly await Taskiq tasks.


async def _schedule_notification_retry() -> None:
    await notification_retry_sweep.kiq()


async def _schedule_orphan_reconciliation() -> None:
    await notification_reconcile_orphans.kiq()


async def _schedule_webhook_retry() -> None:
    await webhook_retry_sweep.kiq()


async def _schedule_webhook_monitor() -> None:
    await webhook_monitor.kiq()


async def _schedule_campaign_progress() -> None:
    await campaign_progress.kiq()


def create_scheduler(
    notification_settings: NotificationSettings | None = None,
    webhook_settings: WebhookSettings | None = None,
    campaign_settings: CampaignSettings | None = None,
) -> AsyncIOScheduler:
    """Scheduler with one interval job per sweep (not started)."""
    notification_settings = notification_settings or get_notification_settings()
    webhook_settings = webhook_settings or get_webhook_settings()
    campaign_settings = campaign_settings or get_campaign_settings()

    scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,  # Combine multiple pending executions into one
            "max_instances": 1,  # Only one instance of each job at a time
            "misfire_grace_time": 60,
        },
    )

    jobs = [
        ("notification_retry", _schedule_notification_retry, notification_settings.retry_interval_seconds),
        (
            "notification_orphans",
            _schedule_orphan_reconciliation,
            notification_settings.orphan_sweep_interval_seconds,
        ),
        ("webhook_retry", _schedule_webhook_retry, webhook_settings.retry_interval_seconds),
        ("webhook_monitor", _schedule_webhook_monitor, webhook_settings.monitor_interval_seconds),
        ("campaign_progress", _schedule_campaign_progress, campaign_settings.progress_interval_seconds),
    ]
    for job_id, func, seconds in jobs:
        scheduler.add_job(
            func=func,
            trigger=IntervalTrigger(seconds=seconds),
            id=job_id,
            name=job_id.replace("_", " "),
            replace_existing=True,
        )

    logger.info(
        "Scheduled jobs registered",
        extra={"jobs": [job_id for job_id, _, _ in jobs], "operation": "scheduler.setup"},
    )
    return scheduler
