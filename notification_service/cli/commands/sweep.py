"""One-shot runs of the periodic sweeps.

Useful for operators and for deployments that drive the sweeps from an
external scheduler instead of the worker's APScheduler jobs.
"""

from collections.abc import Awaitable, Callable
from typing import Any

import click

from notification_service.cli.utils import coro, header, success


async def _run_once(label: str, action: Callable[[Any], Awaitable[Any]]) -> Any:
    from notification_service.app.container import build_container
    from notification_service.infra.messaging import InMemoryMessageBus

    header(label)
    container = await build_container()
    await container.start()
    try:
        result = await action(container)
        if isinstance(container.bus, InMemoryMessageBus):
            await container.bus.join()
    finally:
        await container.close()
    return result


@click.group(name="sweep")
def sweep() -> None:
    """Run a retry, reconciliation or progress sweep once."""


@sweep.command(name="notifications")
@coro
async def notifications() -> None:
    """Re-enqueue due RETRYING notifications."""
    enqueued = await _run_once("Notification retry sweep", lambda c: c.retry_scheduler.sweep())
    success(f"{enqueued} notification attempt(s) enqueued")


@sweep.command(name="orphans")
@coro
async def orphans() -> None:
    """Requeue PENDING notifications that never got an event."""
    requeued = await _run_once("Orphan reconciliation", lambda c: c.retry_scheduler.reconcile_orphans())
    success(f"{requeued} orphaned notification(s) requeued")


@sweep.command(name="webhooks")
@coro
async def webhooks() -> None:
    """Redeliver due pending webhooks."""
    attempted = await _run_once("Webhook retry sweep", lambda c: c.webhook_notifier.retry_pending())
    success(f"{attempted} webhook(s) attempted")


@sweep.command(name="campaigns")
@coro
async def campaigns() -> None:
    """Recount running campaigns."""
    updated = await _run_once("Campaign progress", lambda c: c.progress_tracker.update_all())
    for progress in updated:
        click.echo(
            f"  {progress.campaign_id} {progress.status:<10} "
            f"{progress.progress_percentage:6.2f}% "
            f"({progress.success_count} ok, {progress.failure_count} failed, "
            f"{progress.target_beneficiary_count} target)"
        )
    success(f"{len(updated)} campaign(s) updated")
