"""Notification inspection commands."""

import sys
from uuid import UUID

import click

from notification_service.cli.utils import coro, error, header, info


@click.group(name="notifications")
def notifications() -> None:
    """Inspect stored notifications."""


@notifications.command(name="show")
@click.argument("notification_id")
@coro
async def show(notification_id: str) -> None:
    """Show the delivery state of one notification."""
    try:
        notification_uuid = UUID(notification_id)
    except ValueError:
        error(f"Invalid notification ID format: {notification_id}")
        sys.exit(1)

    from notification_service.app.container import build_container
    from notification_service.core.exceptions import NotFoundException

    container = await build_container()
    try:
        view = await container.notifications.get_notification(notification_uuid)
    except NotFoundException as exc:
        error(exc.detail)
        sys.exit(1)
    finally:
        await container.close()

    header(f"Notification {view.id}")
    click.echo(f"  Beneficiary: {view.beneficiary_id}")
    click.echo(f"  Type: {view.notification_type}")
    click.echo(f"  Status: {view.status}")
    click.echo(f"  Channel: {view.channel or view.preferred_channel}")
    click.echo(f"  Retries: {view.retry_count}/{view.max_retries}")
    if view.next_retry_at:
        click.echo(f"  Next retry: {view.next_retry_at.isoformat()}")
    if view.error_message:
        click.echo(f"  Error: {view.error_message}")


@notifications.command(name="history")
@click.argument("beneficiary_id")
@click.option("--limit", default=20, type=int, help="Maximum notifications to display (default: 20)")
@coro
async def history(beneficiary_id: str, limit: int) -> None:
    """List the notifications of a beneficiary, newest first."""
    from notification_service.app.container import build_container

    container = await build_container()
    try:
        views = await container.notifications.get_notification_history(beneficiary_id, limit=limit)
    finally:
        await container.close()

    if not views:
        info("No notifications found")
        return
    header(f"Notifications of {beneficiary_id}")
    for view in views:
        click.echo(
            f"  {view.created_at:%Y-%m-%d %H:%M:%S}  {view.id}  "
            f"{view.notification_type:<24} {view.status:<9} {view.channel or '-'}"
        )
