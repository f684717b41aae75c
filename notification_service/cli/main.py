"""Main CLI entry point for notification-service management commands."""

import click

from notification_service.cli.commands import db, notifications, sweep, webhooks, worker
from notification_service.infra.logging.config import setup_logging


@click.group()
@click.version_option(version="0.1.0", prog_name="notification-service")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Notification Service CLI - appointment notification pipeline.

    \b
    Command Groups:
      worker         Run consumers and periodic sweeps
      db             Database management
      sweep          One-shot retry / reconciliation / progress sweeps
      notifications  Inspect stored notifications
      webhooks       Webhook signature tools

    \b
    Quick Start:
      notification-service db init
      notification-service worker
      notification-service sweep notifications
    """
    ctx.ensure_object(dict)


cli.add_command(worker.worker)
cli.add_command(db.db)
cli.add_command(sweep.sweep)
cli.add_command(notifications.notifications)
cli.add_command(webhooks.webhooks)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
