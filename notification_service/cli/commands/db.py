"""Database management commands."""

import sys

import click

from notification_service.cli.utils import coro, error, header, info, success


@click.group(name="db")
def db() -> None:
    """Database management commands."""


@db.command(name="init")
@coro
async def init() -> None:
    """Create the notification, campaign and webhook tables."""
    from notification_service.core.settings import get_db_settings
    from notification_service.infra.database import check_database, create_engine, create_tables

    header("Initializing database")
    settings = get_db_settings()
    info(f"Database: {settings.url.split('://', 1)[0]}")

    engine = create_engine(settings)
    try:
        await check_database(engine)
        await create_tables(engine)
    except Exception as exc:
        error(f"Database initialization failed: {exc}")
        sys.exit(1)
    finally:
        await engine.dispose()

    success("Tables created")
