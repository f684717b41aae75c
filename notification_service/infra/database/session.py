"""Database engine and session factory management."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from notification_service.core.database import Base

if TYPE_CHECKING:
    from notification_service.core.settings.database import DatabaseSettings

logger = logging.getLogger(__name__)


def create_engine(settings: DatabaseSettings) -> AsyncEngine:
    """Create the async engine for the configured URL."""
    return create_async_engine(settings.url, **settings.sqlalchemy_engine_kwargs())


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by every service.

    ``expire_on_commit=False`` keeps loaded records usable after the
    short transaction that produced them has committed.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create every table registered on ``Base.metadata``."""
    # Register models on the metadata
    import notification_service.features.campaigns.models  # noqa: F401
    import notification_service.features.notifications.models  # noqa: F401
    import notification_service.features.webhooks.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created", extra={"tables": sorted(Base.metadata.tables)})


async def check_database(engine: AsyncEngine) -> None:
    """Round-trip a trivial query, raising if the database is unreachable."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
