"""Optimistic concurrency helpers.

Consumers, retry sweeps and the progress tracker can race on the same
record. Each state transition is written as a function of a fresh session;
when the versioned UPDATE loses (``StaleDataError``) the transaction is
rolled back and the function runs again against freshly loaded state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy.orm.exc import StaleDataError

from notification_service.core.database.exceptions import StaleRecordError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

R = TypeVar("R")


async def run_with_optimistic_retry(
    session_factory: async_sessionmaker[AsyncSession],
    operation: Callable[[AsyncSession], Awaitable[R]],
    *,
    name: str,
    attempts: int = 5,
) -> R:
    """Run ``operation`` in its own transaction, retrying on version conflicts.

    Args:
        session_factory: Factory for new sessions.
        operation: Coroutine function that loads, mutates and returns.
            It must re-read everything it depends on, because it may be
            called more than once.
        name: Operation name for logs and the raised error.
        attempts: Maximum number of attempts.

    Returns:
        Whatever ``operation`` returned on the attempt that committed.

    Raises:
        StaleRecordError: If every attempt lost to a concurrent writer.
    """
    for attempt in range(1, attempts + 1):
        try:
            async with session_factory() as session, session.begin():
                return await operation(session)
        except StaleDataError:
            logger.warning(
                "Optimistic lock conflict, reloading",
                extra={"operation": name, "attempt": attempt, "max_attempts": attempts},
            )
            await asyncio.sleep(0)

    raise StaleRecordError(name, attempts)
