"""Minimal generic repository for SQLAlchemy models.

Provides basic persistence operations with explicit session passing.
For complex queries, use the session directly - this is a convenience, not a cage.

Example:
    class NotificationRepository(BaseRepository[NotificationRecord]):
        async def find_by_idempotency_key(
            self, session: AsyncSession, key: str
        ) -> NotificationRecord | None:
            return await self.get_by(session, NotificationRecord.idempotency_key, key)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import select

from notification_service.core.database.exceptions import NotFoundError
from notification_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.orm import InstrumentedAttribute


T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Minimal generic repository.

    Provides:
        - get(session, id) -> T | None
        - get_or_raise(session, id) -> T (raises NotFoundError)
        - get_by(session, attr, value) -> T | None
        - list(session, limit, offset) -> Sequence[T]
        - save(session, instance) -> T
        - create_many(session, instances) -> Sequence[T]

    Records are never deleted; the tables double as the audit trail.
    """

    __slots__ = ("model", "_logger", "_lazy")

    def __init__(self, model: type[T]) -> None:
        self.model = model
        self._logger = logging.getLogger(f"repository.{model.__name__}")
        self._lazy = get_lazy_logger(f"repository.{model.__name__}")

    async def get(self, session: AsyncSession, id: Any) -> T | None:  # noqa: A002
        """Get entity by primary key."""
        instance = await session.get(self.model, id)
        self._lazy.debug(
            lambda: f"db.get: {self.model.__name__}({id}) -> {'found' if instance else 'not found'}"
        )
        return instance

    async def get_or_raise(self, session: AsyncSession, id: Any) -> T:  # noqa: A002
        """Get entity by primary key or raise NotFoundError.

        Raises:
            NotFoundError: If entity doesn't exist
        """
        instance = await self.get(session, id)
        if instance is None:
            self._logger.info(
                "Entity not found",
                extra={
                    "entity": self.model.__name__,
                    "id": str(id),
                    "operation": "db.get_or_raise",
                },
            )
            raise NotFoundError(self.model.__name__, {"id": id})
        return instance

    async def get_by(
        self,
        session: AsyncSession,
        attr: InstrumentedAttribute[Any],
        value: Any,
    ) -> T | None:
        """Get entity by an attribute expected to be unique."""
        stmt = select(self.model).where(attr == value)
        result = await session.execute(stmt)
        instance = result.scalar_one_or_none()

        self._lazy.debug(
            lambda: f"db.get_by: {self.model.__name__}.{attr.key}={value!r} -> {'found' if instance else 'not found'}"
        )
        return instance

    async def list(
        self,
        session: AsyncSession,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> Sequence[T]:
        """List entities with pagination."""
        stmt = select(self.model).limit(limit).offset(offset)
        result = await session.execute(stmt)
        items = result.scalars().all()

        self._lazy.debug(
            lambda: f"db.list: {self.model.__name__}(limit={limit}, offset={offset}) -> {len(items)} items"
        )
        return items

    async def save(self, session: AsyncSession, instance: T) -> T:
        """Persist a new or modified entity.

        Adds to session and flushes so that generated values (id, version)
        are populated and constraint violations surface immediately.
        """
        session.add(instance)
        await session.flush()

        entity_id = getattr(instance, "id", None)
        self._lazy.debug(lambda: f"db.save: {self.model.__name__}(id={entity_id})")
        return instance

    async def create_many(self, session: AsyncSession, instances: Iterable[T]) -> Sequence[T]:
        """Persist multiple entities in one flush."""
        instances_list = list(instances)
        session.add_all(instances_list)
        await session.flush()

        self._lazy.debug(
            lambda: f"db.create_many: {self.model.__name__} -> {len(instances_list)} created"
        )
        return instances_list
