"""Declarative base and composable mixins for notification models.

Models combine the mixins they need:

    class WebhookEventRecord(Base, UUIDPKMixin, TimestampMixin):
        __tablename__ = "webhook_events"
        version: Mapped[int] = mapped_column(Integer, nullable=False)
        __mapper_args__ = {"version_id_col": version}

Every mutable record carries an integer ``version`` column registered as
SQLAlchemy's ``version_id_col``. The ORM adds ``WHERE version = :old`` to
each UPDATE and raises ``StaleDataError`` when no row matched, which is the
compare-and-swap that ``run_with_optimistic_retry`` builds on.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import MetaData, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from notification_service.core.database.types import UTCDateTime

# Consistent naming convention for database constraints
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Declarative base with consistent constraint naming."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class UUIDPKMixin:
    """UUID v4 primary key.

    Opaque, non-enumerable identifiers that are safe to put on the bus
    and in webhook payloads.
    """

    __allow_unmapped__ = True

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
        comment="UUID v4 primary key",
    )


class TimestampMixin:
    """Timestamp tracking for create and update operations.

    Provides:
        created_at: Timestamp of record creation (immutable)
        updated_at: Timestamp of last modification (auto-updates)
    """

    __allow_unmapped__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False,
        comment="Timestamp of record creation",
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="Timestamp of last update",
    )


class TenantMixin:
    """Tenant association for campaign-scoped data.

    Provides:
        tenant_id: String column (indexed for performance)
    """

    __allow_unmapped__ = True

    tenant_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Tenant ID for multi-tenant isolation",
    )
