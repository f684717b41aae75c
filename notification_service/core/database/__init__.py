"""Core database package: declarative base, mixins, types and repository.

Base Classes and Mixins:
    - Base: Declarative base with constraint naming convention
    - UUIDPKMixin: UUID v4 primary key
    - TimestampMixin: created_at, updated_at tracking
    - TenantMixin: tenant_id column

Types:
    - UTCDateTime: timezone-aware timestamps on PostgreSQL and SQLite
    - StrEnumType: StrEnum stored as its value

Repository:
    - BaseRepository[T]: Generic persistence with explicit session passing

Concurrency:
    - run_with_optimistic_retry: reload-and-reapply on version conflicts
"""

from __future__ import annotations

from .base import Base, TenantMixin, TimestampMixin, UUIDPKMixin, utcnow
from .exceptions import NotFoundError, RepositoryError, StaleRecordError
from .optimistic import run_with_optimistic_retry
from .repository import BaseRepository
from .types import StrEnumType, UTCDateTime

__all__ = [
    "Base",
    "BaseRepository",
    "NotFoundError",
    "RepositoryError",
    "StaleRecordError",
    "StrEnumType",
    "TenantMixin",
    "TimestampMixin",
    "UTCDateTime",
    "UUIDPKMixin",
    "run_with_optimistic_retry",
    "utcnow",
]
