"""Database engine/session infrastructure."""

from __future__ import annotations

from .session import (
    check_database,
    create_engine,
    create_session_factory,
    create_tables,
)

__all__ = [
    "check_database",
    "create_engine",
    "create_session_factory",
    "create_tables",
]
