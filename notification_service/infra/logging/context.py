"""Context management for structured logging.

Provides automatic context injection into log records using contextvars,
so that identifiers such as notification_id and campaign_id show up in
every log line emitted while an event or campaign batch is processed.

Each asyncio task gets its own copy of the context, which keeps
concurrent consumer workers from leaking ids into each other's logs.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Set logging context for the current task.

    Example:
        ```python
        set_log_context(notification_id=str(event.notification_id))
        logger.info("Dispatching")  # includes notification_id
        ```
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    """Get a copy of the current logging context."""
    return _log_context.get().copy()


def clear_log_context() -> None:
    """Clear all logging context for the current task."""
    _log_context.set({})


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Bind context for the duration of a block and restore it afterwards.

    Example:
        ```python
        with log_context(campaign_id=str(campaign.id), batch=3):
            await publish_batch(...)
        ```
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    token = _log_context.set(current)
    try:
        yield
    finally:
        _log_context.reset(token)


class ContextInjectingFilter(logging.Filter):
    """Logging filter that injects the contextvars log context into records.

    Applied to the root logger so that every logger benefits.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        context = _log_context.get()
        for key, value in context.items():
            # Don't overwrite existing attributes
            if not hasattr(record, key):
                setattr(record, key, value)
        return True
