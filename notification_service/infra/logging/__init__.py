"""Logging infrastructure.

Provides structured logging with:
- JSONL format with OpenTelemetry trace correlation
- Automatic context injection (notification_id, campaign_id, ...)
- QueueHandler + QueueListener for non-blocking I/O
- Lazy evaluation for expensive debug messages

Basic usage:
    from notification_service.infra.logging import set_log_context
    import logging

    logger = logging.getLogger(__name__)

    set_log_context(notification_id="7f0c...", campaign_id="c-1")
    logger.info("Dispatching notification")  # includes both ids

    from notification_service.infra.logging import get_lazy_logger

    lazy_logger = get_lazy_logger(__name__)
    lazy_logger.debug(lambda: f"Event: {event.model_dump_json()}")
"""

from notification_service.infra.logging.config import (
    complete,
    configure_logging,
    setup_logging,
    shutdown,
)
from notification_service.infra.logging.context import (
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    log_context,
    set_log_context,
)
from notification_service.infra.logging.formatters import JSONFormatter
from notification_service.infra.logging.lazy import LazyLoggerAdapter, get_lazy_logger

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "LazyLoggerAdapter",
    "clear_log_context",
    "complete",
    "configure_logging",
    "get_lazy_logger",
    "get_log_context",
    "log_context",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
