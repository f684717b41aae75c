"""Messaging infrastructure: the publish/subscribe port and its transports.

The RabbitMQ transport lives in ``notification_service.infra.messaging.rabbit``
and is imported only when RabbitMQ is enabled.
"""

from __future__ import annotations

from .bus import EventHandler, MessageBus
from .memory import InMemoryMessageBus
from .topics import TopicConfig, notification_topics

__all__ = [
    "EventHandler",
    "InMemoryMessageBus",
    "MessageBus",
    "TopicConfig",
    "notification_topics",
]
