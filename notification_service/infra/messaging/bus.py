"""Transport-agnostic publish/subscribe port.

The pipeline only depends on ``MessageBus``; deployments plug in the
RabbitMQ implementation and tests use the in-memory one. Both give
at-least-once delivery and keep same-key messages in order.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeAlias

from pydantic import BaseModel

from notification_service.infra.messaging.topics import TopicConfig

EventHandler: TypeAlias = Callable[[Any], Awaitable[None]]


class MessageBus(ABC):
    """Publish/subscribe contract used by the notification pipeline."""

    def __init__(self, topics: Iterable[TopicConfig] = ()) -> None:
        self.topics: dict[str, TopicConfig] = {}
        for topic in topics:
            self.declare(topic)

    def declare(self, topic: TopicConfig) -> None:
        """Register a topic's partitioning and dead-letter routing."""
        self.topics[topic.name] = topic

    def topic(self, name: str) -> TopicConfig:
        """Configuration of ``name``, declaring a single-partition topic if unknown."""
        if name not in self.topics:
            self.declare(TopicConfig(name=name))
        return self.topics[name]

    @abstractmethod
    async def publish(self, topic: str, event: BaseModel, *, key: str | None = None) -> None:
        """Publish ``event`` to ``topic``.

        Args:
            topic: Destination topic.
            event: Pydantic model, serialized as JSON on the wire.
            key: Partitioning key; messages with the same key keep their order.
        """

    @abstractmethod
    def subscribe(
        self,
        topic: str,
        group_id: str,
        concurrency: int,
        handler: EventHandler,
        event_model: type[BaseModel],
    ) -> None:
        """Consume ``topic`` as member of ``group_id``.

        Every group receives every message; within a group each message is
        handled once (at least once on failures). Up to ``concurrency``
        handler calls run at the same time.
        """

    async def start(self) -> None:
        """Connect and start consuming."""

    async def close(self) -> None:
        """Stop consuming and release connections."""
