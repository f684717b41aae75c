"""RabbitMQ message bus using FastStream.

Topics map onto RabbitMQ as follows:
- one durable direct exchange carries every main topic, routed by topic name
- one dead-letter exchange carries the dead-letter topics
- each (topic, group) pair is a durable quorum queue, so every consumer
  group sees every message and members of a group share the work
- retention becomes ``x-message-ttl``, replication becomes the quorum
  group size, and queues of topics with a dead-letter topic reject into
  the dead-letter exchange
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from faststream.rabbit import ExchangeType, RabbitBroker, RabbitExchange, RabbitQueue

from notification_service.infra.messaging.bus import EventHandler, MessageBus

if TYPE_CHECKING:
    from collections.abc import Iterable

    from pydantic import BaseModel

    from notification_service.core.settings.rabbit import RabbitSettings
    from notification_service.infra.messaging.topics import TopicConfig

logger = logging.getLogger(__name__)


class RabbitMessageBus(MessageBus):
    """``MessageBus`` backed by a FastStream ``RabbitBroker``."""

    def __init__(
        self,
        settings: RabbitSettings,
        topics: Iterable[TopicConfig] = (),
        *,
        max_consumers: int | None = None,
    ) -> None:
        super().__init__(topics)
        self._settings = settings
        self.broker = RabbitBroker(
            settings.url,
            graceful_timeout=settings.graceful_timeout,
            max_consumers=max_consumers,
            logger=logger,
        )
        self._exchange = RabbitExchange(
            name=settings.exchange_name,
            type=ExchangeType.DIRECT,
            durable=True,
            auto_delete=False,
        )
        self._dead_letter_exchange = RabbitExchange(
            name=settings.dead_letter_exchange,
            type=ExchangeType.DIRECT,
            durable=True,
            auto_delete=False,
        )

    def _is_dead_letter_topic(self, topic: str) -> bool:
        return any(config.dead_letter_topic == topic for config in self.topics.values())

    def _exchange_for(self, topic: str) -> RabbitExchange:
        if self._is_dead_letter_topic(topic):
            return self._dead_letter_exchange
        return self._exchange

    def queue_for(self, topic: str, group_id: str) -> RabbitQueue:
        """Durable quorum queue of ``group_id`` on ``topic``."""
        config = self.topic(topic)
        arguments: dict[str, Any] = {
            "x-queue-type": "quorum",
            "x-quorum-initial-group-size": config.replication_factor,
            "x-message-ttl": int(config.retention.total_seconds() * 1000),
        }
        if config.dead_letter_topic:
            arguments["x-dead-letter-exchange"] = self._settings.dead_letter_exchange
            arguments["x-dead-letter-routing-key"] = config.dead_letter_topic

        return RabbitQueue(
            name=self._settings.get_prefixed_queue(f"{topic}.{group_id}"),
            durable=True,
            auto_delete=False,
            routing_key=topic,
            arguments=arguments,
        )

    async def publish(self, topic: str, event: BaseModel, *, key: str | None = None) -> None:
        await self.broker.publish(
            event.model_dump(mode="json"),
            exchange=self._exchange_for(topic),
            routing_key=topic,
            correlation_id=key,
            persist=True,
        )
        logger.debug(
            "Published message",
            extra={"topic": topic, "key": key, "operation": "bus.publish"},
        )

    def subscribe(
        self,
        topic: str,
        group_id: str,
        concurrency: int,
        handler: EventHandler,
        event_model: type[BaseModel],
    ) -> None:
        queue = self.queue_for(topic, group_id)

        async def consume(body: dict[str, Any]) -> None:
            await handler(event_model.model_validate(body))

        self.broker.subscriber(queue, self._exchange_for(topic))(consume)
        logger.info(
            "Subscribed to topic",
            extra={
                "topic": topic,
                "group_id": group_id,
                "queue": queue.name,
                "concurrency": concurrency,
                "operation": "bus.subscribe",
            },
        )

    async def start(self) -> None:
        await self.broker.start()
        logger.info("RabbitMQ message bus started", extra={"exchange": self._exchange.name})

    async def close(self) -> None:
        await self.broker.close()
        logger.info("RabbitMQ message bus closed")
