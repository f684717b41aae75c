"""In-memory message bus for tests, local runs and single-process deployments.

Each subscription owns one asyncio queue per topic partition. A partition
is drained by a single worker task, which keeps same-key messages in
order; a semaphore caps concurrent handler calls at the subscription's
concurrency. Messages travel as JSON so that events are validated exactly
as they would be on a real broker.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import zlib
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pydantic import BaseModel, ValidationError

from notification_service.infra.messaging.bus import EventHandler, MessageBus

if TYPE_CHECKING:
    from collections.abc import Iterable

    from notification_service.infra.messaging.topics import TopicConfig

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Envelope:
    payload: str
    key: str | None


@dataclass(slots=True)
class _Subscription:
    topic: str
    group_id: str
    handler: EventHandler
    event_model: type[BaseModel]
    semaphore: asyncio.Semaphore
    partitions: list[asyncio.Queue[_Envelope]]
    tasks: list[asyncio.Task[None]] = field(default_factory=list)


class InMemoryMessageBus(MessageBus):
    """At-least-once bus backed by asyncio queues.

    A handler that raises is called again with the same message up to
    ``max_redeliveries`` times; after that the raw message is routed to
    the topic's dead-letter topic. The most recent ``history_limit``
    messages of each topic are kept for inspection (``messages(topic)``).
    """

    def __init__(
        self,
        topics: Iterable[TopicConfig] = (),
        *,
        max_redeliveries: int = 3,
        history_limit: int = 1000,
    ) -> None:
        super().__init__(topics)
        self.max_redeliveries = max_redeliveries
        self._subscriptions: dict[str, list[_Subscription]] = defaultdict(list)
        self._log: dict[str, deque[str]] = defaultdict(lambda: deque(maxlen=history_limit))
        self._round_robin: dict[str, itertools.count[int]] = defaultdict(itertools.count)
        self._unfinished = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._started = False

    async def publish(self, topic: str, event: BaseModel, *, key: str | None = None) -> None:
        await self._publish_raw(topic, event.model_dump_json(), key)

    async def _publish_raw(self, topic: str, payload: str, key: str | None) -> None:
        config = self.topic(topic)
        self._log[topic].append(payload)

        if key is None:
            partition = next(self._round_robin[topic]) % config.partitions
        else:
            partition = zlib.crc32(key.encode()) % config.partitions

        for subscription in self._subscriptions.get(topic, []):
            self._unfinished += 1
            self._idle.clear()
            await subscription.partitions[partition].put(_Envelope(payload=payload, key=key))

    def subscribe(
        self,
        topic: str,
        group_id: str,
        concurrency: int,
        handler: EventHandler,
        event_model: type[BaseModel],
    ) -> None:
        config = self.topic(topic)
        subscription = _Subscription(
            topic=topic,
            group_id=group_id,
            handler=handler,
            event_model=event_model,
            semaphore=asyncio.Semaphore(max(concurrency, 1)),
            partitions=[asyncio.Queue() for _ in range(config.partitions)],
        )
        self._subscriptions[topic].append(subscription)
        if self._started:
            self._spawn_workers(subscription)

        logger.info(
            "Subscribed to topic",
            extra={
                "topic": topic,
                "group_id": group_id,
                "concurrency": concurrency,
                "partitions": config.partitions,
                "operation": "bus.subscribe",
            },
        )

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        for subscriptions in self._subscriptions.values():
            for subscription in subscriptions:
                self._spawn_workers(subscription)

    async def close(self) -> None:
        self._started = False
        tasks = [
            task
            for subscriptions in self._subscriptions.values()
            for subscription in subscriptions
            for task in subscription.tasks
        ]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for subscriptions in self._subscriptions.values():
            for subscription in subscriptions:
                subscription.tasks.clear()

    async def join(self) -> None:
        """Wait until every published message has been handled.

        Includes messages published by handlers while draining.
        """
        await self._idle.wait()

    def messages(self, topic: str) -> list[str]:
        """Most recent raw JSON payloads published to ``topic``."""
        return list(self._log.get(topic, []))

    def _spawn_workers(self, subscription: _Subscription) -> None:
        for index, queue in enumerate(subscription.partitions):
            task = asyncio.create_task(
                self._drain(subscription, queue),
                name=f"bus:{subscription.topic}:{subscription.group_id}:{index}",
            )
            subscription.tasks.append(task)

    async def _drain(self, subscription: _Subscription, queue: asyncio.Queue[_Envelope]) -> None:
        while True:
            envelope = await queue.get()
            try:
                async with subscription.semaphore:
                    await self._deliver(subscription, envelope)
            finally:
                queue.task_done()
                self._unfinished -= 1
                if self._unfinished == 0:
                    self._idle.set()

    async def _deliver(self, subscription: _Subscription, envelope: _Envelope) -> None:
        try:
            event = subscription.event_model.model_validate_json(envelope.payload)
        except ValidationError:
            logger.exception(
                "Undecodable message, dead-lettering",
                extra={"topic": subscription.topic, "operation": "bus.deliver"},
            )
            await self._dead_letter(subscription, envelope)
            return

        for attempt in range(self.max_redeliveries + 1):
            try:
                await subscription.handler(event)
                return
            except Exception:
                logger.exception(
                    "Handler failed",
                    extra={
                        "topic": subscription.topic,
                        "group_id": subscription.group_id,
                        "attempt": attempt + 1,
                        "operation": "bus.deliver",
                    },
                )
        await self._dead_letter(subscription, envelope)

    async def _dead_letter(self, subscription: _Subscription, envelope: _Envelope) -> None:
        dead_letter_topic = self.topic(subscription.topic).dead_letter_topic
        if dead_letter_topic is None:
            logger.error(
                "Dropping message without dead-letter topic",
                extra={"topic": subscription.topic, "operation": "bus.dead_letter"},
            )
            return
        await self._publish_raw(dead_letter_topic, envelope.payload, envelope.key)
