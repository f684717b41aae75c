"""Tests for the in-memory message bus."""

from __future__ import annotations

import asyncio

import pytest
from pydantic import BaseModel, ConfigDict

from notification_service.core.settings import NotificationSettings
from notification_service.infra.messaging import InMemoryMessageBus, TopicConfig, notification_topics


class Ping(BaseModel):
    seq: int
    key: str = "k"


class Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str


TOPICS = (
    TopicConfig(name="events", partitions=3, dead_letter_topic="events-dlq"),
    TopicConfig(name="events-dlq"),
)


@pytest.fixture
async def bus():
    bus = InMemoryMessageBus(TOPICS, max_redeliveries=2)
    yield bus
    await bus.close()


async def test_same_key_keeps_order(bus):
    seen: list[int] = []

    async def handler(event: Ping) -> None:
        await asyncio.sleep(0.001 * (event.seq % 3))
        seen.append(event.seq)

    bus.subscribe("events", "group", 4, handler, Ping)
    await bus.start()

    for seq in range(20):
        await bus.publish("events", Ping(seq=seq), key="notification-1")
    await bus.join()

    assert seen == list(range(20))


async def test_every_group_receives_every_message(bus):
    first: list[int] = []
    second: list[int] = []

    async def on_first(event: Ping) -> None:
        first.append(event.seq)

    async def on_second(event: Ping) -> None:
        second.append(event.seq)

    bus.subscribe("events", "dispatcher", 2, on_first, Ping)
    bus.subscribe("events", "auditor", 1, on_second, Ping)
    await bus.start()

    for seq in range(5):
        await bus.publish("events", Ping(seq=seq), key=str(seq))
    await bus.join()

    assert sorted(first) == sorted(second) == list(range(5))


async def test_failed_handler_is_redelivered(bus):
    calls = 0

    async def flaky(event: Ping) -> None:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("transient")

    bus.subscribe("events", "group", 1, flaky, Ping)
    await bus.start()

    await bus.publish("events", Ping(seq=1))
    await bus.join()

    assert calls == 2
    assert bus.messages("events-dlq") == []


async def test_exhausted_redeliveries_go_to_dead_letter(bus):
    calls = 0
    dead: list[Ping] = []

    async def broken(event: Ping) -> None:
        nonlocal calls
        calls += 1
        raise RuntimeError("always")

    async def on_dead(event: Ping) -> None:
        dead.append(event)

    bus.subscribe("events", "group", 1, broken, Ping)
    bus.subscribe("events-dlq", "group-dlq", 1, on_dead, Ping)
    await bus.start()

    await bus.publish("events", Ping(seq=7), key="abc")
    await bus.join()

    assert calls == 3
    assert [event.seq for event in dead] == [7]
    assert len(bus.messages("events-dlq")) == 1


async def test_undecodable_message_goes_to_dead_letter(bus):
    handled: list[Strict] = []

    async def handler(event: Strict) -> None:
        handled.append(event)

    bus.subscribe("events", "group", 1, handler, Strict)
    await bus.start()

    await bus.publish("events", Ping(seq=1))
    await bus.join()

    assert handled == []
    assert len(bus.messages("events-dlq")) == 1


async def test_join_waits_for_messages_published_by_handlers(bus):
    relayed: list[int] = []

    async def relay(event: Ping) -> None:
        await bus.publish("events-dlq", Ping(seq=event.seq + 100))

    async def collect(event: Ping) -> None:
        relayed.append(event.seq)

    bus.subscribe("events", "relay", 1, relay, Ping)
    bus.subscribe("events-dlq", "collector", 1, collect, Ping)
    await bus.start()

    await bus.publish("events", Ping(seq=1))
    await bus.join()

    assert relayed == [101]


def test_notification_topics():
    main, dead_letter = notification_topics(NotificationSettings())

    assert main.name == "notification-events"
    assert main.partitions == 3
    assert main.dead_letter_topic == "notification-events-dlq"
    assert main.retention.days == 7
    assert dead_letter.partitions == 1
    assert dead_letter.retention.days == 30


async def test_message_history_is_bounded():
    bus = InMemoryMessageBus(TOPICS, history_limit=2)

    for seq in range(5):
        await bus.publish("events", Ping(seq=seq))

    assert [Ping.model_validate_json(raw).seq for raw in bus.messages("events")] == [3, 4]
    await bus.close()
