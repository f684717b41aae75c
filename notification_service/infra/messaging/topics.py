"""Topic declarations for the notification pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from notification_service.core.settings.notifications import NotificationSettings


@dataclass(frozen=True, slots=True)
class TopicConfig:
    """Logical topic with its partitioning and retention.

    Attributes:
        name: Topic name, also used as routing key.
        partitions: Number of partitions; same-key messages share one.
        replication_factor: Copies kept by the broker.
        retention: How long messages are kept.
        dead_letter_topic: Where messages a consumer cannot handle end up.
    """

    name: str
    partitions: int = 1
    replication_factor: int = 1
    retention: timedelta = timedelta(days=7)
    dead_letter_topic: str | None = None


def notification_topics(settings: NotificationSettings) -> tuple[TopicConfig, TopicConfig]:
    """Main event topic and its dead-letter topic.

    Defaults: ``notification-events`` with 3 partitions, 2 replicas and
    7-day retention; ``notification-events-dlq`` with 1 partition,
    2 replicas and 30-day retention.
    """
    main = TopicConfig(
        name=settings.topic,
        partitions=settings.topic_partitions,
        replication_factor=settings.topic_replication_factor,
        retention=timedelta(days=settings.topic_retention_days),
        dead_letter_topic=settings.dead_letter_topic,
    )
    dead_letter = TopicConfig(
        name=settings.dead_letter_topic,
        partitions=1,
        replication_factor=settings.topic_replication_factor,
        retention=timedelta(days=settings.dead_letter_retention_days),
    )
    return main, dead_letter
