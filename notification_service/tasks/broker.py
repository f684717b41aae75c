"""Taskiq broker configuration for background task processing.

RabbitMQ (taskiq-aio-pika) distributes tasks across worker processes when
``RABBIT_ENABLED`` is set and a broker is configured. Otherwise tasks run
in-process on taskiq's ``InMemoryBroker``, which suits single-process
deployments and tests.

APScheduler decides WHEN a sweep runs; Taskiq decides HOW and WHERE.
"""

from __future__ import annotations

import logging

from taskiq import AsyncBroker, InMemoryBroker, TaskiqEvents, TaskiqState
from taskiq.middlewares import SimpleRetryMiddleware
from taskiq_aio_pika import AioPikaBroker

from notification_service.core.settings import get_rabbit_settings
from notification_service.infra.logging.config import setup_logging

logger = logging.getLogger(__name__)

rabbit_settings = get_rabbit_settings()
setup_logging()


def create_broker() -> AsyncBroker:
    """AioPikaBroker when RabbitMQ is enabled, InMemoryBroker otherwise."""
    if rabbit_settings.enabled and rabbit_settings.is_configured:
        queue_name = rabbit_settings.get_prefixed_queue(rabbit_settings.task_queue)
        logger.info("Taskiq background task broker configured", extra={"queue": queue_name})
        return AioPikaBroker(
            url=rabbit_settings.url,
            queue_name=queue_name,
            declare_exchange=True,
            declare_queues=True,
        ).with_middlewares(SimpleRetryMiddleware(default_retry_count=3))

    logger.info("RabbitMQ not enabled - tasks run on the in-memory broker")
    return InMemoryBroker()


broker: AsyncBroker = create_broker()


@broker.on_event(TaskiqEvents.WORKER_SHUTDOWN)
async def _close_container(state: TaskiqState) -> None:
    from notification_service.app.container import close_container

    _ = state
    await close_container()


def is_distributed() -> bool:
    """Whether tasks leave this process."""
    return not isinstance(broker, InMemoryBroker)
