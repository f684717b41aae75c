"""Composition root: builds the pipeline from settings.

Startup order: database engine and tables, message bus, channel senders,
webhook notifier, dispatcher (subscribed to the bus), intake service,
retry scheduler, campaign orchestrator and progress tracker. ``close``
tears everything down in reverse.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx

from notification_service.core.settings import (
    get_campaign_settings,
    get_channel_settings,
    get_db_settings,
    get_notification_settings,
    get_rabbit_settings,
    get_webhook_settings,
)
from notification_service.features.campaigns.progress import CampaignProgressTracker
from notification_service.features.campaigns.service import CampaignOrchestrator
from notification_service.features.notifications.channels import build_channel_registry
from notification_service.features.notifications.dispatcher import NotificationDispatcher
from notification_service.features.notifications.publisher import NotificationPublisher
from notification_service.features.notifications.retry import NotificationRetryScheduler
from notification_service.features.notifications.service import NotificationService
from notification_service.features.webhooks.service import WebhookNotifier
from notification_service.infra.database import create_engine, create_session_factory, create_tables
from notification_service.infra.messaging import InMemoryMessageBus, notification_topics

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from notification_service.core.settings import (
        CampaignSettings,
        ChannelSettings,
        DatabaseSettings,
        NotificationSettings,
        RabbitSettings,
        WebhookSettings,
    )
    from notification_service.features.campaigns.service import FanOutLauncher
    from notification_service.features.notifications.channels import ChannelRegistry
    from notification_service.infra.messaging import MessageBus

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Every long-lived object of a running notification service."""

    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    bus: MessageBus
    registry: ChannelRegistry
    webhook_notifier: WebhookNotifier
    dispatcher: NotificationDispatcher
    publisher: NotificationPublisher
    notifications: NotificationService
    retry_scheduler: NotificationRetryScheduler
    campaigns: CampaignOrchestrator
    progress_tracker: CampaignProgressTracker
    http_client: httpx.AsyncClient | None = None
    started: bool = field(default=False, init=False)

    async def start(self) -> None:
        """Subscribe the dispatcher and start consuming."""
        if self.started:
            return
        self.dispatcher.subscribe(self.bus)
        await self.bus.start()
        self.started = True
        logger.info("Notification pipeline started", extra={"bus": type(self.bus).__name__})

    async def close(self) -> None:
        await self.campaigns.shutdown()
        await self.bus.close()
        if self.http_client is not None:
            await self.http_client.aclose()
        await self.engine.dispose()
        self.started = False
        logger.info("Notification pipeline stopped")


def build_bus(settings: NotificationSettings, rabbit_settings: RabbitSettings) -> MessageBus:
    """RabbitMQ bus when enabled and configured, in-memory bus otherwise."""
    topics = notification_topics(settings)
    if rabbit_settings.enabled and rabbit_settings.is_configured:
        from notification_service.infra.messaging.rabbit import RabbitMessageBus

        return RabbitMessageBus(rabbit_settings, topics, max_consumers=settings.consumer_concurrency)
    return InMemoryMessageBus(topics, max_redeliveries=settings.max_redeliveries)


async def build_container(
    *,
    db_settings: DatabaseSettings | None = None,
    notification_settings: NotificationSettings | None = None,
    campaign_settings: CampaignSettings | None = None,
    webhook_settings: WebhookSettings | None = None,
    channel_settings: ChannelSettings | None = None,
    rabbit_settings: RabbitSettings | None = None,
    bus: MessageBus | None = None,
    registry: ChannelRegistry | None = None,
    launcher: FanOutLauncher | None = None,
) -> ServiceContainer:
    """Wire the pipeline; settings default to the cached environment loaders."""
    db_settings = db_settings or get_db_settings()
    notification_settings = notification_settings or get_notification_settings()
    campaign_settings = campaign_settings or get_campaign_settings()
    webhook_settings = webhook_settings or get_webhook_settings()
    channel_settings = channel_settings or get_channel_settings()
    rabbit_settings = rabbit_settings or get_rabbit_settings()

    engine = create_engine(db_settings)
    if db_settings.create_tables:
        await create_tables(engine)
    session_factory = create_session_factory(engine)

    http_client: httpx.AsyncClient | None = None
    if registry is None:
        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(channel_settings.timeout_seconds, connect=channel_settings.connect_timeout_seconds)
        )
        registry = build_channel_registry(channel_settings, http_client)

    bus = bus or build_bus(notification_settings, rabbit_settings)
    lock_attempts = notification_settings.optimistic_lock_attempts

    webhook_notifier = WebhookNotifier(
        session_factory,
        webhook_settings,
        optimistic_lock_attempts=lock_attempts,
    )
    dispatcher = NotificationDispatcher(
        session_factory,
        registry,
        notification_settings,
        bus=bus,
        webhook_notifier=webhook_notifier,
    )
    publisher = NotificationPublisher(notification_settings, bus=bus, dispatcher=dispatcher)

    container = ServiceContainer(
        engine=engine,
        session_factory=session_factory,
        bus=bus,
        registry=registry,
        webhook_notifier=webhook_notifier,
        dispatcher=dispatcher,
        publisher=publisher,
        notifications=NotificationService(
            session_factory,
            notification_settings,
            bus=bus,
            dispatcher=dispatcher,
            channels=registry.channels,
        ),
        retry_scheduler=NotificationRetryScheduler(session_factory, notification_settings, publisher),
        campaigns=CampaignOrchestrator(
            session_factory,
            campaign_settings,
            notification_settings,
            publisher,
            launcher=launcher,
        ),
        progress_tracker=CampaignProgressTracker(session_factory, optimistic_lock_attempts=lock_attempts),
        http_client=http_client,
    )
    logger.info(
        "Service container built",
        extra={
            "database": db_settings.url.split("://", 1)[0],
            "bus": type(bus).__name__,
            "channels": sorted(registry.channels),
            "async_enabled": notification_settings.async_enabled,
            "operation": "container.build",
        },
    )
    return container


_container: ServiceContainer | None = None


async def get_container() -> ServiceContainer:
    """Process-wide container, built and started on first use."""
    global _container
    if _container is None:
        _container = await build_container()
        await _container.start()
    return _container


def set_container(container: ServiceContainer | None) -> None:
    """Install (or clear) the process-wide container."""
    global _container
    _container = container


async def close_container() -> None:
    global _container
    if _container is not None:
        await _container.close()
        _container = None
