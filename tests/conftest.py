"""Pytest configuration and shared fixtures.

Organization:
    - Settings Fixtures: explicit settings objects, caches cleared per test
    - Database Fixtures: SQLite engine on a temporary file, session factory
    - Channel Fixtures: scripted channel senders and their registry
    - Pipeline Fixtures: message bus and fully wired service containers

Every test runs against a fresh SQLite file so that the unique
idempotency constraint and the versioned updates behave as they do on
PostgreSQL, without external infrastructure.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import pytest

from notification_service.core.exceptions import PermanentChannelError, TransientChannelError
from notification_service.core.settings import (
    CampaignSettings,
    DatabaseSettings,
    NotificationSettings,
    WebhookSettings,
    clear_all_caches,
)
from notification_service.features.notifications.channels import ChannelRegistry, ChannelResult
from notification_service.features.notifications.schemas import (
    AppointmentDetails,
    Channel,
    NotificationRequest,
    NotificationType,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from notification_service.app.container import ServiceContainer

# Ensure tests run without external infrastructure
os.environ.setdefault("RABBIT_ENABLED", "false")
os.environ.setdefault("LOG_FILE_ENABLED", "false")


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Reload settings from the environment in every test."""
    clear_all_caches()
    yield
    clear_all_caches()


@pytest.fixture
def notification_settings() -> NotificationSettings:
    """Inline (sync) delivery with SMS fallback and three retries.

    Variants are derived with ``model_copy(update=...)``.
    """
    return NotificationSettings(
        async_enabled=False,
        default_channel=Channel.SMS,
        max_retries=3,
        max_redeliveries=1,
        confirmation_webhook_url=None,
    )


@pytest.fixture
def campaign_settings() -> CampaignSettings:
    return CampaignSettings(batch_size=100, pause_poll_seconds=0.01)


@pytest.fixture
def webhook_settings() -> WebhookSettings:
    return WebhookSettings(secret="test-secret", max_retries=5)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def db_settings(tmp_path) -> DatabaseSettings:
    return DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path}/notifications.db", create_tables=True)


@pytest.fixture
async def db_engine(db_settings: DatabaseSettings) -> AsyncGenerator[AsyncEngine]:
    """Engine with every table created."""
    from notification_service.infra.database import create_engine, create_tables

    engine = create_engine(db_settings)
    await create_tables(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    from notification_service.infra.database import create_session_factory

    return create_session_factory(db_engine)


# ============================================================================
# Channel Fixtures
# ============================================================================


class ScriptedSender:
    """Channel sender that plays back a script of outcomes.

    Script entries: ``"ok"``, ``"transient"``, ``"permanent"``,
    ``"raise-transient"`` or ``"raise-permanent"``. Once the script is
    exhausted the last entry repeats; an empty script always succeeds.
    """

    def __init__(self, channel: Channel, script: list[str] | None = None) -> None:
        self.channel = channel
        self.script = list(script or [])
        self.calls: list[NotificationRequest] = []

    async def send(self, request: NotificationRequest) -> ChannelResult:
        self.calls.append(request)
        if not self.script:
            return ChannelResult.ok(status_code=200)
        step = self.script[min(len(self.calls), len(self.script)) - 1]
        if step == "ok":
            return ChannelResult.ok(status_code=200)
        if step == "transient":
            return ChannelResult.transient(f"{self.channel} provider unavailable", status_code=503)
        if step == "permanent":
            return ChannelResult.rejected(f"{self.channel} address rejected", status_code=400)
        if step == "raise-transient":
            raise TransientChannelError("connection reset", channel=str(self.channel))
        if step == "raise-permanent":
            raise PermanentChannelError("invalid recipient", channel=str(self.channel))
        raise AssertionError(f"Unknown script step: {step}")


@pytest.fixture
def sms_sender() -> ScriptedSender:
    return ScriptedSender(Channel.SMS)


@pytest.fixture
def email_sender() -> ScriptedSender:
    return ScriptedSender(Channel.EMAIL)


@pytest.fixture
def channel_registry(sms_sender: ScriptedSender, email_sender: ScriptedSender) -> ChannelRegistry:
    return ChannelRegistry([sms_sender, email_sender])


# ============================================================================
# Request Fixtures
# ============================================================================


@pytest.fixture
def appointment() -> AppointmentDetails:
    return AppointmentDetails(
        appointment_id="apt-1001",
        appointment_code="QX7-442",
        appointment_date="2026-11-02",
        appointment_time="09:30",
        beneficiary_name="Sam Doe",
        center_name="North Clinic",
    )


@pytest.fixture
def make_request(appointment: AppointmentDetails) -> Callable[..., NotificationRequest]:
    """Factory for requests; keyword arguments override the defaults."""

    def _make(**overrides: Any) -> NotificationRequest:
        fields: dict[str, Any] = {
            "beneficiary_id": "ben-1",
            "notification_type": NotificationType.APPOINTMENT_CREATED,
            "mobile_number": "+15550100",
            "email": "sam@example.com",
            "appointment": appointment,
        }
        fields.update(overrides)
        return NotificationRequest(**fields)

    return _make


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


# ============================================================================
# Pipeline Fixtures
# ============================================================================


@pytest.fixture
async def make_container(
    db_settings: DatabaseSettings,
    notification_settings: NotificationSettings,
    campaign_settings: CampaignSettings,
    webhook_settings: WebhookSettings,
    channel_registry: ChannelRegistry,
) -> AsyncGenerator[Callable[..., Awaitable[ServiceContainer]]]:
    """Factory for started service containers sharing the test database.

    Keyword arguments are passed to ``build_container`` and override the
    settings fixtures. Every container is closed at teardown.
    """
    from notification_service.app.container import build_container

    built: list[ServiceContainer] = []

    async def _make(**overrides: Any) -> ServiceContainer:
        options: dict[str, Any] = {
            "db_settings": db_settings,
            "notification_settings": notification_settings,
            "campaign_settings": campaign_settings,
            "webhook_settings": webhook_settings,
            "registry": channel_registry,
        }
        options.update(overrides)
        container = await build_container(**options)
        await container.start()
        built.append(container)
        return container

    yield _make

    for container in built:
        await container.close()


@pytest.fixture
async def container(make_container) -> ServiceContainer:
    """Inline-delivery container with the scripted senders."""
    return await make_container()


@pytest.fixture
async def async_container(make_container, notification_settings: NotificationSettings) -> ServiceContainer:
    """Container delivering through the in-memory message bus."""
    return await make_container(notification_settings=notification_settings.model_copy(update={"async_enabled": True}))
