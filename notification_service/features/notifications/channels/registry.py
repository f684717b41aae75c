"""Channel sender registry with default-channel fallback."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from notification_service.features.notifications.channels.email import EmailChannelSender
from notification_service.features.notifications.channels.gateway import HttpGatewaySender
from notification_service.features.notifications.schemas import Channel

if TYPE_CHECKING:
    from collections.abc import Iterable

    from notification_service.core.settings.channels import ChannelSettings
    from notification_service.features.notifications.channels.base import ChannelSender

logger = logging.getLogger(__name__)


def parse_channel(value: str | Channel | None) -> Channel | None:
    """Parse a channel name, returning None for unknown or empty values."""
    if value is None:
        return None
    try:
        return Channel(str(value).strip().upper())
    except ValueError:
        return None


class ChannelRegistry:
    """Maps channels to their senders."""

    def __init__(self, senders: Iterable[ChannelSender] = ()) -> None:
        self._senders: dict[Channel, ChannelSender] = {}
        for sender in senders:
            self.register(sender)

    def register(self, sender: ChannelSender) -> None:
        self._senders[sender.channel] = sender

    def get(self, channel: Channel) -> ChannelSender | None:
        return self._senders.get(channel)

    def resolve(
        self, preferred: str | Channel | None, default: Channel | None
    ) -> tuple[Channel, ChannelSender] | None:
        """Sender for the preferred channel, falling back to ``default``."""
        for candidate in (parse_channel(preferred), default):
            if candidate is not None and candidate in self._senders:
                return candidate, self._senders[candidate]
        return None

    @property
    def channels(self) -> frozenset[Channel]:
        return frozenset(self._senders)


def build_channel_registry(
    settings: ChannelSettings,
    client: httpx.AsyncClient | None = None,
) -> ChannelRegistry:
    """Register a sender for every channel whose provider is configured."""
    registry = ChannelRegistry()
    timeout = httpx.Timeout(settings.timeout_seconds, connect=settings.connect_timeout_seconds)

    if settings.smtp_host:
        registry.register(EmailChannelSender(settings))
    if settings.sms_gateway_url:
        registry.register(
            HttpGatewaySender(
                Channel.SMS,
                settings.sms_gateway_url,
                token=settings.sms_gateway_token.get_secret_value() if settings.sms_gateway_token else None,
                client=client,
                timeout=timeout,
            )
        )
    if settings.push_gateway_url:
        registry.register(
            HttpGatewaySender(
                Channel.PUSH,
                settings.push_gateway_url,
                token=settings.push_gateway_token.get_secret_value() if settings.push_gateway_token else None,
                client=client,
                timeout=timeout,
            )
        )

    logger.info(
        "Channel senders registered",
        extra={"channels": sorted(registry.channels), "operation": "channels.build"},
    )
    return registry
