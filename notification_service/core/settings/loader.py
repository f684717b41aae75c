"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the
process.

Usage:
    from notification_service.core.settings.loader import get_notification_settings

    settings = get_notification_settings()

Testing:
    In tests, clear the caches to force reload:
    clear_all_caches()

    Or construct settings directly:
    settings = NotificationSettings(async_enabled=False)
"""

from __future__ import annotations

from functools import lru_cache

from .app import AppSettings
from .campaigns import CampaignSettings
from .channels import ChannelSettings
from .database import DatabaseSettings
from .logs import LoggingSettings
from .notifications import NotificationSettings
from .rabbit import RabbitSettings
from .webhooks import WebhookSettings


@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    """Get cached application settings.

    Returns:
        Validated and frozen AppSettings instance.
    """
    return AppSettings()


@lru_cache(maxsize=1)
def get_db_settings() -> DatabaseSettings:
    """Get cached database settings.

    Returns:
        Validated and frozen DatabaseSettings instance.
    """
    return DatabaseSettings()


@lru_cache(maxsize=1)
def get_rabbit_settings() -> RabbitSettings:
    """Get cached RabbitMQ settings.

    Returns:
        Validated and frozen RabbitSettings instance.
    """
    return RabbitSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()


@lru_cache(maxsize=1)
def get_notification_settings() -> NotificationSettings:
    """Get cached notification pipeline settings.

    Returns:
        Validated and frozen NotificationSettings instance.
    """
    return NotificationSettings()


@lru_cache(maxsize=1)
def get_campaign_settings() -> CampaignSettings:
    """Get cached campaign settings.

    Returns:
        Validated and frozen CampaignSettings instance.
    """
    return CampaignSettings()


@lru_cache(maxsize=1)
def get_webhook_settings() -> WebhookSettings:
    """Get cached webhook settings.

    Returns:
        Validated and frozen WebhookSettings instance.
    """
    return WebhookSettings()


@lru_cache(maxsize=1)
def get_channel_settings() -> ChannelSettings:
    """Get cached channel provider settings.

    Returns:
        Validated and frozen ChannelSettings instance.
    """
    return ChannelSettings()


def clear_all_caches() -> None:
    """Clear all settings caches.

    Useful in tests to force settings reload after changing environment.
    """
    get_app_settings.cache_clear()
    get_db_settings.cache_clear()
    get_rabbit_settings.cache_clear()
    get_logging_settings.cache_clear()
    get_notification_settings.cache_clear()
    get_campaign_settings.cache_clear()
    get_webhook_settings.cache_clear()
    get_channel_settings.cache_clear()
