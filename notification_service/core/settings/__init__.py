"""Modular Pydantic Settings v2 configuration.

One frozen settings model per domain, each read from environment
variables with its own prefix (APP_, DB_, RABBIT_, LOG_, NOTIFICATION_,
CAMPAIGN_, WEBHOOK_, CHANNEL_) and an optional .env file.

Import settings via cached loaders:
    from notification_service.core.settings import get_notification_settings
"""

from __future__ import annotations

from .app import AppSettings
from .campaigns import CampaignSettings
from .channels import ChannelSettings
from .database import DatabaseSettings
from .loader import (
    clear_all_caches,
    get_app_settings,
    get_campaign_settings,
    get_channel_settings,
    get_db_settings,
    get_logging_settings,
    get_notification_settings,
    get_rabbit_settings,
    get_webhook_settings,
)
from .logs import LoggingSettings
from .notifications import NotificationSettings
from .rabbit import RabbitSettings
from .webhooks import WebhookSettings

__all__ = [
    "AppSettings",
    "CampaignSettings",
    "ChannelSettings",
    "DatabaseSettings",
    "LoggingSettings",
    "NotificationSettings",
    "RabbitSettings",
    "WebhookSettings",
    "clear_all_caches",
    "get_app_settings",
    "get_campaign_settings",
    "get_channel_settings",
    "get_db_settings",
    "get_logging_settings",
    "get_notification_settings",
    "get_rabbit_settings",
    "get_webhook_settings",
]
