"""Channel senders for EMAIL, SMS and PUSH delivery."""

from __future__ import annotations

from .base import ChannelResult, ChannelSender, render_text
from .email import EmailChannelSender
from .gateway import HttpGatewaySender
from .registry import ChannelRegistry, build_channel_registry, parse_channel

__all__ = [
    "ChannelRegistry",
    "ChannelResult",
    "ChannelSender",
    "EmailChannelSender",
    "HttpGatewaySender",
    "build_channel_registry",
    "parse_channel",
    "render_text",
]
