"""Tests for channel senders and the channel registry."""

from __future__ import annotations

import json

import aiosmtplib
import httpx
import pytest

from notification_service.core.settings import ChannelSettings
from notification_service.features.notifications.channels import (
    ChannelRegistry,
    EmailChannelSender,
    HttpGatewaySender,
    build_channel_registry,
    parse_channel,
    render_text,
)
from notification_service.features.notifications.schemas import Channel


def _gateway(handler, channel: Channel = Channel.SMS, token: str | None = None) -> HttpGatewaySender:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpGatewaySender(channel, "https://sms.test/send", token=token, client=client)


class TestHttpGatewaySender:
    async def test_success_posts_json(self, make_request):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202, json={"id": "msg-1"})

        result = await _gateway(handler, token="tok").send(make_request())

        assert result.success is True
        assert result.status_code == 202
        body = json.loads(seen[0].content)
        assert body["to"] == "+15550100"
        assert body["notification_type"] == "APPOINTMENT_CREATED"
        assert body["data"]["appointment_id"] == "apt-1001"
        assert seen[0].headers["Authorization"] == "Bearer tok"

    @pytest.mark.parametrize(
        ("status_code", "permanent"),
        [(400, True), (404, True), (408, False), (429, False), (500, False), (503, False)],
    )
    async def test_status_mapping(self, make_request, status_code, permanent):
        result = await _gateway(lambda request: httpx.Response(status_code)).send(make_request())

        assert result.success is False
        assert result.permanent is permanent
        assert result.status_code == status_code
        assert result.error_message == f"SMS gateway returned HTTP {status_code}"

    async def test_timeout_is_transient(self, make_request):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        result = await _gateway(handler).send(make_request())

        assert result.success is False
        assert result.permanent is False
        assert result.error_message == "SMS gateway timed out"

    async def test_connection_error_is_transient(self, make_request):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = await _gateway(handler).send(make_request())

        assert result.permanent is False
        assert result.error_message.startswith("SMS gateway unreachable")

    async def test_missing_address_is_rejected(self, make_request):
        result = await _gateway(lambda request: httpx.Response(200), channel=Channel.PUSH).send(make_request())

        assert result.permanent is True
        assert result.error_message == "No PUSH address for beneficiary"


class TestEmailChannelSender:
    @pytest.fixture
    def sender(self) -> EmailChannelSender:
        return EmailChannelSender(ChannelSettings(smtp_host="smtp.test", email_from="noreply@clinic.test"))

    async def test_sends_rendered_message(self, sender, make_request, monkeypatch):
        sent = []

        async def fake_send(message, **kwargs):
            sent.append((message, kwargs))

        monkeypatch.setattr(aiosmtplib, "send", fake_send)

        result = await sender.send(make_request())

        assert result.success is True
        message, kwargs = sent[0]
        assert message["To"] == "sam@example.com"
        assert message["Subject"] == "Appointment Created"
        assert kwargs["hostname"] == "smtp.test"

    async def test_refused_recipient_is_permanent(self, sender, make_request, monkeypatch):
        async def fake_send(message, **kwargs):
            raise aiosmtplib.SMTPSenderRefused(550, "sender rejected", "noreply@clinic.test")

        monkeypatch.setattr(aiosmtplib, "send", fake_send)

        result = await sender.send(make_request())

        assert result.permanent is True

    async def test_connection_problem_is_transient(self, sender, make_request, monkeypatch):
        async def fake_send(message, **kwargs):
            raise aiosmtplib.SMTPConnectError("connection refused")

        monkeypatch.setattr(aiosmtplib, "send", fake_send)

        result = await sender.send(make_request())

        assert result.success is False
        assert result.permanent is False

    def test_requires_smtp_host(self):
        with pytest.raises(ValueError):
            EmailChannelSender(ChannelSettings(smtp_host=None))


class TestChannelRegistry:
    def test_parse_channel(self):
        assert parse_channel("sms") is Channel.SMS
        assert parse_channel(" Email ") is Channel.EMAIL
        assert parse_channel("FAX") is None
        assert parse_channel(None) is None

    def test_resolve_prefers_requested_channel(self, sms_sender, email_sender):
        registry = ChannelRegistry([sms_sender, email_sender])

        assert registry.resolve("EMAIL", Channel.SMS) == (Channel.EMAIL, email_sender)

    def test_resolve_falls_back_to_default(self, sms_sender):
        registry = ChannelRegistry([sms_sender])

        assert registry.resolve("PUSH", Channel.SMS) == (Channel.SMS, sms_sender)
        assert registry.resolve("PUSH", None) is None

    def test_build_registers_configured_providers(self):
        settings = ChannelSettings(
            smtp_host="smtp.test",
            sms_gateway_url="https://sms.test/send",
            push_gateway_url=None,
        )

        registry = build_channel_registry(settings)

        assert registry.channels == frozenset({Channel.EMAIL, Channel.SMS})


def test_render_text_includes_appointment_details(make_request):
    subject, body = render_text(make_request(cancellation_reason="Doctor unavailable"))

    assert subject == "Appointment Created"
    assert "Dear Sam Doe," in body
    assert "QX7-442" in body
    assert "Reason: Doctor unavailable" in body
