"""Tests for webhook delivery, retries and monitoring."""

from __future__ import annotations

import json
import uuid
from datetime import timedelta

import httpx
import pytest

from notification_service.features.webhooks.client import WebhookClient
from notification_service.features.webhooks.repository import get_webhook_event_repository
from notification_service.features.webhooks.schemas import WebhookStatus
from notification_service.features.webhooks.service import WebhookNotifier
from notification_service.features.webhooks.signing import (
    EVENT_TYPE_HEADER,
    NOTIFICATION_ID_HEADER,
    RETRY_ATTEMPT_HEADER,
    SIGNATURE_HEADER,
    sign_payload,
)

HOOK_URL = "https://hooks.test/notifications"


class Receiver:
    """Mock webhook endpoint answering with scripted status codes."""

    def __init__(self, statuses: list[int]) -> None:
        self.statuses = statuses
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses[min(len(self.requests), len(self.statuses)) - 1]
        return httpx.Response(status, text="ok" if status < 300 else "unavailable")


class FlakyClient(WebhookClient):
    """Client whose delivery blows up for selected events."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.broken_ids: set[uuid.UUID] = set()

    async def deliver(self, event, *, retry_attempt=None):
        if event.id in self.broken_ids:
            raise RuntimeError("connection pool closed")
        return await super().deliver(event, retry_attempt=retry_attempt)


def _notifier(session_factory, webhook_settings, receiver: Receiver) -> WebhookNotifier:
    client = WebhookClient(client=httpx.AsyncClient(transport=httpx.MockTransport(receiver)))
    return WebhookNotifier(session_factory, webhook_settings, client=client)


async def _load(session_factory, event_id):
    async with session_factory() as session:
        return await get_webhook_event_repository().get(session, event_id)


class TestDelivery:
    async def test_success_on_first_attempt(self, session_factory, webhook_settings, fixed_now):
        receiver = Receiver([200])
        notifier = _notifier(session_factory, webhook_settings, receiver)

        event = await notifier.publish_webhook_event(
            webhook_url=HOOK_URL,
            event_type="notification.sent",
            payload={"notification_id": "n-1", "status": "SENT"},
            now=fixed_now,
        )

        assert event.status is WebhookStatus.SUCCESS
        assert event.retry_count == 0
        assert event.response_code == 200
        assert event.processed_at == fixed_now

    async def test_signed_headers(self, session_factory, webhook_settings):
        receiver = Receiver([200])
        notifier = _notifier(session_factory, webhook_settings, receiver)
        notification_id = uuid.uuid4()

        await notifier.publish_webhook_event(
            webhook_url=HOOK_URL,
            event_type="notification.sent",
            payload={"status": "SENT"},
            notification_id=notification_id,
        )

        request = receiver.requests[0]
        body = request.content.decode()
        assert json.loads(body) == {"status": "SENT"}
        assert request.headers[SIGNATURE_HEADER] == sign_payload("test-secret", body)
        assert request.headers[EVENT_TYPE_HEADER] == "notification.sent"
        assert request.headers[NOTIFICATION_ID_HEADER] == str(notification_id)
        assert RETRY_ATTEMPT_HEADER not in request.headers

    async def test_redelivery_carries_attempt_number(self, session_factory, webhook_settings, fixed_now):
        receiver = Receiver([500, 200])
        notifier = _notifier(session_factory, webhook_settings, receiver)

        event = await notifier.publish_webhook_event(
            webhook_url=HOOK_URL, event_type="notification.sent", payload={}, now=fixed_now
        )
        assert event.status is WebhookStatus.PENDING
        assert event.error_message == "HTTP 500"

        event = await notifier.deliver(event.id, now=event.next_retry_at)

        assert event.status is WebhookStatus.SUCCESS
        assert event.retry_count == 1
        assert receiver.requests[1].headers[RETRY_ATTEMPT_HEADER] == "2"

    async def test_transport_error_is_a_failed_attempt(self, session_factory, webhook_settings, fixed_now):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = WebhookClient(client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)))
        notifier = WebhookNotifier(session_factory, webhook_settings, client=client)

        event = await notifier.publish_webhook_event(
            webhook_url=HOOK_URL, event_type="notification.failed", payload={}, now=fixed_now
        )

        assert event.status is WebhookStatus.PENDING
        assert event.retry_count == 1
        assert event.response_code is None
        assert event.error_message.startswith("Request error")

    async def test_response_body_is_truncated(self, session_factory, webhook_settings):
        client = WebhookClient(
            client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, text="x" * 50))),
            max_response_body_chars=10,
        )
        notifier = WebhookNotifier(session_factory, webhook_settings, client=client)

        event = await notifier.publish_webhook_event(webhook_url=HOOK_URL, event_type="notification.sent", payload={})

        assert event.response_body == "x" * 10


class TestRetries:
    async def test_always_failing_webhook_exhausts_retries(self, session_factory, webhook_settings, fixed_now):
        receiver = Receiver([503])
        notifier = _notifier(session_factory, webhook_settings, receiver)

        event = await notifier.publish_webhook_event(
            webhook_url=HOOK_URL, event_type="notification.failed", payload={"n": 1}, now=fixed_now
        )
        statuses = [event.status]
        delays = []
        now = fixed_now
        while event.status is WebhookStatus.PENDING:
            delays.append(event.next_retry_at - now)
            now = event.next_retry_at
            assert await notifier.retry_pending(now) == 1
            event = await _load(session_factory, event.id)
            statuses.append(event.status)

        assert delays == [timedelta(minutes=m) for m in (2, 4, 8, 16)]
        assert statuses == [WebhookStatus.PENDING] * 4 + [WebhookStatus.FAILED]
        assert event.retry_count == event.max_retries == 5
        assert event.next_retry_at is None
        assert len(receiver.requests) == 5

    async def test_retry_pending_only_picks_due_events(self, session_factory, webhook_settings, fixed_now):
        receiver = Receiver([503, 200])
        notifier = _notifier(session_factory, webhook_settings, receiver)
        event = await notifier.publish_webhook_event(
            webhook_url=HOOK_URL, event_type="notification.sent", payload={}, now=fixed_now
        )

        assert await notifier.retry_pending(fixed_now + timedelta(minutes=1)) == 0
        assert await notifier.retry_pending(fixed_now + timedelta(minutes=2)) == 1

        event = await _load(session_factory, event.id)
        assert event.status is WebhookStatus.SUCCESS
        assert len(receiver.requests) == 2

    async def test_malformed_url_counts_as_failed_attempt(self, session_factory, webhook_settings, fixed_now):
        receiver = Receiver([200])
        notifier = _notifier(session_factory, webhook_settings, receiver)

        event = await notifier.publish_webhook_event(
            webhook_url="http://[::1", event_type="notification.sent", payload={}, now=fixed_now
        )

        assert event.status is WebhookStatus.PENDING
        assert event.retry_count == 1
        assert event.next_retry_at == fixed_now + timedelta(minutes=2)
        assert event.error_message.startswith("Unexpected error")
        assert receiver.requests == []

    async def test_sweep_continues_past_broken_event(self, session_factory, webhook_settings, fixed_now):
        receiver = Receiver([503, 503, 200])
        client = FlakyClient(client=httpx.AsyncClient(transport=httpx.MockTransport(receiver)))
        notifier = WebhookNotifier(session_factory, webhook_settings, client=client)
        broken = await notifier.publish_webhook_event(
            webhook_url=HOOK_URL, event_type="notification.sent", payload={"n": 1}, now=fixed_now
        )
        healthy = await notifier.publish_webhook_event(
            webhook_url=HOOK_URL,
            event_type="notification.sent",
            payload={"n": 2},
            now=fixed_now + timedelta(seconds=1),
        )
        client.broken_ids.add(broken.id)

        assert await notifier.retry_pending(fixed_now + timedelta(hours=2)) == 2

        healthy = await _load(session_factory, healthy.id)
        assert healthy.status is WebhookStatus.SUCCESS
        broken = await _load(session_factory, broken.id)
        assert broken.status is WebhookStatus.PENDING
        assert broken.retry_count == 1

    async def test_max_retries_override(self, session_factory, webhook_settings, fixed_now):
        notifier = _notifier(session_factory, webhook_settings, Receiver([503]))

        event = await notifier.publish_webhook_event(
            webhook_url=HOOK_URL, event_type="notification.failed", payload={}, max_retries=1, now=fixed_now
        )

        assert event.status is WebhookStatus.FAILED


class TestMonitor:
    async def test_reports_counts(self, session_factory, webhook_settings, fixed_now):
        notifier = _notifier(session_factory, webhook_settings, Receiver([503]))
        await notifier.publish_webhook_event(
            webhook_url=HOOK_URL, event_type="notification.failed", payload={"n": 1}, now=fixed_now
        )
        await notifier.publish_webhook_event(
            webhook_url=HOOK_URL, event_type="notification.failed", payload={"n": 2}, max_retries=1, now=fixed_now
        )

        stats = await notifier.monitor(fixed_now + timedelta(minutes=5))

        assert stats.pending == 1
        assert stats.due == 1
        assert stats.failed == 1
        assert stats.succeeded == 0


@pytest.mark.parametrize("delivered", [True, False])
async def test_dispatcher_sends_confirmation_webhook(
    make_container, notification_settings, make_request, sms_sender, session_factory, monkeypatch, delivered
):
    if not delivered:
        sms_sender.script = ["permanent"]
    receiver = Receiver([200])
    container = await make_container(
        notification_settings=notification_settings.model_copy(
            update={
                "confirmation_webhook_url": HOOK_URL,
                "fail_fast_on_permanent_error": True,
            }
        )
    )
    monkeypatch.setattr(
        container.webhook_notifier,
        "_client",
        WebhookClient(client=httpx.AsyncClient(transport=httpx.MockTransport(receiver))),
    )

    await container.notifications.submit_notification(make_request())

    history = await container.notifications.get_notification_history("ben-1")
    async with session_factory() as session:
        events = await get_webhook_event_repository().find_by_notification(session, history[0].id)
    assert len(events) == 1
    assert events[0].status is WebhookStatus.SUCCESS
    expected = "notification.sent" if delivered else "notification.failed"
    assert receiver.requests[0].headers[EVENT_TYPE_HEADER] == expected
