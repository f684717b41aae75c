"""Tests for the dispatcher: attempts, retry ceiling and dead-lettering."""

from __future__ import annotations

import json
import uuid
from datetime import timedelta

import pytest

from notification_service.core.exceptions import PersistenceError
from notification_service.features.notifications.channels import ChannelRegistry
from notification_service.features.notifications.dispatcher import (
    FAILED_EVENT_TYPE,
    SENT_EVENT_TYPE,
    NotificationDispatcher,
    confirmation_payload,
)
from notification_service.features.notifications.events import NotificationEvent
from notification_service.features.notifications.models import NotificationRecord
from notification_service.features.notifications.schemas import NotificationStatus, NotificationType
from notification_service.features.notifications.service import request_idempotency_key


@pytest.fixture
async def pending_record(session_factory, make_request) -> NotificationRecord:
    request = make_request()
    record = NotificationRecord.from_request(
        request,
        idempotency_key=request_idempotency_key(request),
        preferred_channel="SMS",
        max_retries=3,
    )
    async with session_factory() as session, session.begin():
        session.add(record)
    return record


@pytest.fixture
def dispatcher(session_factory, channel_registry, notification_settings) -> NotificationDispatcher:
    return NotificationDispatcher(session_factory, channel_registry, notification_settings)


async def _run_until_terminal(dispatcher, record, now, *, limit=10) -> NotificationRecord:
    """Drive attempts the way the retry sweep would, one event per attempt."""
    current = record
    for _ in range(limit):
        current = await dispatcher.process(NotificationEvent.for_record(current), now=now)
        if current.status.is_terminal:
            return current
        now = current.next_retry_at
    raise AssertionError("record never reached a terminal status")


class TestDeliveryAttempts:
    async def test_success_marks_sent(self, dispatcher, pending_record, fixed_now):
        record = await dispatcher.process(NotificationEvent.for_record(pending_record), now=fixed_now)

        assert record.status is NotificationStatus.SENT
        assert record.sent_at == fixed_now
        assert record.channel == "SMS"
        assert record.retry_count == 0
        assert record.next_retry_at is None

    async def test_fails_twice_then_succeeds(self, dispatcher, pending_record, sms_sender, fixed_now):
        sms_sender.script = ["transient", "transient", "ok"]

        record = await _run_until_terminal(dispatcher, pending_record, fixed_now)

        assert record.status is NotificationStatus.SENT
        assert record.retry_count == 2
        assert record.error_message is None
        assert len(sms_sender.calls) == 3

    async def test_failure_schedules_backoff(self, dispatcher, pending_record, sms_sender, fixed_now):
        sms_sender.script = ["transient"]

        record = await dispatcher.process(NotificationEvent.for_record(pending_record), now=fixed_now)

        assert record.status is NotificationStatus.RETRYING
        assert record.retry_count == 1
        assert record.next_retry_at == fixed_now + timedelta(milliseconds=150)
        assert record.error_message == "SMS provider unavailable"

    async def test_retry_ceiling(self, dispatcher, pending_record, sms_sender, fixed_now):
        sms_sender.script = ["transient"]

        record = await _run_until_terminal(dispatcher, pending_record, fixed_now)

        assert record.status is NotificationStatus.FAILED
        assert record.retry_count == record.max_retries == 3
        assert record.next_retry_at is None
        assert len(sms_sender.calls) == 3

    async def test_raised_channel_errors_are_recorded(self, dispatcher, pending_record, sms_sender, fixed_now):
        sms_sender.script = ["raise-transient"]

        record = await dispatcher.process(NotificationEvent.for_record(pending_record), now=fixed_now)

        assert record.status is NotificationStatus.RETRYING
        assert record.error_message == "connection reset"

    async def test_permanent_error_uses_retry_budget_by_default(
        self, dispatcher, pending_record, sms_sender, fixed_now
    ):
        sms_sender.script = ["permanent"]

        record = await dispatcher.process(NotificationEvent.for_record(pending_record), now=fixed_now)

        assert record.status is NotificationStatus.RETRYING

    async def test_permanent_error_fails_fast_when_enabled(
        self, session_factory, channel_registry, notification_settings, pending_record, sms_sender, fixed_now
    ):
        sms_sender.script = ["raise-permanent"]
        dispatcher = NotificationDispatcher(
            session_factory,
            channel_registry,
            notification_settings.model_copy(update={"fail_fast_on_permanent_error": True}),
        )

        record = await dispatcher.process(NotificationEvent.for_record(pending_record), now=fixed_now)

        assert record.status is NotificationStatus.FAILED
        assert record.retry_count == 0
        assert record.error_message == "invalid recipient"
        assert len(sms_sender.calls) == 1

    async def test_no_sender_for_channel(self, session_factory, notification_settings, pending_record, fixed_now):
        dispatcher = NotificationDispatcher(session_factory, ChannelRegistry(), notification_settings)

        record = await dispatcher.process(NotificationEvent.for_record(pending_record), now=fixed_now)

        assert record.status is NotificationStatus.RETRYING
        assert record.error_message == "No channel sender available for SMS"

    async def test_falls_back_to_default_channel(
        self, session_factory, notification_settings, make_request, sms_sender, fixed_now
    ):
        request = make_request(preferred_channel="PUSH", device_id="device-9")
        record = NotificationRecord.from_request(
            request,
            idempotency_key=request_idempotency_key(request),
            preferred_channel="PUSH",
            max_retries=3,
        )
        async with session_factory() as session, session.begin():
            session.add(record)
        dispatcher = NotificationDispatcher(session_factory, ChannelRegistry([sms_sender]), notification_settings)

        record = await dispatcher.process(NotificationEvent.for_record(record), now=fixed_now)

        assert record.status is NotificationStatus.SENT
        assert record.channel == "SMS"


class TestStaleEvents:
    async def test_missing_record_is_dropped(self, dispatcher, pending_record, session_factory):
        event = NotificationEvent.for_record(pending_record).model_copy(
            update={"notification_id": uuid.uuid4()}
        )

        assert await dispatcher.process(event) is None

    async def test_redelivered_event_after_success_is_ignored(
        self, dispatcher, pending_record, sms_sender, fixed_now
    ):
        event = NotificationEvent.for_record(pending_record)

        await dispatcher.process(event, now=fixed_now)
        record = await dispatcher.process(event, now=fixed_now)

        assert record.status is NotificationStatus.SENT
        assert len(sms_sender.calls) == 1

    async def test_outdated_attempt_is_ignored(self, dispatcher, pending_record, sms_sender, fixed_now):
        sms_sender.script = ["transient"]
        first_attempt = NotificationEvent.for_record(pending_record)
        await dispatcher.process(first_attempt, now=fixed_now)

        record = await dispatcher.process(first_attempt, now=fixed_now)

        assert record.retry_count == 1
        assert len(sms_sender.calls) == 1


class TestAfterTransition:
    async def test_failed_record_is_dead_lettered(self, make_container, notification_settings, make_request, sms_sender):
        sms_sender.script = ["permanent"]
        container = await make_container(
            notification_settings=notification_settings.model_copy(update={"fail_fast_on_permanent_error": True})
        )

        await container.notifications.submit_notification(make_request())
        await container.bus.join()

        dead_letters = container.bus.messages("notification-events-dlq")
        assert len(dead_letters) == 1
        assert json.loads(dead_letters[0])["request"]["beneficiary_id"] == "ben-1"

    async def test_dead_lettering_can_be_disabled(
        self, make_container, notification_settings, make_request, sms_sender
    ):
        sms_sender.script = ["permanent"]
        container = await make_container(
            notification_settings=notification_settings.model_copy(
                update={"fail_fast_on_permanent_error": True, "forward_to_dead_letter": False}
            )
        )

        await container.notifications.submit_notification(make_request())

        assert container.bus.messages("notification-events-dlq") == []

    async def test_confirmation_webhook_on_terminal_status(
        self, session_factory, channel_registry, notification_settings, pending_record, fixed_now
    ):
        published: list[dict] = []

        class RecordingNotifier:
            async def publish_webhook_event(self, **kwargs):
                published.append(kwargs)

        dispatcher = NotificationDispatcher(
            session_factory,
            channel_registry,
            notification_settings.model_copy(update={"confirmation_webhook_url": "https://hooks.test/notify"}),
            webhook_notifier=RecordingNotifier(),
        )

        await dispatcher.process(NotificationEvent.for_record(pending_record), now=fixed_now)

        assert len(published) == 1
        assert published[0]["event_type"] == SENT_EVENT_TYPE
        assert published[0]["webhook_url"] == "https://hooks.test/notify"
        assert published[0]["payload"]["status"] == "SENT"
        assert published[0]["notification_id"] == pending_record.id

    async def test_side_effect_failures_keep_the_transition(
        self, session_factory, channel_registry, notification_settings, pending_record, sms_sender, fixed_now
    ):
        sms_sender.script = ["permanent"]

        class BrokenBus:
            async def publish(self, topic, event, *, key=None):
                raise ConnectionError("broker unreachable")

        class BrokenNotifier:
            async def publish_webhook_event(self, **kwargs):
                raise PersistenceError(detail="Webhook event could not be stored")

        dispatcher = NotificationDispatcher(
            session_factory,
            channel_registry,
            notification_settings.model_copy(
                update={
                    "fail_fast_on_permanent_error": True,
                    "confirmation_webhook_url": "https://hooks.test/notify",
                }
            ),
            bus=BrokenBus(),
            webhook_notifier=BrokenNotifier(),
        )

        record = await dispatcher.process(NotificationEvent.for_record(pending_record), now=fixed_now)

        assert record.status is NotificationStatus.FAILED
        async with session_factory() as session:
            stored = await session.get(NotificationRecord, pending_record.id)
        assert stored.status is NotificationStatus.FAILED

    async def test_sync_submit_reports_sent_when_confirmation_fails(
        self, make_container, notification_settings, make_request, monkeypatch
    ):
        container = await make_container(
            notification_settings=notification_settings.model_copy(
                update={"confirmation_webhook_url": "https://hooks.test/notify"}
            )
        )

        async def fail_publish(**kwargs):
            raise PersistenceError(detail="Webhook event could not be stored")

        monkeypatch.setattr(container.webhook_notifier, "publish_webhook_event", fail_publish)

        result = await container.notifications.submit_notification(make_request())

        assert result.success is True
        assert result.channel == "SMS"


def test_confirmation_payload_of_failure():
    record = NotificationRecord(
        beneficiary_id="ben-7",
        notification_type=NotificationType.APPOINTMENT_REMINDER,
        status=NotificationStatus.FAILED,
        channel="EMAIL",
        retry_count=3,
        error_message="mailbox full",
    )

    payload = confirmation_payload(record, FAILED_EVENT_TYPE)

    assert payload["event_type"] == "notification.failed"
    assert payload["status"] == "FAILED"
    assert payload["error_message"] == "mailbox full"
    assert payload["sent_at"] is None
    assert payload["campaign_id"] is None
