"""Tests for the retry sweep and orphan reconciliation."""

from __future__ import annotations

from datetime import timedelta

from notification_service.core.database import utcnow
from notification_service.features.notifications.repository import get_notification_repository
from notification_service.features.notifications.schemas import NotificationStatus


async def _only_record(container):
    async with container.session_factory() as session:
        records = await get_notification_repository().find_by_beneficiary(session, "ben-1")
    assert len(records) == 1
    return records[0]


class TestRetrySweep:
    async def test_sweep_waits_for_backoff(self, container, make_request, sms_sender):
        sms_sender.script = ["transient", "ok"]
        await container.notifications.submit_notification(make_request())
        record = await _only_record(container)
        assert record.status is NotificationStatus.RETRYING

        assert await container.retry_scheduler.sweep(now=record.next_retry_at - timedelta(milliseconds=1)) == 0
        assert await container.retry_scheduler.sweep(now=record.next_retry_at) == 1

        record = await _only_record(container)
        assert record.status is NotificationStatus.SENT
        assert record.retry_count == 1
        assert len(sms_sender.calls) == 2

    async def test_sweep_drives_record_to_failure(self, container, make_request, sms_sender):
        sms_sender.script = ["transient"]
        await container.notifications.submit_notification(make_request())

        for _ in range(5):
            record = await _only_record(container)
            if record.status.is_terminal:
                break
            await container.retry_scheduler.sweep(now=record.next_retry_at)

        assert record.status is NotificationStatus.FAILED
        assert record.retry_count == 3
        assert len(sms_sender.calls) == 3

    async def test_claimed_record_is_not_enqueued_twice(self, async_container, make_request, sms_sender):
        sms_sender.script = ["transient", "ok"]
        await async_container.notifications.submit_notification(make_request())
        await async_container.bus.join()
        record = await _only_record(async_container)
        await async_container.bus.close()

        due = record.next_retry_at + timedelta(seconds=1)
        assert await async_container.retry_scheduler.sweep(now=due) == 1
        assert await async_container.retry_scheduler.sweep(now=due) == 0

        claimed = await _only_record(async_container)
        assert claimed.status is NotificationStatus.RETRYING
        assert claimed.next_retry_at == due + timedelta(seconds=60)
        assert len(async_container.bus.messages("notification-events")) == 2

    async def test_claim_lease_expires(self, async_container, make_request, sms_sender):
        sms_sender.script = ["transient"]
        await async_container.notifications.submit_notification(make_request())
        await async_container.bus.join()
        record = await _only_record(async_container)
        await async_container.bus.close()

        due = record.next_retry_at
        await async_container.retry_scheduler.sweep(now=due)

        assert await async_container.retry_scheduler.sweep(now=due + timedelta(seconds=61)) == 1

    async def test_inline_dispatch_error_does_not_stop_sweep(self, container, make_request, sms_sender, monkeypatch):
        sms_sender.script = ["transient", "transient", "ok"]
        await container.notifications.submit_notification(make_request(beneficiary_id="ben-1"))
        await container.notifications.submit_notification(make_request(beneficiary_id="ben-2"))
        first = await container.notifications.get_notification_history("ben-1")
        second = await container.notifications.get_notification_history("ben-2")
        due = max(first[0].next_retry_at, second[0].next_retry_at)

        process = container.dispatcher.process

        async def crash_for_first(event, *, now=None):
            if event.request.beneficiary_id == "ben-1":
                raise RuntimeError("database connection lost")
            return await process(event, now=now)

        monkeypatch.setattr(container.dispatcher, "process", crash_for_first)

        assert await container.retry_scheduler.sweep(now=due) == 1

        [first] = await container.notifications.get_notification_history("ben-1")
        [second] = await container.notifications.get_notification_history("ben-2")
        assert first.status is NotificationStatus.RETRYING
        assert second.status is NotificationStatus.SENT


class TestOrphanReconciliation:
    async def test_requeues_stale_pending_records(self, async_container, make_request, sms_sender):
        await async_container.bus.close()
        await async_container.notifications.submit_notification(make_request())
        published = async_container.bus.messages("notification-events")
        assert len(published) == 1

        scheduler = async_container.retry_scheduler
        assert await scheduler.reconcile_orphans(now=utcnow()) == 0

        later = utcnow() + timedelta(minutes=10)
        assert await scheduler.reconcile_orphans(now=later) == 1
        assert await scheduler.reconcile_orphans(now=later) == 0
        assert len(async_container.bus.messages("notification-events")) == 2
        assert sms_sender.calls == []

    async def test_attempted_records_are_not_orphans(self, container, make_request):
        await container.notifications.submit_notification(make_request())

        later = utcnow() + timedelta(minutes=10)

        assert await container.retry_scheduler.reconcile_orphans(now=later) == 0
