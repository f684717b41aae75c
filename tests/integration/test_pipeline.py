"""End-to-end runs of the asynchronous pipeline over the in-memory bus."""

from __future__ import annotations

import httpx
import pytest

from notification_service.features.campaigns.schemas import BeneficiaryContact, CampaignStatus
from notification_service.features.notifications.schemas import NotificationStatus, NotificationType
from notification_service.features.webhooks.client import WebhookClient
from notification_service.features.webhooks.repository import get_webhook_event_repository
from notification_service.features.webhooks.schemas import WebhookStatus
from notification_service.features.webhooks.signing import SIGNATURE_HEADER, verify_signature

pytestmark = pytest.mark.integration


async def test_queued_notification_recovers_through_retry_sweep(
    async_container, make_request, sms_sender, notification_settings
):
    sms_sender.script = ["transient", "transient", "ok"]

    result = await async_container.notifications.submit_notification(make_request())
    await async_container.bus.join()

    assert result.success is True
    assert result.channel == "ASYNC_QUEUED"

    for _ in range(notification_settings.max_retries + 1):
        [view] = await async_container.notifications.get_notification_history("ben-1")
        if view.status.is_terminal:
            break
        await async_container.retry_scheduler.sweep(now=view.next_retry_at)
        await async_container.bus.join()

    [view] = await async_container.notifications.get_notification_history("ben-1")
    assert view.status is NotificationStatus.SENT
    assert view.retry_count == 2
    assert len(sms_sender.calls) == 3


async def test_duplicate_submission_is_delivered_once(async_container, make_request, sms_sender):
    request = make_request()

    await async_container.notifications.submit_notification(request)
    await async_container.notifications.submit_notification(request)
    await async_container.bus.join()

    history = await async_container.notifications.get_notification_history("ben-1")
    assert len(history) == 1
    assert len(sms_sender.calls) == 1


async def test_confirmation_webhook_is_signed(
    make_container, notification_settings, webhook_settings, make_request, monkeypatch
):
    received: list[httpx.Request] = []

    def receiver(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(204)

    container = await make_container(
        notification_settings=notification_settings.model_copy(
            update={"async_enabled": True, "confirmation_webhook_url": "https://hooks.test/confirm"}
        )
    )
    monkeypatch.setattr(
        container.webhook_notifier,
        "_client",
        WebhookClient(client=httpx.AsyncClient(transport=httpx.MockTransport(receiver))),
    )

    await container.notifications.submit_notification(make_request())
    await container.bus.join()

    [view] = await container.notifications.get_notification_history("ben-1")
    async with container.session_factory() as session:
        [event] = await get_webhook_event_repository().find_by_notification(session, view.id)

    assert event.status is WebhookStatus.SUCCESS
    assert len(received) == 1
    body = received[0].content.decode()
    assert verify_signature(webhook_settings.secret.get_secret_value(), body, received[0].headers[SIGNATURE_HEADER])


async def test_campaign_runs_to_completion(async_container, sms_sender):
    contacts = {f"ben-{i}": BeneficiaryContact(mobile_number=f"+1555020{i:02d}") for i in range(30)}
    campaign = await async_container.campaigns.create_campaign(
        "tenant-a", "Flu shots", NotificationType.APPOINTMENT_REMINDER
    )

    await async_container.campaigns.start_campaign(campaign.id, list(contacts), tenant_id="tenant-a", contacts=contacts)
    await async_container.campaigns.wait_for_fan_outs()
    await async_container.bus.join()
    await async_container.progress_tracker.update_all()

    progress = await async_container.campaigns.get_campaign_progress(campaign.id, "tenant-a")
    assert progress.status is CampaignStatus.COMPLETED
    assert progress.success_count == 30
    assert progress.failure_count == 0
    assert len(sms_sender.calls) == 30
