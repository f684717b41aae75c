"""Tests for the campaign progress tracker."""

from __future__ import annotations

from notification_service.features.campaigns.progress import clamp_counts
from notification_service.features.campaigns.schemas import BeneficiaryContact, CampaignStatus
from notification_service.features.notifications.channels import ChannelRegistry, ChannelResult
from notification_service.features.notifications.schemas import Channel, NotificationType


class OddNumberRejectingSender:
    """SMS sender that rejects numbers ending in an odd digit."""

    channel = Channel.SMS

    async def send(self, request):
        if int(request.mobile_number[-1]) % 2:
            return ChannelResult.rejected("Number not in service")
        return ChannelResult.ok()


def _contacts(count: int) -> dict[str, BeneficiaryContact]:
    return {f"ben-{i}": BeneficiaryContact(mobile_number=f"+1555010{i}") for i in range(count)}


async def _run_campaign(container, contacts, name="Reminders"):
    campaign = await container.campaigns.create_campaign(None, name, NotificationType.APPOINTMENT_REMINDER)
    await container.campaigns.start_campaign(campaign.id, list(contacts), contacts=contacts)
    await container.campaigns.wait_for_fan_outs()
    return campaign


class TestClampCounts:
    def test_within_target(self):
        assert clamp_counts(10, 4, 3) == (4, 3)

    def test_success_over_target(self):
        assert clamp_counts(5, 7, 2) == (5, 0)

    def test_failure_fills_remainder(self):
        assert clamp_counts(5, 3, 4) == (3, 2)


class TestProgressTracker:
    async def test_counts_and_completion(self, make_container, notification_settings):
        container = await make_container(
            registry=ChannelRegistry([OddNumberRejectingSender()]),
            notification_settings=notification_settings.model_copy(update={"fail_fast_on_permanent_error": True}),
        )
        campaign = await _run_campaign(container, _contacts(5))

        progress = await container.progress_tracker.update(campaign.id)

        assert progress.success_count == 3
        assert progress.failure_count == 2
        assert progress.pending_count == 0
        assert progress.progress_percentage == 100.0
        assert progress.success_rate == 60.0
        assert progress.status is CampaignStatus.COMPLETED
        assert progress.completed_at is not None

    async def test_counts_never_exceed_target(self, make_container, sms_sender):
        container = await make_container()
        campaign = await _run_campaign(container, _contacts(4))

        progress = await container.progress_tracker.update(campaign.id)

        assert progress.success_count + progress.failure_count <= progress.target_beneficiary_count
        assert progress.success_count == 4

    async def test_in_flight_campaign_stays_active(self, make_container, sms_sender):
        sms_sender.script = ["transient"]
        container = await make_container()
        campaign = await _run_campaign(container, _contacts(3))

        progress = await container.progress_tracker.update(campaign.id)

        assert progress.status is CampaignStatus.ACTIVE
        assert progress.success_count == 0
        assert progress.failure_count == 0
        assert progress.pending_count == 3

    async def test_concurrent_campaigns_count_separately(self, make_container, sms_sender):
        container = await make_container()
        first = await _run_campaign(container, _contacts(2), name="First")
        second = await _run_campaign(container, _contacts(3), name="Second")

        updated = {progress.campaign_id: progress for progress in await container.progress_tracker.update_all()}

        assert updated[first.id].success_count == 2
        assert updated[second.id].success_count == 3

    async def test_finished_campaigns_are_skipped(self, make_container, sms_sender):
        container = await make_container()
        campaign = await _run_campaign(container, _contacts(1))
        await container.progress_tracker.update(campaign.id)

        assert await container.progress_tracker.update(campaign.id) is None
        assert await container.progress_tracker.update_all() == []
