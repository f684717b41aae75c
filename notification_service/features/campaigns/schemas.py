"""Schemas and enums for notification campaigns."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field

from notification_service.features.notifications.schemas import NotificationType


class CampaignStatus(StrEnum):
    """Lifecycle of a campaign.

    DRAFT -> SCHEDULED | ACTIVE
    ACTIVE <-> PAUSED
    ACTIVE | PAUSED -> COMPLETED | FAILED
    """

    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_running(self) -> bool:
        return self in (CampaignStatus.ACTIVE, CampaignStatus.PAUSED)

    @property
    def is_terminal(self) -> bool:
        return self in (CampaignStatus.COMPLETED, CampaignStatus.FAILED)

    def can_transition_to(self, target: CampaignStatus) -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[CampaignStatus, frozenset[CampaignStatus]] = {
    CampaignStatus.DRAFT: frozenset({CampaignStatus.SCHEDULED, CampaignStatus.ACTIVE, CampaignStatus.COMPLETED}),
    CampaignStatus.SCHEDULED: frozenset({CampaignStatus.ACTIVE, CampaignStatus.COMPLETED}),
    CampaignStatus.ACTIVE: frozenset({CampaignStatus.PAUSED, CampaignStatus.COMPLETED, CampaignStatus.FAILED}),
    CampaignStatus.PAUSED: frozenset({CampaignStatus.ACTIVE, CampaignStatus.COMPLETED, CampaignStatus.FAILED}),
    CampaignStatus.COMPLETED: frozenset(),
    CampaignStatus.FAILED: frozenset(),
}


class BeneficiaryContact(BaseModel):
    """How to reach one campaign beneficiary."""

    model_config = ConfigDict(frozen=True)

    mobile_number: str | None = None
    email: str | None = None
    device_id: str | None = None
    has_installed_mobile_app: bool = False
    preferred_channel: str | None = None


class FanOutJob(BaseModel):
    """Work item of one campaign fan-out; serializable for task queues."""

    campaign_id: UUID
    beneficiary_ids: list[str]
    contacts: dict[str, BeneficiaryContact] = Field(default_factory=dict)


class CampaignView(BaseModel):
    """Read model of a stored campaign."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str | None
    name: str
    notification_type: NotificationType
    message: str | None
    status: CampaignStatus
    target_beneficiary_count: int
    success_count: int
    failure_count: int
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime


class CampaignProgress(BaseModel):
    """Progress snapshot of a campaign."""

    campaign_id: UUID
    name: str
    status: CampaignStatus
    target_beneficiary_count: int
    success_count: int
    failure_count: int
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def pending_count(self) -> int:
        return max(self.target_beneficiary_count - self.success_count - self.failure_count, 0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def progress_percentage(self) -> float:
        if self.target_beneficiary_count == 0:
            return 0.0
        done = self.success_count + self.failure_count
        return round(done * 100.0 / self.target_beneficiary_count, 2)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success_rate(self) -> float:
        done = self.success_count + self.failure_count
        if done == 0:
            return 0.0
        return round(self.success_count * 100.0 / done, 2)
