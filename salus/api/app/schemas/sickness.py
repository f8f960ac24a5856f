from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..models import AbsenceType, MilestoneActionStatus
from ..sickness_states import SicknessAction, SicknessState


# =============================================================================
# Organisation settings (stored as JSON on organisations.settings)
# =============================================================================


class AbsenceTriggerThresholds(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    short_term_days: int = Field(default=3, ge=1, le=365, alias="shortTermDays")
    long_term_days: int = Field(default=28, ge=1, le=365, alias="longTermDays")
    frequency_count: int = Field(default=3, ge=1, le=50, alias="frequencyCount")
    frequency_period_days: int = Field(
        default=90, ge=1, le=365, alias="frequencyPeriodDays"
    )


class NotificationPreferences(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email_on_absence_report: bool = Field(default=True, alias="emailOnAbsenceReport")
    email_on_return_to_work: bool = Field(default=True, alias="emailOnReturnToWork")
    email_on_threshold_breach: bool = Field(
        default=True, alias="emailOnThresholdBreach"
    )
    daily_digest: bool = Field(default=False, alias="dailyDigest")


class OrgSettings(BaseModel):
    """Organisation settings with defaults for every missing key."""

    model_config = ConfigDict(populate_by_name=True)

    absence_trigger_thresholds: AbsenceTriggerThresholds = Field(
        default_factory=AbsenceTriggerThresholds, alias="absenceTriggerThresholds"
    )
    notification_preferences: NotificationPreferences = Field(
        default_factory=NotificationPreferences, alias="notificationPreferences"
    )

    @classmethod
    def from_raw(cls, raw: dict[str, Any] | None) -> "OrgSettings":
        return cls.model_validate(raw or {})


# =============================================================================
# Requests
# =============================================================================


class ReportCaseRequest(BaseModel):
    employee_id: uuid.UUID
    absence_type: AbsenceType
    absence_start_date: date
    absence_end_date: date | None = None
    notes: str | None = Field(default=None, max_length=2000)


class UpdateEndDateRequest(BaseModel):
    absence_end_date: date


class TransitionRequest(BaseModel):
    action: str = Field(..., min_length=1, max_length=50)
    notes: str | None = None


class MilestoneActionUpdateRequest(BaseModel):
    status: str
    notes: str | None = None
    # Strict YYYY-MM-DD; validated by the service so the error shape matches.
    completed_at: str | None = None


class MilestoneGuidanceRequest(BaseModel):
    action_title: str = Field(..., min_length=1, max_length=200)
    manager_guidance: str = Field(..., min_length=1)
    suggested_text: str = Field(..., min_length=1)
    instructions: list[str] = Field(default_factory=list)
    employee_view: str = Field(..., min_length=1)


class MilestoneOverrideRequest(BaseModel):
    label: str = Field(..., min_length=3, max_length=100)
    day_offset: int = Field(..., ge=1)
    description: str | None = Field(default=None, max_length=500)
    is_active: bool = True
    guidance: MilestoneGuidanceRequest | None = None


# =============================================================================
# Responses
# =============================================================================


class SicknessCaseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organisation_id: uuid.UUID
    employee_id: uuid.UUID
    reported_by: uuid.UUID
    status: SicknessState
    absence_type: AbsenceType
    absence_start_date: date
    absence_end_date: date | None = None
    working_days_lost: int | None = None
    is_long_term: bool
    notes: str | None = None
    available_actions: list[SicknessAction] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CaseTransitionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    from_status: SicknessState | None = None
    to_status: SicknessState
    action: str
    performed_by: uuid.UUID
    notes: str | None = None
    created_at: datetime


class EffectiveMilestoneOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    milestone_key: str
    label: str
    day_offset: int
    description: str | None = None
    is_active: bool
    is_overridden: bool
    action_type: str
    suggested_action: str | None = None


class MilestoneGuidanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    milestone_key: str
    action_title: str
    manager_guidance: str
    suggested_text: str
    instructions: list[str] = Field(default_factory=list)
    employee_view: str


class MilestoneWithGuidanceOut(EffectiveMilestoneOut):
    guidance: MilestoneGuidanceOut | None = None
    guidance_is_default: bool = True


class TimelineEntryOut(BaseModel):
    milestone_key: str
    label: str
    day_offset: int
    description: str | None = None
    due_date: date
    status: str
    days_since_start: int
    suggested_action: str | None = None


class MilestoneActionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    sickness_case_id: uuid.UUID
    milestone_key: str
    action_type: str
    status: MilestoneActionStatus
    due_date: date
    completed_by: uuid.UUID | None = None
    completed_at: datetime | None = None
    notes: str | None = None


class BradfordFactorOut(BaseModel):
    employee_id: uuid.UUID
    score: int
    spells: int
    total_days: int
    risk_level: str
