"""
Case Timeline
Maps the organisation's effective milestones onto one case's absence dates.

Status is derived on every call from the current date; nothing is stored.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum as PyEnum
from typing import Iterable

from .milestones import EffectiveMilestone, get_effective_milestones
from .sickness_cases import load_case
from .tenancy import TenantScope, with_tenant

logger = logging.getLogger(__name__)


# =============================================================================
# Enums and DTOs
# =============================================================================


class TimelineStatus(str, PyEnum):
    """Where a milestone's due date sits relative to today"""

    OVERDUE = "OVERDUE"  # due date before today
    DUE_TODAY = "DUE_TODAY"
    UPCOMING = "UPCOMING"  # due date after today


@dataclass(frozen=True)
class TimelineEntry:
    milestone: EffectiveMilestone
    due_date: date
    status: TimelineStatus
    days_since_start: int


def milestone_status(due_date: date, today: date) -> TimelineStatus:
    if due_date < today:
        return TimelineStatus.OVERDUE
    if due_date == today:
        return TimelineStatus.DUE_TODAY
    return TimelineStatus.UPCOMING


def build_timeline(
    absence_start: date,
    milestones: Iterable[EffectiveMilestone],
    today: date,
) -> list[TimelineEntry]:
    """One entry per milestone, in the order given (day offset ascending)."""
    entries = []
    for milestone in milestones:
        due = absence_start + timedelta(days=milestone.day_offset)
        entries.append(
            TimelineEntry(
                milestone=milestone,
                due_date=due,
                status=milestone_status(due, today),
                days_since_start=milestone.day_offset,
            )
        )
    return entries


def get_case_timeline(
    case_id: uuid.UUID | str,
    organisation_id: uuid.UUID | str,
    *,
    today: date | None = None,
    is_platform_admin: bool = False,
    scope: TenantScope | None = None,
) -> list[TimelineEntry]:
    def work(s: TenantScope) -> list[TimelineEntry]:
        case = load_case(s, case_id)
        milestones = get_effective_milestones(case.organisation_id, scope=s)
        return build_timeline(case.absence_start_date, milestones, today or date.today())

    return with_tenant(organisation_id, is_platform_admin, work, scope=scope)
