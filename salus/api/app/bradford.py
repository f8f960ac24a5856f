"""
Bradford Factor: S x S x D over a rolling 52-week window.

S is the number of absence spells starting in the window, D the total days
lost across them. Cases without a recorded working-days-lost count weekdays
from their start to today instead. Nothing is cached; every call recomputes.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from typing import Iterable, Sequence

from sqlalchemy import select

from .models import SicknessCase
from .tenancy import TenantScope, coerce_uuid, with_tenant

logger = logging.getLogger(__name__)

BRADFORD_LOOKBACK_WEEKS = 52

# (lower bound inclusive, label); the last band is open-ended.
BRADFORD_RISK_LEVELS: tuple[tuple[int, str], ...] = (
    (0, "Low"),
    (50, "Medium"),
    (200, "High"),
    (500, "Critical"),
)


@dataclass(frozen=True)
class BradfordFactorResult:
    score: int
    spells: int
    total_days: int
    risk_level: str

    def to_dict(self) -> dict[str, int | str]:
        return asdict(self)


def get_risk_level(score: int) -> str:
    label = BRADFORD_RISK_LEVELS[0][1]
    for lower, name in BRADFORD_RISK_LEVELS:
        if score >= lower:
            label = name
    return label


def count_weekdays(start: date, end: date) -> int:
    """Weekdays in ``[start, end)``, never less than 1."""
    count = 0
    day = start
    while day < end:
        if day.weekday() < 5:
            count += 1
        day += timedelta(days=1)
    return max(count, 1)


def lookback_start(today: date) -> date:
    return today - timedelta(weeks=BRADFORD_LOOKBACK_WEEKS)


def score_cases(cases: Iterable[SicknessCase], today: date) -> BradfordFactorResult:
    """Score cases already fetched for one employee; cases outside the window are ignored."""
    cutoff = lookback_start(today)
    spells = 0
    total_days = 0
    for case in cases:
        if case.absence_start_date < cutoff:
            continue
        spells += 1
        if case.working_days_lost is not None:
            total_days += case.working_days_lost
        else:
            total_days += count_weekdays(case.absence_start_date, today)
    score = spells * spells * total_days
    return BradfordFactorResult(
        score=score,
        spells=spells,
        total_days=total_days,
        risk_level=get_risk_level(score),
    )


def _employee_cases(
    scope: TenantScope, employee_id: uuid.UUID, since: date
) -> Sequence[SicknessCase]:
    stmt = scope.restrict(
        select(SicknessCase).where(
            SicknessCase.employee_id == employee_id,
            SicknessCase.absence_start_date >= since,
        ),
        SicknessCase.organisation_id,
    )
    return scope.session.execute(stmt).scalars().all()


def calculate_bradford_factor(
    employee_id: uuid.UUID | str,
    organisation_id: uuid.UUID | str,
    *,
    today: date | None = None,
    scope: TenantScope | None = None,
) -> BradfordFactorResult:
    emp = coerce_uuid(employee_id, "employee_id")
    day = today or date.today()

    def work(s: TenantScope) -> BradfordFactorResult:
        return score_cases(_employee_cases(s, emp, lookback_start(day)), day)

    return with_tenant(organisation_id, False, work, scope=scope)


def calculate_for_team(
    employee_ids: Iterable[uuid.UUID | str],
    organisation_id: uuid.UUID | str,
    *,
    today: date | None = None,
    scope: TenantScope | None = None,
) -> dict[uuid.UUID, BradfordFactorResult]:
    ids = [coerce_uuid(e, "employee_id") for e in employee_ids]
    day = today or date.today()

    def work(s: TenantScope) -> dict[uuid.UUID, BradfordFactorResult]:
        return {
            emp: calculate_bradford_factor(emp, s.organisation_id, today=day, scope=s)
            for emp in ids
        }

    return with_tenant(organisation_id, False, work, scope=scope)
