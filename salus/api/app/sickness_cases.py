"""
Sickness case service: report, read, end-date updates and listing.

Status changes are not made here; they go through ``workflow.transition``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Sequence

from sqlalchemy import select

from .audit import AuditAction, AuditEntity, record_audit
from .encryption import decrypt_field, encrypt_field
from .errors import NotFoundError, ValidationError
from .models import CaseTransition, Organisation, SicknessCase
from .schemas.sickness import OrgSettings, ReportCaseRequest
from .sickness_states import REPORT_ACTION, SicknessState, parse_state
from .tenancy import TenantScope, coerce_uuid, with_tenant
from .triggers import evaluate_triggers
from .working_days import calculate_working_days_lost

logger = logging.getLogger(__name__)


def load_case(
    scope: TenantScope, case_id: uuid.UUID | str, *, for_update: bool = False
) -> SicknessCase:
    """Fetch a case visible to ``scope`` or raise NotFoundError."""
    cid = coerce_uuid(case_id, "case_id")
    stmt = scope.restrict(
        select(SicknessCase).where(SicknessCase.id == cid),
        SicknessCase.organisation_id,
    )
    if for_update:
        stmt = stmt.with_for_update()
    case = scope.session.execute(stmt).scalar_one_or_none()
    if case is None:
        raise NotFoundError("Sickness case", cid)
    return case


def get_org_settings(scope: TenantScope, organisation_id: uuid.UUID) -> OrgSettings | None:
    """Parsed settings for the organisation, or None when the row is missing."""
    org = scope.session.get(Organisation, organisation_id)
    if org is None:
        return None
    return OrgSettings.from_raw(org.settings)


def _check_dates(start: date, end: date | None) -> None:
    if end is not None and end < start:
        raise ValidationError(
            "Absence end date must be on or after the start date",
            field="absence_end_date",
        )


def report_case(
    data: ReportCaseRequest,
    reporter_id: uuid.UUID | str,
    organisation_id: uuid.UUID | str,
    *,
    scope: TenantScope | None = None,
) -> SicknessCase:
    """Create a case in REPORTED with its creating transition, then evaluate triggers."""
    _check_dates(data.absence_start_date, data.absence_end_date)
    reporter = coerce_uuid(reporter_id, "reporter_id")
    notes_encrypted = encrypt_field(data.notes) if data.notes else None

    def work(s: TenantScope) -> SicknessCase:
        working_days = None
        if data.absence_end_date is not None:
            working_days = calculate_working_days_lost(
                data.absence_start_date, data.absence_end_date
            )
        case = SicknessCase(
            id=uuid.uuid4(),
            organisation_id=s.organisation_id,
            employee_id=data.employee_id,
            reported_by=reporter,
            status=SicknessState.REPORTED,
            absence_type=data.absence_type,
            absence_start_date=data.absence_start_date,
            absence_end_date=data.absence_end_date,
            working_days_lost=working_days,
            notes_encrypted=notes_encrypted,
            is_long_term=False,
        )
        s.session.add(case)
        s.session.add(
            CaseTransition(
                id=uuid.uuid4(),
                sickness_case_id=case.id,
                from_status=None,
                to_status=SicknessState.REPORTED,
                action=REPORT_ACTION,
                performed_by=reporter,
            )
        )
        record_audit(
            s.session,
            action=AuditAction.CREATE,
            entity=AuditEntity.SICKNESS_CASE,
            user_id=reporter,
            organisation_id=s.organisation_id,
            entity_id=case.id,
            metadata={
                "employeeId": str(data.employee_id),
                "absenceType": data.absence_type.value,
                "absenceStartDate": data.absence_start_date.isoformat(),
                "absenceEndDate": (
                    data.absence_end_date.isoformat() if data.absence_end_date else None
                ),
            },
        )
        s.session.flush()
        logger.info("Reported sickness case %s for employee %s", case.id, data.employee_id)
        return case

    case = with_tenant(organisation_id, False, work, scope=scope)

    try:
        with_tenant(
            organisation_id,
            False,
            lambda s: evaluate_triggers(s, case.employee_id, case.id),
            scope=scope,
        )
    except Exception:
        logger.exception("Trigger evaluation failed for sickness case %s", case.id)

    return case


def get_case(
    case_id: uuid.UUID | str,
    organisation_id: uuid.UUID | str,
    *,
    is_platform_admin: bool = False,
    scope: TenantScope | None = None,
) -> tuple[SicknessCase, str | None]:
    """Return the case and its decrypted notes."""

    def work(s: TenantScope) -> tuple[SicknessCase, str | None]:
        case = load_case(s, case_id)
        return case, decrypt_field(case.notes_encrypted)

    return with_tenant(organisation_id, is_platform_admin, work, scope=scope)


def update_end_date(
    case_id: uuid.UUID | str,
    end_date: date,
    organisation_id: uuid.UUID | str,
    actor_id: uuid.UUID | str,
    *,
    scope: TenantScope | None = None,
) -> SicknessCase:
    """Set the end date and recompute working days lost."""
    actor = coerce_uuid(actor_id, "actor_id")

    def work(s: TenantScope) -> SicknessCase:
        case = load_case(s, case_id, for_update=True)
        _check_dates(case.absence_start_date, end_date)
        case.absence_end_date = end_date
        case.working_days_lost = calculate_working_days_lost(
            case.absence_start_date, end_date
        )
        record_audit(
            s.session,
            action=AuditAction.UPDATE,
            entity=AuditEntity.SICKNESS_CASE,
            user_id=actor,
            organisation_id=s.organisation_id,
            entity_id=case.id,
            metadata={
                "endDate": end_date.isoformat(),
                "workingDaysLost": case.working_days_lost,
            },
        )
        s.session.flush()
        return case

    return with_tenant(organisation_id, False, work, scope=scope)


def list_cases(
    organisation_id: uuid.UUID | str,
    *,
    status: SicknessState | str | None = None,
    employee_id: uuid.UUID | str | None = None,
    is_platform_admin: bool = False,
    scope: TenantScope | None = None,
) -> Sequence[SicknessCase]:
    state = parse_state(status) if status is not None else None
    employee = coerce_uuid(employee_id, "employee_id") if employee_id is not None else None

    def work(s: TenantScope) -> Sequence[SicknessCase]:
        stmt = s.restrict(select(SicknessCase), SicknessCase.organisation_id)
        if state is not None:
            stmt = stmt.where(SicknessCase.status == state)
        if employee is not None:
            stmt = stmt.where(SicknessCase.employee_id == employee)
        stmt = stmt.order_by(SicknessCase.absence_start_date.desc())
        return s.session.execute(stmt).scalars().all()

    return with_tenant(organisation_id, is_platform_admin, work, scope=scope)


def list_transitions(
    case_id: uuid.UUID | str,
    organisation_id: uuid.UUID | str,
    *,
    is_platform_admin: bool = False,
    scope: TenantScope | None = None,
) -> Sequence[CaseTransition]:
    """Transition log for a case, oldest first."""

    def work(s: TenantScope) -> Sequence[CaseTransition]:
        case = load_case(s, case_id)
        stmt = (
            select(CaseTransition)
            .where(CaseTransition.sickness_case_id == case.id)
            .order_by(CaseTransition.created_at, CaseTransition.id)
        )
        return s.session.execute(stmt).scalars().all()

    return with_tenant(organisation_id, is_platform_admin, work, scope=scope)
