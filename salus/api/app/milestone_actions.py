"""
Milestone action tracking.

Action rows are created the first time a case's actions are read: one
PENDING row per timeline entry, carrying the due date computed at that
moment. Later reads return the stored rows unchanged.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import date, datetime, time, timezone
from typing import Any, Sequence

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from .audit import AuditAction, AuditEntity, record_audit
from .errors import NotFoundError, ValidationError
from .milestones import action_type_for
from .models import MilestoneAction, MilestoneActionStatus
from .sickness_cases import load_case
from .tenancy import TenantScope, coerce_uuid, with_tenant
from .timeline import get_case_timeline

logger = logging.getLogger(__name__)

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

OUTSTANDING_STATUSES = (MilestoneActionStatus.PENDING, MilestoneActionStatus.IN_PROGRESS)


def parse_action_status(value: MilestoneActionStatus | str) -> MilestoneActionStatus:
    if isinstance(value, MilestoneActionStatus):
        return value
    try:
        return MilestoneActionStatus(str(value).strip().upper())
    except ValueError as exc:
        raise ValidationError(
            f"Invalid status: {value!r}. Must be one of "
            + ", ".join(s.value for s in MilestoneActionStatus),
            field="status",
        ) from exc


def parse_completed_at(value: str | None) -> datetime | None:
    """Strict YYYY-MM-DD to a UTC midnight timestamp."""
    if value is None:
        return None
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise ValidationError(
            "completed_at must be a date in YYYY-MM-DD format", field="completed_at"
        )
    try:
        day = date.fromisoformat(value)
    except ValueError as exc:
        raise ValidationError(
            f"completed_at is not a valid calendar date: {value}", field="completed_at"
        ) from exc
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _insert_ignore(scope: TenantScope, rows: list[dict[str, Any]]) -> None:
    dialect = scope.session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(MilestoneAction)
    elif dialect == "sqlite":
        stmt = sqlite_insert(MilestoneAction)
    else:
        raise NotImplementedError(f"insert-or-ignore not supported on {dialect}")
    stmt = stmt.values(rows).on_conflict_do_nothing(
        index_elements=["sickness_case_id", "milestone_key"]
    )
    scope.session.execute(stmt)


def _case_actions(scope: TenantScope, case_id: uuid.UUID) -> Sequence[MilestoneAction]:
    return scope.session.execute(
        select(MilestoneAction)
        .where(MilestoneAction.sickness_case_id == case_id)
        .order_by(MilestoneAction.due_date, MilestoneAction.milestone_key)
    ).scalars().all()


def get_or_create_actions(
    case_id: uuid.UUID | str,
    organisation_id: uuid.UUID | str,
    *,
    today: date | None = None,
    is_platform_admin: bool = False,
    scope: TenantScope | None = None,
) -> Sequence[MilestoneAction]:
    def work(s: TenantScope) -> Sequence[MilestoneAction]:
        case = load_case(s, case_id)
        existing_count = s.session.execute(
            select(func.count())
            .select_from(MilestoneAction)
            .where(MilestoneAction.sickness_case_id == case.id)
        ).scalar_one()
        if existing_count:
            return _case_actions(s, case.id)

        timeline = get_case_timeline(
            case.id, case.organisation_id, today=today, scope=s
        )
        if not timeline:
            return []

        now = datetime.now(timezone.utc)
        rows = [
            {
                "id": uuid.uuid4(),
                "organisation_id": case.organisation_id,
                "sickness_case_id": case.id,
                "milestone_key": entry.milestone.milestone_key,
                "action_type": action_type_for(entry.milestone.milestone_key),
                "status": MilestoneActionStatus.PENDING,
                "due_date": entry.due_date,
                "created_at": now,
                "updated_at": now,
            }
            for entry in timeline
        ]
        _insert_ignore(s, rows)
        logger.info("Materialised %d milestone actions for case %s", len(rows), case.id)
        return _case_actions(s, case.id)

    return with_tenant(organisation_id, is_platform_admin, work, scope=scope)


def update_action_status(
    action_id: uuid.UUID | str,
    status: MilestoneActionStatus | str,
    actor_id: uuid.UUID | str,
    organisation_id: uuid.UUID | str,
    notes: str | None = None,
    completed_at: str | None = None,
    *,
    scope: TenantScope | None = None,
) -> MilestoneAction:
    new_status = parse_action_status(status)
    completed = parse_completed_at(completed_at)
    actor = coerce_uuid(actor_id, "actor_id")
    aid = coerce_uuid(action_id, "action_id")

    def work(s: TenantScope) -> MilestoneAction:
        action = s.session.execute(
            s.restrict(
                select(MilestoneAction).where(MilestoneAction.id == aid),
                MilestoneAction.organisation_id,
            ).with_for_update()
        ).scalar_one_or_none()
        if action is None:
            raise NotFoundError("Milestone action", aid)

        previous = action.status
        action.status = new_status
        if new_status == MilestoneActionStatus.PENDING:
            action.completed_at = None
            action.completed_by = None
            action.notes = None
        else:
            action.completed_by = actor
            if notes is not None:
                action.notes = notes
            if completed is not None:
                action.completed_at = completed
            elif new_status == MilestoneActionStatus.COMPLETED:
                action.completed_at = datetime.now(timezone.utc)

        record_audit(
            s.session,
            action=AuditAction.UPDATE,
            entity=AuditEntity.MILESTONE_ACTION,
            user_id=actor,
            organisation_id=action.organisation_id,
            entity_id=action.id,
            metadata={
                "milestoneKey": action.milestone_key,
                "fromStatus": previous.value,
                "toStatus": new_status.value,
            },
        )
        s.session.flush()
        return action

    return with_tenant(organisation_id, False, work, scope=scope)


def list_outstanding_actions(
    organisation_id: uuid.UUID | str,
    *,
    today: date | None = None,
    scope: TenantScope | None = None,
) -> Sequence[MilestoneAction]:
    """PENDING or IN_PROGRESS actions due on or before today."""
    day = today or date.today()

    def work(s: TenantScope) -> Sequence[MilestoneAction]:
        stmt = s.restrict(
            select(MilestoneAction).where(
                MilestoneAction.status.in_(OUTSTANDING_STATUSES),
                MilestoneAction.due_date <= day,
            ),
            MilestoneAction.organisation_id,
        ).order_by(MilestoneAction.due_date, MilestoneAction.milestone_key)
        return s.session.execute(stmt).scalars().all()

    return with_tenant(organisation_id, False, work, scope=scope)
