"""
Case workflow: the only entry point for sickness case status changes.

A transition locks the case row, validates the move against the transition
table, updates the status, appends a ``CaseTransition`` row, writes an audit
record and reconciles the long-term flag, all in one transaction.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date

from .audit import AuditAction, AuditEntity, record_audit
from .errors import NotFoundError
from .models import CaseTransition, SicknessCase
from .sickness_cases import get_org_settings, load_case
from .sickness_states import (
    SicknessAction,
    get_available_actions,
    next_state,
    parse_action,
)
from .tenancy import TenantScope, coerce_uuid, with_tenant

logger = logging.getLogger(__name__)

__all__ = ["transition", "get_available_actions", "check_long_term_threshold"]


def transition(
    case_id: uuid.UUID | str,
    action: SicknessAction | str,
    actor_id: uuid.UUID | str,
    organisation_id: uuid.UUID | str,
    notes: str | None = None,
    *,
    scope: TenantScope | None = None,
) -> SicknessCase:
    act = parse_action(action)
    actor = coerce_uuid(actor_id, "actor_id")
    org_id = coerce_uuid(organisation_id, "organisation_id")

    def work(s: TenantScope) -> SicknessCase:
        case = load_case(s, case_id, for_update=True)
        if case.organisation_id != org_id:
            raise NotFoundError("Sickness case", case.id)

        current = case.status
        target = next_state(current, act)

        case.status = target
        s.session.add(
            CaseTransition(
                id=uuid.uuid4(),
                sickness_case_id=case.id,
                from_status=current,
                to_status=target,
                action=act.value,
                performed_by=actor,
                notes=notes,
            )
        )
        record_audit(
            s.session,
            action=AuditAction.TRANSITION,
            entity=AuditEntity.SICKNESS_CASE,
            user_id=actor,
            organisation_id=org_id,
            entity_id=case.id,
            metadata={
                "fromStatus": current.value,
                "toStatus": target.value,
                "action": act.value,
                "notes": "(provided)" if notes else None,
            },
        )
        check_long_term_threshold(s, case)
        s.session.flush()
        logger.info(
            "Case %s: %s -> %s (%s)", case.id, current.value, target.value, act.value
        )
        return case

    return with_tenant(org_id, False, work, scope=scope)


def check_long_term_threshold(
    scope: TenantScope, case: SicknessCase, *, today: date | None = None
) -> bool | None:
    """Reconcile ``is_long_term`` with the organisation's threshold.

    Closed cases compare recorded working days lost; open cases compare
    calendar days since the absence started. Returns the new flag when it
    changed, otherwise None.
    """
    if case.absence_end_date is not None:
        if case.working_days_lost is None:
            return None
        duration = case.working_days_lost
    else:
        duration = ((today or date.today()) - case.absence_start_date).days

    settings = get_org_settings(scope, case.organisation_id)
    if settings is None:
        logger.warning(
            "Organisation %s missing; skipping long-term check for case %s",
            case.organisation_id,
            case.id,
        )
        return None

    threshold = settings.absence_trigger_thresholds.long_term_days
    should_be_long_term = duration >= threshold
    if should_be_long_term == case.is_long_term:
        return None
    case.is_long_term = should_be_long_term
    logger.info(
        "Case %s long-term flag -> %s (%s days, threshold %s)",
        case.id,
        should_be_long_term,
        duration,
        threshold,
    )
    return should_be_long_term
