"""Absence trigger evaluation.

Runs after a case is reported. Each active trigger config of the organisation
is checked against the employee's absence history; a breach is stored as one
``TriggerAlert`` per (config, case).
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, timedelta

from sqlalchemy import select

from .audit import AuditAction, AuditEntity, record_audit
from .bradford import calculate_bradford_factor
from .models import SicknessCase, TriggerAlert, TriggerConfig, TriggerType
from .tenancy import TenantScope

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_DAYS = 365


def _cases_in_period(
    scope: TenantScope, employee_id: uuid.UUID, period_days: int | None, today: date
) -> list[SicknessCase]:
    cutoff = today - timedelta(days=period_days or DEFAULT_PERIOD_DAYS)
    stmt = scope.restrict(
        select(SicknessCase).where(
            SicknessCase.employee_id == employee_id,
            SicknessCase.absence_start_date >= cutoff,
        ),
        SicknessCase.organisation_id,
    )
    return list(scope.session.execute(stmt).scalars().all())


def measure(
    scope: TenantScope, config: TriggerConfig, employee_id: uuid.UUID, today: date
) -> int | None:
    """Value that breached ``config``'s threshold, or None."""
    if config.trigger_type == TriggerType.FREQUENCY:
        value = len(_cases_in_period(scope, employee_id, config.period_days, today))
    elif config.trigger_type == TriggerType.BRADFORD_FACTOR:
        value = calculate_bradford_factor(
            employee_id, scope.organisation_id, today=today, scope=scope
        ).score
    elif config.trigger_type == TriggerType.DURATION:
        value = sum(
            c.working_days_lost or 0
            for c in _cases_in_period(scope, employee_id, config.period_days, today)
        )
    else:
        return None
    return value if value >= config.threshold_value else None


def _fire_alert(
    scope: TenantScope,
    config: TriggerConfig,
    employee_id: uuid.UUID,
    case_id: uuid.UUID,
    value: int,
) -> TriggerAlert | None:
    existing = scope.session.execute(
        select(TriggerAlert.id).where(
            TriggerAlert.trigger_config_id == config.id,
            TriggerAlert.sickness_case_id == case_id,
        )
    ).first()
    if existing is not None:
        return None

    alert = TriggerAlert(
        id=uuid.uuid4(),
        organisation_id=config.organisation_id,
        trigger_config_id=config.id,
        employee_id=employee_id,
        sickness_case_id=case_id,
        triggered_value=value,
    )
    scope.session.add(alert)
    record_audit(
        scope.session,
        action=AuditAction.ALERT,
        entity=AuditEntity.TRIGGER_ALERT,
        organisation_id=config.organisation_id,
        entity_id=alert.id,
        metadata={
            "triggerConfigId": str(config.id),
            "triggerName": config.name,
            "triggerType": config.trigger_type.value,
            "employeeId": str(employee_id),
            "sicknessCaseId": str(case_id),
            "triggeredValue": value,
            "thresholdValue": config.threshold_value,
        },
    )
    scope.session.flush()
    logger.info(
        "Trigger %s (%s) fired for employee %s: %s >= %s",
        config.name,
        config.trigger_type.value,
        employee_id,
        value,
        config.threshold_value,
    )
    return alert


def evaluate_triggers(
    scope: TenantScope,
    employee_id: uuid.UUID,
    case_id: uuid.UUID,
    *,
    today: date | None = None,
) -> list[TriggerAlert]:
    day = today or date.today()
    configs = scope.session.execute(
        select(TriggerConfig)
        .where(
            TriggerConfig.organisation_id == scope.organisation_id,
            TriggerConfig.is_active.is_(True),
        )
        .order_by(TriggerConfig.created_at)
    ).scalars().all()

    fired: list[TriggerAlert] = []
    for config in configs:
        config_id = config.id
        alert = None
        try:
            # Savepoint per config: a failed flush rolls back only this config.
            with scope.session.begin_nested():
                value = measure(scope, config, employee_id, day)
                if value is not None:
                    alert = _fire_alert(scope, config, employee_id, case_id, value)
        except Exception:
            logger.exception("Error evaluating trigger %s", config_id)
            continue
        if alert is not None:
            fired.append(alert)
    return fired
