"""
Milestone catalog: system defaults, per-organisation overrides and guidance.

Default rows have ``organisation_id IS NULL`` and are shared by every tenant.
An organisation overrides a default by writing its own row for the same key;
removing that row reverts the key to the default. Guidance text follows the
same two-tier layout in its own table.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

from sqlalchemy import select

from .audit import AuditAction, AuditEntity, record_audit
from .errors import NotFoundError, ValidationError
from .models import MilestoneConfig, MilestoneGuidance
from .schemas.sickness import MilestoneGuidanceRequest, MilestoneOverrideRequest
from .sickness_states import MILESTONE_TRANSITIONS
from .tenancy import TenantScope, coerce_uuid, with_tenant

logger = logging.getLogger(__name__)


# =============================================================================
# Built-in catalog
# =============================================================================


@dataclass(frozen=True)
class MilestoneDefault:
    milestone_key: str
    label: str
    day_offset: int
    description: str
    is_active: bool = True


DEFAULT_MILESTONES: tuple[MilestoneDefault, ...] = (
    MilestoneDefault("DAY_1", "Day 1 - Absence Reported", 1, "Initial absence notification to employee, manager, and HR"),
    MilestoneDefault("DAY_3", "Day 3 - GP Visit Reminder", 3, "Remind employee about GP visit and fit note requirements"),
    MilestoneDefault("DAY_7", "Day 7 - Long-Term Transition", 7, "Case transitions to long-term; prompt for fit note upload and expected return date"),
    MilestoneDefault("WEEK_2", "Week 2 - Check-in", 14, "Check-in prompt and fit note renewal reminder"),
    MilestoneDefault("WEEK_3", "Week 3 - Fit Note Renewal", 21, "Fit note renewal reminder"),
    MilestoneDefault("WEEK_4", "Week 4 - GP/OH Report Request", 28, "Prompt HR/manager to request GP or occupational health report"),
    MilestoneDefault("WEEK_6", "Week 6 - Plan of Action", 42, "Prompt creation of a Plan of Action"),
    MilestoneDefault("WEEK_10", "Week 10 - First Evaluation", 70, "First evaluation meeting"),
    MilestoneDefault("WEEK_14", "Week 14 - Evaluation", 98, "Scheduled evaluation meeting"),
    MilestoneDefault("WEEK_18", "Week 18 - Evaluation", 126, "Scheduled evaluation meeting"),
    MilestoneDefault("WEEK_22", "Week 22 - Evaluation", 154, "Scheduled evaluation meeting"),
    MilestoneDefault("WEEK_26", "Week 26 - Evaluation", 182, "Scheduled evaluation meeting"),
    MilestoneDefault("WEEK_30", "Week 30 - Evaluation", 210, "Scheduled evaluation meeting"),
    MilestoneDefault("WEEK_34", "Week 34 - Evaluation", 238, "Scheduled evaluation meeting"),
    MilestoneDefault("WEEK_38", "Week 38 - Evaluation", 266, "Scheduled evaluation meeting"),
    MilestoneDefault("WEEK_42", "Week 42 - Evaluation", 294, "Scheduled evaluation meeting"),
    MilestoneDefault("WEEK_46", "Week 46 - Evaluation", 322, "Scheduled evaluation meeting"),
    MilestoneDefault("WEEK_50", "Week 50 - Evaluation", 350, "Scheduled evaluation meeting"),
    MilestoneDefault("WEEK_52", "Week 52 - Capability Review", 364, "Formal capability review trigger"),
)

MILESTONE_ACTION_MAP: dict[str, str] = {
    "DAY_1": "NOTIFICATION",
    "DAY_3": "NOTIFICATION",
    "DAY_7": "TRANSITION",
    "WEEK_2": "PROMPT",
    "WEEK_3": "PROMPT",
    "WEEK_4": "PROMPT",
    "WEEK_6": "PROMPT",
    "WEEK_10": "ESCALATION",
    "WEEK_14": "ESCALATION",
    "WEEK_18": "ESCALATION",
    "WEEK_22": "ESCALATION",
    "WEEK_26": "ESCALATION",
    "WEEK_30": "ESCALATION",
    "WEEK_34": "ESCALATION",
    "WEEK_38": "ESCALATION",
    "WEEK_42": "ESCALATION",
    "WEEK_46": "ESCALATION",
    "WEEK_50": "ESCALATION",
    "WEEK_52": "REVIEW",
}
FALLBACK_ACTION_TYPE = "MILESTONE"


def action_type_for(milestone_key: str) -> str:
    return MILESTONE_ACTION_MAP.get(milestone_key, FALLBACK_ACTION_TYPE)


def suggested_action_for(milestone_key: str) -> str | None:
    """Workflow action the milestone card prompts, if any."""
    action = MILESTONE_TRANSITIONS.get(milestone_key)
    return action.value if action is not None else None


# =============================================================================
# Resolution
# =============================================================================


class MilestoneRow(Protocol):
    milestone_key: str
    label: str
    day_offset: int
    description: str | None
    is_active: bool


@dataclass(frozen=True)
class EffectiveMilestone:
    milestone_key: str
    label: str
    day_offset: int
    description: str | None
    is_active: bool
    is_overridden: bool = False

    @property
    def action_type(self) -> str:
        return action_type_for(self.milestone_key)

    @property
    def suggested_action(self) -> str | None:
        return suggested_action_for(self.milestone_key)


def resolve_effective_milestones(
    defaults: Iterable[MilestoneRow],
    overrides: Iterable[MilestoneRow],
    include_inactive: bool = False,
) -> list[EffectiveMilestone]:
    """Merge defaults with overrides keyed by milestone key.

    Overrides replace label, offset, description and active flag. Overrides
    for keys without a default are dropped. Sorted by day offset.
    """
    by_key = {o.milestone_key: o for o in overrides}
    merged: list[EffectiveMilestone] = []
    for d in defaults:
        source = by_key.get(d.milestone_key, d)
        entry = EffectiveMilestone(
            milestone_key=d.milestone_key,
            label=source.label,
            day_offset=source.day_offset,
            description=source.description,
            is_active=bool(source.is_active),
            is_overridden=source is not d,
        )
        if entry.is_active or include_inactive:
            merged.append(entry)
    merged.sort(key=lambda m: (m.day_offset, m.milestone_key))
    return merged


def _load_defaults(scope: TenantScope) -> Sequence[MilestoneRow]:
    rows = scope.session.execute(
        select(MilestoneConfig)
        .where(MilestoneConfig.organisation_id.is_(None))
        .order_by(MilestoneConfig.day_offset, MilestoneConfig.milestone_key)
    ).scalars().all()
    if rows:
        return rows
    logger.debug("No stored default milestones; using built-in catalog")
    return DEFAULT_MILESTONES


def _load_overrides(scope: TenantScope) -> Sequence[MilestoneConfig]:
    return scope.session.execute(
        select(MilestoneConfig).where(
            MilestoneConfig.organisation_id == scope.organisation_id
        )
    ).scalars().all()


def _default_keys(scope: TenantScope) -> set[str]:
    return {d.milestone_key for d in _load_defaults(scope)}


def get_effective_milestones(
    organisation_id: uuid.UUID | str,
    *,
    include_inactive: bool = False,
    scope: TenantScope | None = None,
) -> list[EffectiveMilestone]:
    def work(s: TenantScope) -> list[EffectiveMilestone]:
        return resolve_effective_milestones(
            _load_defaults(s), _load_overrides(s), include_inactive=include_inactive
        )

    return with_tenant(organisation_id, False, work, scope=scope)


# =============================================================================
# Overrides
# =============================================================================


def upsert_org_milestone(
    organisation_id: uuid.UUID | str,
    milestone_key: str,
    data: MilestoneOverrideRequest,
    actor_id: uuid.UUID | str,
    *,
    scope: TenantScope | None = None,
) -> MilestoneConfig:
    """Create or update the organisation's override for ``milestone_key``."""
    actor = coerce_uuid(actor_id, "actor_id")
    if data.day_offset < 1:
        raise ValidationError("Day offset must be at least 1", field="day_offset")

    def work(s: TenantScope) -> MilestoneConfig:
        if milestone_key not in _default_keys(s):
            raise ValidationError(
                f"Unknown milestone key: {milestone_key}", field="milestone_key"
            )
        config = s.session.execute(
            select(MilestoneConfig).where(
                MilestoneConfig.organisation_id == s.organisation_id,
                MilestoneConfig.milestone_key == milestone_key,
            )
        ).scalar_one_or_none()

        if config is None:
            config = MilestoneConfig(
                id=uuid.uuid4(),
                organisation_id=s.organisation_id,
                milestone_key=milestone_key,
                is_default=False,
                created_by=actor,
            )
            s.session.add(config)
            audit_action = AuditAction.CREATE
        else:
            audit_action = AuditAction.UPDATE

        config.label = data.label
        config.day_offset = data.day_offset
        config.description = data.description
        config.is_active = data.is_active

        if data.guidance is not None:
            _upsert_guidance(s, milestone_key, data.guidance)

        record_audit(
            s.session,
            action=audit_action,
            entity=AuditEntity.MILESTONE_CONFIG,
            user_id=actor,
            organisation_id=s.organisation_id,
            entity_id=config.id,
            metadata={
                "milestoneKey": milestone_key,
                "dayOffset": data.day_offset,
                "isActive": data.is_active,
            },
        )
        s.session.flush()
        return config

    return with_tenant(organisation_id, False, work, scope=scope)


def reset_to_default(
    organisation_id: uuid.UUID | str,
    milestone_key: str,
    actor_id: uuid.UUID | str,
    *,
    scope: TenantScope | None = None,
) -> None:
    """Delete the organisation's override (and guidance override) for a key."""
    actor = coerce_uuid(actor_id, "actor_id")

    def work(s: TenantScope) -> None:
        config = s.session.execute(
            select(MilestoneConfig).where(
                MilestoneConfig.organisation_id == s.organisation_id,
                MilestoneConfig.milestone_key == milestone_key,
            )
        ).scalar_one_or_none()
        if config is None:
            if milestone_key in _default_keys(s):
                raise ValidationError(
                    "Cannot delete a system default milestone config",
                    field="milestone_key",
                )
            raise NotFoundError("Milestone config", milestone_key)

        guidance = s.session.execute(
            select(MilestoneGuidance).where(
                MilestoneGuidance.organisation_id == s.organisation_id,
                MilestoneGuidance.milestone_key == milestone_key,
            )
        ).scalar_one_or_none()
        if guidance is not None:
            s.session.delete(guidance)
        s.session.delete(config)
        record_audit(
            s.session,
            action=AuditAction.DELETE,
            entity=AuditEntity.MILESTONE_CONFIG,
            user_id=actor,
            organisation_id=s.organisation_id,
            entity_id=config.id,
            metadata={"milestoneKey": milestone_key},
        )
        s.session.flush()
        logger.info("Milestone %s reset to default for %s", milestone_key, s.organisation_id)

    with_tenant(organisation_id, False, work, scope=scope)


# =============================================================================
# Guidance
# =============================================================================


@dataclass(frozen=True)
class MilestoneWithGuidance:
    milestone: EffectiveMilestone
    guidance: MilestoneGuidance | None
    guidance_is_default: bool


def _guidance_rows(scope: TenantScope) -> tuple[Sequence[MilestoneGuidance], Sequence[MilestoneGuidance]]:
    defaults = scope.session.execute(
        select(MilestoneGuidance).where(MilestoneGuidance.organisation_id.is_(None))
    ).scalars().all()
    overrides = scope.session.execute(
        select(MilestoneGuidance).where(
            MilestoneGuidance.organisation_id == scope.organisation_id
        )
    ).scalars().all()
    return defaults, overrides


def get_guidance_map(
    organisation_id: uuid.UUID | str, *, scope: TenantScope | None = None
) -> dict[str, MilestoneGuidance]:
    """Guidance per key: organisation override if present, else the default."""

    def work(s: TenantScope) -> dict[str, MilestoneGuidance]:
        defaults, overrides = _guidance_rows(s)
        resolved = {g.milestone_key: g for g in defaults}
        resolved.update({g.milestone_key: g for g in overrides})
        return resolved

    return with_tenant(organisation_id, False, work, scope=scope)


def get_guidance_for_milestone(
    milestone_key: str,
    organisation_id: uuid.UUID | str,
    *,
    scope: TenantScope | None = None,
) -> MilestoneGuidance | None:
    def work(s: TenantScope) -> MilestoneGuidance | None:
        rows = s.session.execute(
            select(MilestoneGuidance).where(
                MilestoneGuidance.milestone_key == milestone_key,
                (MilestoneGuidance.organisation_id == s.organisation_id)
                | MilestoneGuidance.organisation_id.is_(None),
            )
        ).scalars().all()
        override = next((g for g in rows if g.organisation_id is not None), None)
        if override is not None:
            return override
        return next(iter(rows), None)

    return with_tenant(organisation_id, False, work, scope=scope)


def _upsert_guidance(
    scope: TenantScope, milestone_key: str, data: MilestoneGuidanceRequest
) -> MilestoneGuidance:
    guidance = scope.session.execute(
        select(MilestoneGuidance).where(
            MilestoneGuidance.organisation_id == scope.organisation_id,
            MilestoneGuidance.milestone_key == milestone_key,
        )
    ).scalar_one_or_none()
    if guidance is None:
        guidance = MilestoneGuidance(
            id=uuid.uuid4(),
            organisation_id=scope.organisation_id,
            milestone_key=milestone_key,
            is_default=False,
        )
        scope.session.add(guidance)
    guidance.action_title = data.action_title
    guidance.manager_guidance = data.manager_guidance
    guidance.suggested_text = data.suggested_text
    guidance.instructions = list(data.instructions)
    guidance.employee_view = data.employee_view
    return guidance


def upsert_org_guidance(
    organisation_id: uuid.UUID | str,
    milestone_key: str,
    data: MilestoneGuidanceRequest,
    actor_id: uuid.UUID | str,
    *,
    scope: TenantScope | None = None,
) -> MilestoneGuidance:
    actor = coerce_uuid(actor_id, "actor_id")

    def work(s: TenantScope) -> MilestoneGuidance:
        if milestone_key not in _default_keys(s):
            raise ValidationError(
                f"Unknown milestone key: {milestone_key}", field="milestone_key"
            )
        guidance = _upsert_guidance(s, milestone_key, data)
        record_audit(
            s.session,
            action=AuditAction.UPDATE,
            entity=AuditEntity.MILESTONE_GUIDANCE,
            user_id=actor,
            organisation_id=s.organisation_id,
            entity_id=guidance.id,
            metadata={"milestoneKey": milestone_key},
        )
        s.session.flush()
        return guidance

    return with_tenant(organisation_id, False, work, scope=scope)


def get_effective_milestones_with_guidance(
    organisation_id: uuid.UUID | str, *, scope: TenantScope | None = None
) -> list[MilestoneWithGuidance]:
    """All milestones, active or not, with resolved guidance for editor views."""

    def work(s: TenantScope) -> list[MilestoneWithGuidance]:
        milestones = get_effective_milestones(
            s.organisation_id, include_inactive=True, scope=s
        )
        defaults, overrides = _guidance_rows(s)
        default_map = {g.milestone_key: g for g in defaults}
        override_map = {g.milestone_key: g for g in overrides}
        return [
            MilestoneWithGuidance(
                milestone=m,
                guidance=override_map.get(m.milestone_key)
                or default_map.get(m.milestone_key),
                guidance_is_default=m.milestone_key not in override_map,
            )
            for m in milestones
        ]

    return with_tenant(organisation_id, False, work, scope=scope)
