"""
Sickness case HTTP API.

Thin layer over the services; domain errors are mapped to status codes by
the exception handlers registered in ``main``.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Response

from .. import bradford, milestone_actions, milestones, sickness_cases, timeline, workflow
from ..schemas.sickness import (
    BradfordFactorOut,
    CaseTransitionOut,
    EffectiveMilestoneOut,
    MilestoneActionOut,
    MilestoneActionUpdateRequest,
    MilestoneGuidanceOut,
    MilestoneOverrideRequest,
    MilestoneWithGuidanceOut,
    ReportCaseRequest,
    SicknessCaseOut,
    TimelineEntryOut,
    TransitionRequest,
    UpdateEndDateRequest,
)
from ..security import CurrentPrincipal

router = APIRouter(prefix="/api", tags=["sickness"])


def _case_out(case, notes: str | None = None) -> SicknessCaseOut:
    out = SicknessCaseOut.model_validate(case)
    return out.model_copy(
        update={
            "notes": notes,
            "available_actions": workflow.get_available_actions(case.status),
        }
    )


# =============================================================================
# Cases
# =============================================================================


@router.post("/sickness-cases", response_model=SicknessCaseOut, status_code=201)
def report_case(request: ReportCaseRequest, principal: CurrentPrincipal):
    case = sickness_cases.report_case(
        request, principal.user_id, principal.organisation_id
    )
    return _case_out(case, request.notes)


@router.get("/sickness-cases", response_model=list[SicknessCaseOut])
def list_cases(
    principal: CurrentPrincipal,
    status: str | None = None,
    employee_id: uuid.UUID | None = None,
):
    cases = sickness_cases.list_cases(
        principal.organisation_id,
        status=status,
        employee_id=employee_id,
        is_platform_admin=principal.is_platform_admin,
    )
    return [_case_out(c) for c in cases]


@router.get("/sickness-cases/{case_id}", response_model=SicknessCaseOut)
def get_case(case_id: uuid.UUID, principal: CurrentPrincipal):
    case, notes = sickness_cases.get_case(
        case_id,
        principal.organisation_id,
        is_platform_admin=principal.is_platform_admin,
    )
    return _case_out(case, notes)


@router.patch("/sickness-cases/{case_id}/end-date", response_model=SicknessCaseOut)
def update_end_date(
    case_id: uuid.UUID, request: UpdateEndDateRequest, principal: CurrentPrincipal
):
    case = sickness_cases.update_end_date(
        case_id, request.absence_end_date, principal.organisation_id, principal.user_id
    )
    return _case_out(case)


@router.post("/sickness-cases/{case_id}/transition", response_model=SicknessCaseOut)
def transition_case(
    case_id: uuid.UUID, request: TransitionRequest, principal: CurrentPrincipal
):
    case = workflow.transition(
        case_id,
        request.action,
        principal.user_id,
        principal.organisation_id,
        request.notes,
    )
    return _case_out(case)


@router.get(
    "/sickness-cases/{case_id}/transitions", response_model=list[CaseTransitionOut]
)
def list_transitions(case_id: uuid.UUID, principal: CurrentPrincipal):
    return sickness_cases.list_transitions(
        case_id,
        principal.organisation_id,
        is_platform_admin=principal.is_platform_admin,
    )


@router.get("/sickness-cases/{case_id}/timeline", response_model=list[TimelineEntryOut])
def get_timeline(case_id: uuid.UUID, principal: CurrentPrincipal):
    entries = timeline.get_case_timeline(
        case_id,
        principal.organisation_id,
        is_platform_admin=principal.is_platform_admin,
    )
    return [
        TimelineEntryOut(
            milestone_key=e.milestone.milestone_key,
            label=e.milestone.label,
            day_offset=e.milestone.day_offset,
            description=e.milestone.description,
            due_date=e.due_date,
            status=e.status.value,
            days_since_start=e.days_since_start,
            suggested_action=e.milestone.suggested_action,
        )
        for e in entries
    ]


# =============================================================================
# Milestone actions
# =============================================================================


@router.get(
    "/sickness-cases/{case_id}/milestone-actions",
    response_model=list[MilestoneActionOut],
)
def get_milestone_actions(case_id: uuid.UUID, principal: CurrentPrincipal):
    return milestone_actions.get_or_create_actions(
        case_id,
        principal.organisation_id,
        is_platform_admin=principal.is_platform_admin,
    )


@router.patch("/milestone-actions/{action_id}", response_model=MilestoneActionOut)
def update_milestone_action(
    action_id: uuid.UUID,
    request: MilestoneActionUpdateRequest,
    principal: CurrentPrincipal,
):
    return milestone_actions.update_action_status(
        action_id,
        request.status,
        principal.user_id,
        principal.organisation_id,
        notes=request.notes,
        completed_at=request.completed_at,
    )


@router.get("/milestone-actions/outstanding", response_model=list[MilestoneActionOut])
def list_outstanding(principal: CurrentPrincipal):
    return milestone_actions.list_outstanding_actions(principal.organisation_id)


# =============================================================================
# Milestone catalog
# =============================================================================


@router.get("/milestones", response_model=list[EffectiveMilestoneOut])
def list_milestones(principal: CurrentPrincipal, include_inactive: bool = False):
    return milestones.get_effective_milestones(
        principal.organisation_id, include_inactive=include_inactive
    )


@router.get("/milestones/guidance", response_model=list[MilestoneWithGuidanceOut])
def list_milestones_with_guidance(principal: CurrentPrincipal):
    rows = milestones.get_effective_milestones_with_guidance(principal.organisation_id)
    return [
        MilestoneWithGuidanceOut(
            **EffectiveMilestoneOut.model_validate(r.milestone).model_dump(),
            guidance=(
                MilestoneGuidanceOut.model_validate(r.guidance) if r.guidance else None
            ),
            guidance_is_default=r.guidance_is_default,
        )
        for r in rows
    ]


@router.put("/milestones/{milestone_key}", response_model=EffectiveMilestoneOut)
def upsert_milestone(
    milestone_key: str, request: MilestoneOverrideRequest, principal: CurrentPrincipal
):
    config = milestones.upsert_org_milestone(
        principal.organisation_id, milestone_key, request, principal.user_id
    )
    return EffectiveMilestoneOut(
        milestone_key=config.milestone_key,
        label=config.label,
        day_offset=config.day_offset,
        description=config.description,
        is_active=config.is_active,
        is_overridden=True,
        action_type=milestones.action_type_for(config.milestone_key),
        suggested_action=milestones.suggested_action_for(config.milestone_key),
    )


@router.delete("/milestones/{milestone_key}", status_code=204)
def reset_milestone(milestone_key: str, principal: CurrentPrincipal):
    milestones.reset_to_default(
        principal.organisation_id, milestone_key, principal.user_id
    )
    return Response(status_code=204)


# =============================================================================
# Bradford Factor
# =============================================================================


@router.get("/employees/{employee_id}/bradford-factor", response_model=BradfordFactorOut)
def get_bradford_factor(employee_id: uuid.UUID, principal: CurrentPrincipal):
    result = bradford.calculate_bradford_factor(employee_id, principal.organisation_id)
    return BradfordFactorOut(
        employee_id=employee_id,
        score=result.score,
        spells=result.spells,
        total_days=result.total_days,
        risk_level=result.risk_level,
    )
