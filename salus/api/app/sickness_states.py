"""Sickness case lifecycle: states, actions and the transition table.

Pure lookups only; persistence of transitions lives in ``workflow``.
"""

from __future__ import annotations

from enum import Enum as PyEnum

from .errors import InvalidTransitionError, ValidationError


class SicknessState(str, PyEnum):
    REPORTED = "REPORTED"
    TRACKING = "TRACKING"
    FIT_NOTE_RECEIVED = "FIT_NOTE_RECEIVED"
    RTW_SCHEDULED = "RTW_SCHEDULED"
    RTW_COMPLETED = "RTW_COMPLETED"
    CLOSED = "CLOSED"


class SicknessAction(str, PyEnum):
    ACKNOWLEDGE = "acknowledge"
    RECEIVE_FIT_NOTE = "receive_fit_note"
    SCHEDULE_RTW = "schedule_rtw"
    COMPLETE_RTW = "complete_rtw"
    CLOSE_CASE = "close_case"
    REOPEN = "reopen"


# Action recorded on the creating transition (from_status is NULL).
REPORT_ACTION = "report"

VALID_TRANSITIONS: dict[SicknessState, dict[SicknessAction, SicknessState]] = {
    SicknessState.REPORTED: {
        SicknessAction.ACKNOWLEDGE: SicknessState.TRACKING,
    },
    SicknessState.TRACKING: {
        SicknessAction.RECEIVE_FIT_NOTE: SicknessState.FIT_NOTE_RECEIVED,
        SicknessAction.SCHEDULE_RTW: SicknessState.RTW_SCHEDULED,
    },
    SicknessState.FIT_NOTE_RECEIVED: {
        SicknessAction.SCHEDULE_RTW: SicknessState.RTW_SCHEDULED,
        # A renewed fit note keeps the case where it is.
        SicknessAction.RECEIVE_FIT_NOTE: SicknessState.FIT_NOTE_RECEIVED,
    },
    SicknessState.RTW_SCHEDULED: {
        SicknessAction.COMPLETE_RTW: SicknessState.RTW_COMPLETED,
    },
    SicknessState.RTW_COMPLETED: {
        SicknessAction.CLOSE_CASE: SicknessState.CLOSED,
    },
    SicknessState.CLOSED: {
        SicknessAction.REOPEN: SicknessState.TRACKING,
    },
}

# Milestone cards that, once actioned, suggest a workflow move.
MILESTONE_TRANSITIONS: dict[str, SicknessAction] = {
    "DAY_1": SicknessAction.ACKNOWLEDGE,
    "DAY_7": SicknessAction.RECEIVE_FIT_NOTE,
}


def parse_state(value: SicknessState | str) -> SicknessState:
    if isinstance(value, SicknessState):
        return value
    try:
        return SicknessState(str(value).strip().upper())
    except ValueError as exc:
        raise ValidationError(f"Unknown case status: {value!r}", field="status") from exc


def parse_action(value: SicknessAction | str) -> SicknessAction:
    if isinstance(value, SicknessAction):
        return value
    try:
        return SicknessAction(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown case action: {value!r}", field="action") from exc


def get_available_actions(status: SicknessState | str) -> list[SicknessAction]:
    """Actions with an outgoing edge from ``status``, in table order."""
    return list(VALID_TRANSITIONS.get(parse_state(status), {}))


def next_state(
    status: SicknessState | str, action: SicknessAction | str
) -> SicknessState:
    """Resolve the target state or raise InvalidTransitionError."""
    current = parse_state(status)
    act = parse_action(action)
    target = VALID_TRANSITIONS.get(current, {}).get(act)
    if target is None:
        raise InvalidTransitionError(act.value, current.value)
    return target
