"""Domain errors raised by the case workflow engine.

Persistence failures (``sqlalchemy.exc.*``) are not part of this hierarchy;
they propagate to the caller untouched.
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for all domain failures."""


class NotFoundError(WorkflowError):
    """Entity missing or outside the caller's tenant scope (callers cannot tell which)."""

    def __init__(self, entity: str, entity_id: object | None = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found")


class InvalidTransitionError(WorkflowError):
    def __init__(self, action: str, current_status: str):
        self.action = action
        self.current_status = current_status
        super().__init__(
            f"Invalid transition: cannot perform '{action}' "
            f"when case is in '{current_status}' state"
        )


class ValidationError(WorkflowError):
    """Malformed input shape (bad date string, unknown enum literal, ...)."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class ImmutableRecordError(WorkflowError):
    """Attempt to update or delete an append-only row."""
