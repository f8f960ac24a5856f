"""Audit trail writer.

Rows are added to the caller's session so they commit or roll back together
with the change they describe.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session

from .models import AuditLog

logger = logging.getLogger(__name__)


class AuditAction:
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    TRANSITION = "TRANSITION"
    ALERT = "ALERT"


class AuditEntity:
    SICKNESS_CASE = "sickness_case"
    MILESTONE_CONFIG = "milestone_config"
    MILESTONE_GUIDANCE = "milestone_guidance"
    MILESTONE_ACTION = "milestone_action"
    TRIGGER_ALERT = "trigger_alert"


def record_audit(
    session: Session,
    *,
    action: str,
    entity: str,
    user_id: uuid.UUID | None = None,
    organisation_id: uuid.UUID | None = None,
    entity_id: uuid.UUID | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog:
    entry = AuditLog(
        id=uuid.uuid4(),
        user_id=user_id,
        organisation_id=organisation_id,
        action=action,
        entity=entity,
        entity_id=entity_id,
        meta=metadata,
    )
    session.add(entry)
    logger.debug("audit %s %s %s", action, entity, entity_id)
    return entry
