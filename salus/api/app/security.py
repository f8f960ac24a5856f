"""
Request principal resolution.

Authentication happens upstream (gateway / identity provider); by the time a
request reaches this service the caller's identity is carried in headers.
This module only parses them into a ``Principal``.

The headers are trusted as-is, so the gateway must strip any client-supplied
``X-User-Id``, ``X-Organisation-Id`` and ``X-Platform-Admin`` before setting
its own. ``X-Platform-Admin`` lifts tenant isolation for reads; only the
values "1", "true" and "yes" grant it, anything else is a normal user.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header, HTTPException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    user_id: uuid.UUID
    organisation_id: uuid.UUID
    is_platform_admin: bool = False


def _parse_uuid(value: str | None, header: str) -> uuid.UUID:
    if not value:
        raise HTTPException(status_code=401, detail=f"Missing {header} header")
    try:
        return uuid.UUID(value)
    except ValueError:
        logger.debug("Rejected malformed %s header", header)
        raise HTTPException(status_code=401, detail=f"Invalid {header} header")


def get_current_principal(
    x_user_id: Annotated[str | None, Header()] = None,
    x_organisation_id: Annotated[str | None, Header()] = None,
    x_platform_admin: Annotated[str | None, Header()] = None,
) -> Principal:
    return Principal(
        user_id=_parse_uuid(x_user_id, "X-User-Id"),
        organisation_id=_parse_uuid(x_organisation_id, "X-Organisation-Id"),
        is_platform_admin=(x_platform_admin or "").strip().lower() in ("1", "true", "yes"),
    )


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
