"""Tenant-scoped transactions.

Every read or write of organisation-owned rows goes through ``with_tenant``.
The wrapper owns one session/connection per call, opens a transaction, and
stamps the tenant predicates onto it as transaction-local settings
(``set_config(..., true)``), which the PostgreSQL row-level-security policies
read. Commit on success, rollback on any exception; the settings vanish with
the transaction either way, so a pooled connection never carries one
tenant's context into the next checkout.

The unit of work receives a ``TenantScope`` handle. Services pass that handle
down (``scope=``) instead of opening a second transaction, which is how nested
calls share one transaction.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from .db import SessionLocal
from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_session_factory: sessionmaker[Session] = SessionLocal


def configure_session_factory(factory: sessionmaker[Session]) -> None:
    """Point the wrapper at another session source (tests, worker processes)."""
    global _session_factory
    _session_factory = factory


def get_session_factory() -> sessionmaker[Session]:
    return _session_factory


def coerce_uuid(value: uuid.UUID | str, field: str = "id") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid {field}: {value!r}", field=field) from exc


@dataclass(frozen=True)
class TenantScope:
    """A live transaction bound to one organisation (or a platform admin)."""

    session: Session
    organisation_id: uuid.UUID
    is_platform_admin: bool = False

    def restrict(self, stmt: Any, column: Any) -> Any:
        """Apply the organisation predicate to ``stmt`` unless the caller bypasses it."""
        if self.is_platform_admin:
            return stmt
        return stmt.where(column == self.organisation_id)

    def can_see(self, organisation_id: uuid.UUID | None) -> bool:
        if self.is_platform_admin:
            return True
        return organisation_id == self.organisation_id


def set_tenant_context(
    session: Session, organisation_id: uuid.UUID, is_platform_admin: bool
) -> None:
    """Set the RLS predicates for the current transaction only."""
    bind = session.get_bind()
    if bind.dialect.name != "postgresql":
        # No server-side session state elsewhere; TenantScope.restrict still applies.
        return
    session.execute(
        text("SELECT set_config('app.current_organisation_id', :org, true)"),
        {"org": str(organisation_id)},
    )
    session.execute(
        text("SELECT set_config('app.is_platform_admin', :admin, true)"),
        {"admin": "true" if is_platform_admin else "false"},
    )


def with_tenant(
    organisation_id: uuid.UUID | str,
    is_platform_admin: bool,
    fn: Callable[[TenantScope], T],
    *,
    scope: TenantScope | None = None,
) -> T:
    """Run ``fn`` inside a tenant-scoped transaction and return its result.

    With ``scope`` the caller's transaction is reused; the nested call may only
    name the same organisation unless the outer scope is a platform admin.
    """
    org_id = coerce_uuid(organisation_id, "organisation_id")

    if scope is not None:
        if org_id != scope.organisation_id and not scope.is_platform_admin:
            logger.warning(
                "Nested tenant call for organisation %s inside scope of %s rejected",
                org_id,
                scope.organisation_id,
            )
            raise NotFoundError("Organisation", org_id)
        if org_id == scope.organisation_id and is_platform_admin == scope.is_platform_admin:
            return fn(scope)
        nested = TenantScope(
            session=scope.session,
            organisation_id=org_id,
            is_platform_admin=is_platform_admin and scope.is_platform_admin,
        )
        set_tenant_context(nested.session, nested.organisation_id, nested.is_platform_admin)
        # On error the outer transaction is aborted; leave its context alone.
        result = fn(nested)
        set_tenant_context(scope.session, scope.organisation_id, scope.is_platform_admin)
        return result

    session = _session_factory()
    try:
        with session.begin():
            set_tenant_context(session, org_id, is_platform_admin)
            result = fn(
                TenantScope(
                    session=session,
                    organisation_id=org_id,
                    is_platform_admin=is_platform_admin,
                )
            )
        return result
    finally:
        session.close()
