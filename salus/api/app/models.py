from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    DDL,
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
    text,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship, Mapped, mapped_column
from enum import Enum as PyEnum

from .db import Base
from .errors import ImmutableRecordError
from .sickness_states import SicknessState


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _str_enum(enum_cls: type[PyEnum], name: str) -> Enum:
    """Persist a str enum by value as VARCHAR with a CHECK constraint."""
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=30,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class AbsenceType(str, PyEnum):
    MUSCULOSKELETAL = "musculoskeletal"
    MENTAL_HEALTH = "mental_health"
    RESPIRATORY = "respiratory"
    SURGICAL = "surgical"
    OTHER = "other"


class MilestoneActionStatus(str, PyEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class TriggerType(str, PyEnum):
    FREQUENCY = "FREQUENCY"
    BRADFORD_FACTOR = "BRADFORD_FACTOR"
    DURATION = "DURATION"


class Organisation(Base):
    __tablename__ = "organisations"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    # Parsed through schemas.OrgSettings; missing keys fall back to defaults.
    settings: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class SicknessCase(Base):
    __tablename__ = "sickness_cases"
    __table_args__ = (
        CheckConstraint(
            "absence_end_date IS NULL OR absence_end_date >= absence_start_date",
            name="ck_sickness_cases_end_after_start",
        ),
        Index("idx_sickness_cases_org", "organisation_id"),
        Index("idx_sickness_cases_employee", "employee_id"),
        Index("idx_sickness_cases_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organisation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    reported_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    status: Mapped[SicknessState] = mapped_column(
        _str_enum(SicknessState, "sickness_case_status"),
        nullable=False,
        default=SicknessState.REPORTED,
    )
    absence_type: Mapped[AbsenceType] = mapped_column(
        _str_enum(AbsenceType, "absence_type"), nullable=False
    )
    absence_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    absence_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    working_days_lost: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_long_term: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    organisation: Mapped[Organisation] = relationship("Organisation")
    transitions: Mapped[list["CaseTransition"]] = relationship(
        "CaseTransition",
        back_populates="sickness_case",
        order_by="CaseTransition.created_at",
        passive_deletes=True,
    )


class CaseTransition(Base):
    """Append-only log of status changes (one row per transition)."""

    __tablename__ = "case_transitions"
    __table_args__ = (Index("idx_case_transitions_case", "sickness_case_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sickness_case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sickness_cases.id", ondelete="CASCADE"), nullable=False
    )
    from_status: Mapped[SicknessState | None] = mapped_column(
        _str_enum(SicknessState, "case_transition_from_status"), nullable=True
    )
    to_status: Mapped[SicknessState] = mapped_column(
        _str_enum(SicknessState, "case_transition_to_status"), nullable=False
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    performed_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Python-side default keeps microsecond ordering on every backend.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    sickness_case: Mapped[SicknessCase] = relationship(
        "SicknessCase", back_populates="transitions"
    )


class MilestoneConfig(Base):
    """Default (organisation_id NULL) or per-organisation milestone row."""

    __tablename__ = "milestone_configs"
    __table_args__ = (
        UniqueConstraint(
            "organisation_id", "milestone_key", name="uq_milestone_configs_org_key"
        ),
        Index(
            "idx_milestone_configs_default_key",
            "milestone_key",
            unique=True,
            postgresql_where=text("organisation_id IS NULL"),
            sqlite_where=text("organisation_id IS NULL"),
        ),
        CheckConstraint("day_offset >= 1", name="ck_milestone_configs_day_offset"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organisation_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("organisations.id", ondelete="CASCADE"), nullable=True, index=True
    )
    milestone_key: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    day_offset: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class MilestoneGuidance(Base):
    """Manager guidance per milestone key; same default/override layout as configs."""

    __tablename__ = "milestone_guidance"
    __table_args__ = (
        UniqueConstraint(
            "organisation_id", "milestone_key", name="uq_milestone_guidance_org_key"
        ),
        Index(
            "idx_milestone_guidance_default_key",
            "milestone_key",
            unique=True,
            postgresql_where=text("organisation_id IS NULL"),
            sqlite_where=text("organisation_id IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organisation_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("organisations.id", ondelete="CASCADE"), nullable=True, index=True
    )
    milestone_key: Mapped[str] = mapped_column(String(50), nullable=False)
    action_title: Mapped[str] = mapped_column(String(200), nullable=False)
    manager_guidance: Mapped[str] = mapped_column(Text, nullable=False)
    suggested_text: Mapped[str] = mapped_column(Text, nullable=False)
    instructions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    employee_view: Mapped[str] = mapped_column(Text, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class MilestoneAction(Base):
    """Manual tracking row for one (case, milestone) pair."""

    __tablename__ = "milestone_actions"
    __table_args__ = (
        UniqueConstraint(
            "sickness_case_id", "milestone_key", name="uq_milestone_actions_case_key"
        ),
        Index("idx_milestone_actions_org_status", "organisation_id", "status"),
        Index("idx_milestone_actions_case", "sickness_case_id"),
        Index("idx_milestone_actions_due_status", "due_date", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organisation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False
    )
    sickness_case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sickness_cases.id", ondelete="CASCADE"), nullable=False
    )
    milestone_key: Mapped[str] = mapped_column(String(50), nullable=False)
    action_type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[MilestoneActionStatus] = mapped_column(
        _str_enum(MilestoneActionStatus, "milestone_action_status"),
        nullable=False,
        default=MilestoneActionStatus.PENDING,
    )
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    completed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class AuditLog(Base):
    """Audit trail for case, milestone and trigger activity"""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    organisation_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, nullable=True, index=True
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    meta: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class TriggerConfig(Base):
    __tablename__ = "trigger_configs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organisation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    trigger_type: Mapped[TriggerType] = mapped_column(
        _str_enum(TriggerType, "trigger_type"), nullable=False
    )
    threshold_value: Mapped[int] = mapped_column(Integer, nullable=False)
    period_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )


class TriggerAlert(Base):
    __tablename__ = "trigger_alerts"
    __table_args__ = (
        UniqueConstraint(
            "trigger_config_id", "sickness_case_id", name="uq_trigger_alerts_config_case"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organisation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    trigger_config_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("trigger_configs.id", ondelete="CASCADE"), nullable=False
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    sickness_case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sickness_cases.id", ondelete="CASCADE"), nullable=False
    )
    triggered_value: Mapped[int] = mapped_column(Integer, nullable=False)
    acknowledged_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    trigger_config: Mapped[TriggerConfig] = relationship("TriggerConfig")


# ==============================================================================
# Append-only guards
# ==============================================================================


@event.listens_for(CaseTransition, "before_update")
def _reject_transition_update(mapper: Any, connection: Any, target: CaseTransition):
    raise ImmutableRecordError("case_transitions rows are append-only")


@event.listens_for(CaseTransition, "before_delete")
def _reject_transition_delete(mapper: Any, connection: Any, target: CaseTransition):
    raise ImmutableRecordError("case_transitions rows are append-only")


@event.listens_for(SicknessCase, "before_delete")
def _reject_case_delete(mapper: Any, connection: Any, target: SicknessCase):
    raise ImmutableRecordError("sickness cases are never deleted")


# Core-level UPDATE/DELETE bypass ORM events, so the table itself refuses them.
for _ddl in (
    DDL(
        "CREATE TRIGGER case_transitions_no_update BEFORE UPDATE ON case_transitions "
        "BEGIN SELECT RAISE(ABORT, 'case_transitions is append-only'); END"
    ),
    DDL(
        "CREATE TRIGGER case_transitions_no_delete BEFORE DELETE ON case_transitions "
        "BEGIN SELECT RAISE(ABORT, 'case_transitions is append-only'); END"
    ),
):
    event.listen(CaseTransition.__table__, "after_create", _ddl.execute_if(dialect="sqlite"))

event.listen(
    CaseTransition.__table__,
    "after_create",
    DDL(
        "CREATE OR REPLACE FUNCTION case_transitions_append_only() RETURNS trigger AS $$ "
        "BEGIN RAISE EXCEPTION 'case_transitions is append-only'; END; $$ LANGUAGE plpgsql"
    ).execute_if(dialect="postgresql"),
)
event.listen(
    CaseTransition.__table__,
    "after_create",
    DDL(
        "CREATE TRIGGER case_transitions_append_only BEFORE UPDATE OR DELETE "
        "ON case_transitions FOR EACH ROW EXECUTE FUNCTION case_transitions_append_only()"
    ).execute_if(dialect="postgresql"),
)
