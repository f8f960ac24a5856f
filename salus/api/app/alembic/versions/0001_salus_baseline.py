"""Baseline schema for sickness cases, milestones and triggers.

Creates the tenant-owned tables, their row-level security policies, the
append-only trigger on case_transitions, and seeds the default milestone
catalog and default guidance (organisation_id IS NULL).

Revision ID: 0001_salus_baseline
Revises:
Create Date: 2026-02-20
"""

from __future__ import annotations

import uuid

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001_salus_baseline"
down_revision: str | None = None
branch_labels: tuple[str, ...] | None = None
depends_on: tuple[str, ...] | None = None

CASE_STATES = (
    "REPORTED",
    "TRACKING",
    "FIT_NOTE_RECEIVED",
    "RTW_SCHEDULED",
    "RTW_COMPLETED",
    "CLOSED",
)
ABSENCE_TYPES = ("musculoskeletal", "mental_health", "respiratory", "surgical", "other")
ACTION_STATUSES = ("PENDING", "IN_PROGRESS", "COMPLETED")
TRIGGER_TYPES = ("FREQUENCY", "BRADFORD_FACTOR", "DURATION")

# Tables filtered by organisation_id; milestone tables also expose NULL-org defaults.
TENANT_TABLES = (
    "sickness_cases",
    "milestone_actions",
    "trigger_configs",
    "trigger_alerts",
)
CATALOG_TABLES = ("milestone_configs", "milestone_guidance")

DEFAULT_MILESTONES = (
    ("DAY_1", "Day 1 - Absence Reported", 1, "Initial absence notification to employee, manager, and HR"),
    ("DAY_3", "Day 3 - GP Visit Reminder", 3, "Remind employee about GP visit and fit note requirements"),
    ("DAY_7", "Day 7 - Long-Term Transition", 7, "Case transitions to long-term; prompt for fit note upload and expected return date"),
    ("WEEK_2", "Week 2 - Check-in", 14, "Check-in prompt and fit note renewal reminder"),
    ("WEEK_3", "Week 3 - Fit Note Renewal", 21, "Fit note renewal reminder"),
    ("WEEK_4", "Week 4 - GP/OH Report Request", 28, "Prompt HR/manager to request GP or occupational health report"),
    ("WEEK_6", "Week 6 - Plan of Action", 42, "Prompt creation of a Plan of Action"),
    ("WEEK_10", "Week 10 - First Evaluation", 70, "First evaluation meeting"),
    ("WEEK_14", "Week 14 - Evaluation", 98, "Scheduled evaluation meeting"),
    ("WEEK_18", "Week 18 - Evaluation", 126, "Scheduled evaluation meeting"),
    ("WEEK_22", "Week 22 - Evaluation", 154, "Scheduled evaluation meeting"),
    ("WEEK_26", "Week 26 - Evaluation", 182, "Scheduled evaluation meeting"),
    ("WEEK_30", "Week 30 - Evaluation", 210, "Scheduled evaluation meeting"),
    ("WEEK_34", "Week 34 - Evaluation", 238, "Scheduled evaluation meeting"),
    ("WEEK_38", "Week 38 - Evaluation", 266, "Scheduled evaluation meeting"),
    ("WEEK_42", "Week 42 - Evaluation", 294, "Scheduled evaluation meeting"),
    ("WEEK_46", "Week 46 - Evaluation", 322, "Scheduled evaluation meeting"),
    ("WEEK_50", "Week 50 - Evaluation", 350, "Scheduled evaluation meeting"),
    ("WEEK_52", "Week 52 - Capability Review", 364, "Formal capability review trigger"),
)

DEFAULT_GUIDANCE = (
    (
        "DAY_1",
        "Contact your employee",
        "Reach out to your employee to acknowledge their absence and express concern for their wellbeing. Keep the conversation supportive, not investigative.",
        "Hi [name], I hope you're feeling okay. Just wanted to let you know we've noted your absence and hope you recover soon. Please don't worry about work, just focus on getting better.",
        [
            "Send a brief, supportive message via phone or email",
            "Do not ask for medical details at this stage",
            "Record the absence start date",
            "Ensure the employee knows who to contact if they need anything",
        ],
        "Your manager has been notified of your absence. No action is required from you at this stage; focus on your recovery.",
    ),
    (
        "DAY_3",
        "Remind about GP visit",
        "If the absence is continuing, gently remind your employee that a fit note will be required from day 7 onwards. Frame this as helpful information rather than a demand.",
        "Hi [name], I hope you're starting to feel better. Just a heads-up that if you're still unwell after 7 days, you'll need a fit note from your GP.",
        [
            "Check in with the employee about how they are feeling",
            "Mention the fit note requirement after 7 days as helpful information",
            "Suggest booking a GP appointment if they haven't already",
        ],
        "If your absence continues beyond 7 days, you will need to obtain a fit note from your GP. Consider booking an appointment now to avoid delays.",
    ),
    (
        "DAY_7",
        "Request fit note",
        "The absence has reached 7 days and a fit note is now required. Approach this conversation with empathy and reassure them about job security and support.",
        "Hi [name], as your absence has now reached 7 days, we'll need a fit note from your GP going forward. If you have one already, please send it over when you can.",
        [
            "Request a fit note from the employee",
            "Explain the fit note process if they are unfamiliar",
            "Update the case to reflect long-term status",
            "Reassure them about job security and ongoing support",
        ],
        "Your absence has reached 7 days. Please arrange a fit note from your GP and share it with your manager or HR.",
    ),
    (
        "WEEK_2",
        "Conduct welfare check-in",
        "Two weeks into the absence, schedule a welfare check-in to show continued support. Avoid pressuring them about a return date.",
        "Hi [name], it's been a couple of weeks and I wanted to check in to see how you're doing. There's no pressure to rush back.",
        [
            "Schedule a brief welfare call or send a supportive message",
            "Remind about fit note renewal if applicable",
            "Document the check-in outcome",
        ],
        "Your manager will check in with you to see how you are progressing. This is a welfare check, not a return-to-work discussion.",
    ),
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def _str_enum(name: str, values: tuple[str, ...]) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True, length=30)


def upgrade() -> None:
    op.create_table(
        "organisations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(50), nullable=False, unique=True),
        sa.Column("settings", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "sickness_cases",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organisation_id",
            sa.Uuid(),
            sa.ForeignKey("organisations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("employee_id", sa.Uuid(), nullable=False),
        sa.Column("reported_by", sa.Uuid(), nullable=False),
        sa.Column(
            "status",
            _str_enum("sickness_case_status", CASE_STATES),
            nullable=False,
            server_default="REPORTED",
        ),
        sa.Column("absence_type", _str_enum("absence_type", ABSENCE_TYPES), nullable=False),
        sa.Column("absence_start_date", sa.Date(), nullable=False),
        sa.Column("absence_end_date", sa.Date(), nullable=True),
        sa.Column("working_days_lost", sa.Integer(), nullable=True),
        sa.Column("notes_encrypted", sa.Text(), nullable=True),
        sa.Column("is_long_term", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint(
            "absence_end_date IS NULL OR absence_end_date >= absence_start_date",
            name="ck_sickness_cases_end_after_start",
        ),
    )
    op.create_index("idx_sickness_cases_org", "sickness_cases", ["organisation_id"])
    op.create_index("idx_sickness_cases_employee", "sickness_cases", ["employee_id"])
    op.create_index("idx_sickness_cases_status", "sickness_cases", ["status"])

    op.create_table(
        "case_transitions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "sickness_case_id",
            sa.Uuid(),
            sa.ForeignKey("sickness_cases.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "from_status",
            _str_enum("case_transition_from_status", CASE_STATES),
            nullable=True,
        ),
        sa.Column(
            "to_status",
            _str_enum("case_transition_to_status", CASE_STATES),
            nullable=False,
        ),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("performed_by", sa.Uuid(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("idx_case_transitions_case", "case_transitions", ["sickness_case_id"])

    op.create_table(
        "milestone_configs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organisation_id",
            sa.Uuid(),
            sa.ForeignKey("organisations.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("milestone_key", sa.String(50), nullable=False),
        sa.Column("label", sa.String(100), nullable=False),
        sa.Column("day_offset", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "organisation_id", "milestone_key", name="uq_milestone_configs_org_key"
        ),
        sa.CheckConstraint("day_offset >= 1", name="ck_milestone_configs_day_offset"),
    )
    op.create_index(
        "ix_milestone_configs_organisation_id", "milestone_configs", ["organisation_id"]
    )
    op.create_index("ix_milestone_configs_milestone_key", "milestone_configs", ["milestone_key"])
    op.create_index(
        "idx_milestone_configs_default_key",
        "milestone_configs",
        ["milestone_key"],
        unique=True,
        postgresql_where=sa.text("organisation_id IS NULL"),
    )

    op.create_table(
        "milestone_guidance",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organisation_id",
            sa.Uuid(),
            sa.ForeignKey("organisations.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("milestone_key", sa.String(50), nullable=False),
        sa.Column("action_title", sa.String(200), nullable=False),
        sa.Column("manager_guidance", sa.Text(), nullable=False),
        sa.Column("suggested_text", sa.Text(), nullable=False),
        sa.Column("instructions", sa.JSON(), nullable=False),
        sa.Column("employee_view", sa.Text(), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint(
            "organisation_id", "milestone_key", name="uq_milestone_guidance_org_key"
        ),
    )
    op.create_index(
        "ix_milestone_guidance_organisation_id", "milestone_guidance", ["organisation_id"]
    )
    op.create_index(
        "idx_milestone_guidance_default_key",
        "milestone_guidance",
        ["milestone_key"],
        unique=True,
        postgresql_where=sa.text("organisation_id IS NULL"),
    )

    op.create_table(
        "milestone_actions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organisation_id",
            sa.Uuid(),
            sa.ForeignKey("organisations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "sickness_case_id",
            sa.Uuid(),
            sa.ForeignKey("sickness_cases.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("milestone_key", sa.String(50), nullable=False),
        sa.Column("action_type", sa.String(30), nullable=False),
        sa.Column(
            "status",
            _str_enum("milestone_action_status", ACTION_STATUSES),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("completed_by", sa.Uuid(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "sickness_case_id", "milestone_key", name="uq_milestone_actions_case_key"
        ),
    )
    op.create_index(
        "idx_milestone_actions_org_status", "milestone_actions", ["organisation_id", "status"]
    )
    op.create_index("idx_milestone_actions_case", "milestone_actions", ["sickness_case_id"])
    op.create_index(
        "idx_milestone_actions_due_status", "milestone_actions", ["due_date", "status"]
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("organisation_id", sa.Uuid(), nullable=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_organisation_id", "audit_logs", ["organisation_id"])

    op.create_table(
        "trigger_configs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organisation_id",
            sa.Uuid(),
            sa.ForeignKey("organisations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("trigger_type", _str_enum("trigger_type", TRIGGER_TYPES), nullable=False),
        sa.Column("threshold_value", sa.Integer(), nullable=False),
        sa.Column("period_days", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_trigger_configs_organisation_id", "trigger_configs", ["organisation_id"])

    op.create_table(
        "trigger_alerts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organisation_id",
            sa.Uuid(),
            sa.ForeignKey("organisations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "trigger_config_id",
            sa.Uuid(),
            sa.ForeignKey("trigger_configs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("employee_id", sa.Uuid(), nullable=False),
        sa.Column(
            "sickness_case_id",
            sa.Uuid(),
            sa.ForeignKey("sickness_cases.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("triggered_value", sa.Integer(), nullable=False),
        sa.Column("acknowledged_by", sa.Uuid(), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "trigger_config_id", "sickness_case_id", name="uq_trigger_alerts_config_case"
        ),
    )
    op.create_index("ix_trigger_alerts_organisation_id", "trigger_alerts", ["organisation_id"])

    # Append-only transition log
    op.execute(
        """
        CREATE OR REPLACE FUNCTION case_transitions_append_only() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'case_transitions is append-only';
        END;
        $$ LANGUAGE plpgsql
        """
    )
    op.execute(
        """
        CREATE TRIGGER case_transitions_append_only
        BEFORE UPDATE OR DELETE ON case_transitions
        FOR EACH ROW EXECUTE FUNCTION case_transitions_append_only()
        """
    )

    # Row-level security
    for table in TENANT_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(
            f"""
            CREATE POLICY {table}_org_isolation ON {table}
            FOR ALL
            USING (
                organisation_id::text = current_setting('app.current_organisation_id', true)
                OR current_setting('app.is_platform_admin', true) = 'true'
            )
            """
        )
    for table in CATALOG_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(
            f"""
            CREATE POLICY {table}_org_isolation ON {table}
            FOR ALL
            USING (
                organisation_id IS NULL
                OR organisation_id::text = current_setting('app.current_organisation_id', true)
                OR current_setting('app.is_platform_admin', true) = 'true'
            )
            """
        )
    op.execute("ALTER TABLE case_transitions ENABLE ROW LEVEL SECURITY")
    op.execute(
        """
        CREATE POLICY case_transitions_org_isolation ON case_transitions
        FOR ALL
        USING (
            sickness_case_id IN (
                SELECT id FROM sickness_cases
                WHERE organisation_id::text = current_setting('app.current_organisation_id', true)
            )
            OR current_setting('app.is_platform_admin', true) = 'true'
        )
        """
    )

    # Seed defaults
    configs = sa.table(
        "milestone_configs",
        sa.column("id", sa.Uuid()),
        sa.column("organisation_id", sa.Uuid()),
        sa.column("milestone_key", sa.String()),
        sa.column("label", sa.String()),
        sa.column("day_offset", sa.Integer()),
        sa.column("description", sa.Text()),
        sa.column("is_active", sa.Boolean()),
        sa.column("is_default", sa.Boolean()),
    )
    op.bulk_insert(
        configs,
        [
            {
                "id": uuid.uuid4(),
                "organisation_id": None,
                "milestone_key": key,
                "label": label,
                "day_offset": offset,
                "description": description,
                "is_active": True,
                "is_default": True,
            }
            for key, label, offset, description in DEFAULT_MILESTONES
        ],
    )

    guidance = sa.table(
        "milestone_guidance",
        sa.column("id", sa.Uuid()),
        sa.column("organisation_id", sa.Uuid()),
        sa.column("milestone_key", sa.String()),
        sa.column("action_title", sa.String()),
        sa.column("manager_guidance", sa.Text()),
        sa.column("suggested_text", sa.Text()),
        sa.column("instructions", sa.JSON()),
        sa.column("employee_view", sa.Text()),
        sa.column("is_default", sa.Boolean()),
    )
    op.bulk_insert(
        guidance,
        [
            {
                "id": uuid.uuid4(),
                "organisation_id": None,
                "milestone_key": key,
                "action_title": title,
                "manager_guidance": manager,
                "suggested_text": suggested,
                "instructions": instructions,
                "employee_view": employee,
                "is_default": True,
            }
            for key, title, manager, suggested, instructions, employee in DEFAULT_GUIDANCE
        ],
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS case_transitions_append_only ON case_transitions")
    op.execute("DROP FUNCTION IF EXISTS case_transitions_append_only()")
    for table in (
        "trigger_alerts",
        "trigger_configs",
        "audit_logs",
        "milestone_actions",
        "milestone_guidance",
        "milestone_configs",
        "case_transitions",
        "sickness_cases",
        "organisations",
    ):
        op.drop_table(table)
