import unittest
import uuid
from datetime import date, datetime, timezone

from db_support import TenantDBTestCase

from api.app.errors import NotFoundError, ValidationError
from api.app.milestone_actions import (
    _insert_ignore,
    get_or_create_actions,
    list_outstanding_actions,
    parse_completed_at,
    update_action_status,
)
from api.app.milestones import DEFAULT_MILESTONES
from api.app.models import AuditLog, MilestoneAction, MilestoneActionStatus
from api.app.tenancy import with_tenant


class TestCompletedAtParsing(unittest.TestCase):
    def test_valid_date_is_utc_midnight(self):
        self.assertEqual(
            parse_completed_at("2026-01-15"),
            datetime(2026, 1, 15, tzinfo=timezone.utc),
        )

    def test_none_passes_through(self):
        self.assertIsNone(parse_completed_at(None))

    def test_rejects_wrong_shape_and_impossible_dates(self):
        for value in ("2026/01/01", "15-01-2026", "2026-1-5", "2026-02-30", "2026-13-01"):
            with self.assertRaises(ValidationError) as ctx:
                parse_completed_at(value)
            self.assertEqual(ctx.exception.field, "completed_at")


class TestMaterialisation(TenantDBTestCase):
    def setUp(self):
        super().setUp()
        self.org_id = self.add_organisation()
        self.case_id = self.add_case(self.org_id, start=date(2026, 1, 5))

    def test_first_read_creates_one_pending_row_per_milestone(self):
        actions = get_or_create_actions(self.case_id, self.org_id, today=date(2026, 1, 12))

        self.assertEqual(len(actions), len(DEFAULT_MILESTONES))
        self.assertTrue(all(a.status == MilestoneActionStatus.PENDING for a in actions))
        due_dates = [a.due_date for a in actions]
        self.assertEqual(due_dates, sorted(due_dates))
        by_key = {a.milestone_key: a for a in actions}
        self.assertEqual(by_key["DAY_1"].due_date, date(2026, 1, 6))
        self.assertEqual(by_key["DAY_1"].action_type, "NOTIFICATION")
        self.assertEqual(by_key["DAY_7"].action_type, "TRANSITION")
        self.assertEqual(by_key["WEEK_6"].action_type, "PROMPT")
        self.assertEqual(by_key["WEEK_10"].action_type, "ESCALATION")
        self.assertEqual(by_key["WEEK_52"].action_type, "REVIEW")

    def test_second_read_returns_stored_rows(self):
        first = get_or_create_actions(self.case_id, self.org_id)
        second = get_or_create_actions(self.case_id, self.org_id)
        self.assertEqual([a.id for a in first], [a.id for a in second])
        self.assertEqual(
            len(self.fetch(MilestoneAction, sickness_case_id=self.case_id)),
            len(DEFAULT_MILESTONES),
        )

    def test_duplicate_insert_is_ignored(self):
        get_or_create_actions(self.case_id, self.org_id)
        now = datetime.now(timezone.utc)
        rows = [
            {
                "id": uuid.uuid4(),
                "organisation_id": self.org_id,
                "sickness_case_id": self.case_id,
                "milestone_key": "DAY_1",
                "action_type": "NOTIFICATION",
                "status": MilestoneActionStatus.PENDING,
                "due_date": date(2026, 1, 6),
                "created_at": now,
                "updated_at": now,
            }
        ]
        with_tenant(self.org_id, False, lambda s: _insert_ignore(s, rows))
        self.assertEqual(
            len(self.fetch(MilestoneAction, sickness_case_id=self.case_id)),
            len(DEFAULT_MILESTONES),
        )

    def test_case_in_other_organisation_is_not_found(self):
        other = self.add_organisation()
        with self.assertRaises(NotFoundError):
            get_or_create_actions(self.case_id, other)
        self.assertEqual(self.fetch(MilestoneAction, sickness_case_id=self.case_id), [])


class TestStatusUpdates(TenantDBTestCase):
    def setUp(self):
        super().setUp()
        self.org_id = self.add_organisation()
        self.case_id = self.add_case(self.org_id, start=date(2026, 1, 5))
        self.actor = uuid.uuid4()
        actions = get_or_create_actions(self.case_id, self.org_id)
        self.action_id = next(a.id for a in actions if a.milestone_key == "DAY_3")

    def _stored(self):
        [row] = self.fetch(MilestoneAction, id=self.action_id)
        return row

    def test_completed_without_date_stamps_now(self):
        before = datetime.now(timezone.utc)
        action = update_action_status(
            self.action_id, "COMPLETED", self.actor, self.org_id, notes="GP visited"
        )
        self.assertEqual(action.status, MilestoneActionStatus.COMPLETED)
        self.assertEqual(action.completed_by, self.actor)
        self.assertEqual(action.notes, "GP visited")
        self.assertGreaterEqual(action.completed_at, before)

        stored = self._stored()
        self.assertEqual(stored.status, MilestoneActionStatus.COMPLETED)
        self.assertIsNotNone(stored.completed_at)

    def test_supplied_completion_date_is_used(self):
        action = update_action_status(
            self.action_id,
            "completed",
            self.actor,
            self.org_id,
            completed_at="2026-01-08",
        )
        self.assertEqual(action.completed_at, datetime(2026, 1, 8, tzinfo=timezone.utc))
        self.assertEqual(self._stored().completed_at.date(), date(2026, 1, 8))

    def test_in_progress_keeps_existing_notes(self):
        update_action_status(
            self.action_id, "IN_PROGRESS", self.actor, self.org_id, notes="Left voicemail"
        )
        action = update_action_status(self.action_id, "IN_PROGRESS", self.actor, self.org_id)
        self.assertEqual(action.notes, "Left voicemail")
        self.assertIsNone(action.completed_at)
        self.assertEqual(action.completed_by, self.actor)

    def test_back_to_pending_clears_completion(self):
        update_action_status(
            self.action_id, "COMPLETED", self.actor, self.org_id, notes="done"
        )
        update_action_status(self.action_id, "PENDING", self.actor, self.org_id)

        stored = self._stored()
        self.assertEqual(stored.status, MilestoneActionStatus.PENDING)
        self.assertIsNone(stored.completed_at)
        self.assertIsNone(stored.completed_by)
        self.assertIsNone(stored.notes)

    def test_pending_ignores_supplied_notes_and_date(self):
        action = update_action_status(
            self.action_id,
            "PENDING",
            self.actor,
            self.org_id,
            notes="y",
            completed_at="2026-01-09",
        )
        self.assertEqual(action.status, MilestoneActionStatus.PENDING)
        self.assertIsNone(action.completed_at)
        self.assertIsNone(action.notes)
        self.assertIsNone(action.completed_by)

        stored = self._stored()
        self.assertIsNone(stored.completed_at)
        self.assertIsNone(stored.notes)
        self.assertIsNone(stored.completed_by)

    def test_update_is_audited(self):
        update_action_status(self.action_id, "IN_PROGRESS", self.actor, self.org_id)
        [audit] = self.fetch(AuditLog, entity_id=self.action_id)
        self.assertEqual(audit.entity, "milestone_action")
        self.assertEqual(audit.meta["fromStatus"], "PENDING")
        self.assertEqual(audit.meta["toStatus"], "IN_PROGRESS")

    def test_invalid_input_is_rejected_before_any_write(self):
        with self.assertRaises(ValidationError):
            update_action_status(self.action_id, "DONE", self.actor, self.org_id)
        with self.assertRaises(ValidationError):
            update_action_status(
                self.action_id, "COMPLETED", self.actor, self.org_id, completed_at="2026-02-30"
            )
        with self.assertRaises(ValidationError):
            update_action_status(
                self.action_id, "COMPLETED", self.actor, self.org_id, completed_at="2026/01/01"
            )
        self.assertEqual(self._stored().status, MilestoneActionStatus.PENDING)

    def test_action_in_other_organisation_is_not_found(self):
        other = self.add_organisation()
        with self.assertRaises(NotFoundError):
            update_action_status(self.action_id, "COMPLETED", self.actor, other)
        self.assertEqual(self._stored().status, MilestoneActionStatus.PENDING)

    def test_outstanding_lists_due_open_actions(self):
        update_action_status(self.action_id, "COMPLETED", self.actor, self.org_id)
        outstanding = list_outstanding_actions(self.org_id, today=date(2026, 1, 12))
        self.assertEqual(
            [a.milestone_key for a in outstanding], ["DAY_1", "DAY_7"]
        )


if __name__ == "__main__":
    unittest.main()
