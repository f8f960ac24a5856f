import unittest
import uuid
from datetime import date, timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import DatabaseError

from db_support import TenantDBTestCase

from api.app.errors import (
    ImmutableRecordError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from api.app.models import AuditLog, CaseTransition, SicknessCase
from api.app.sickness_states import VALID_TRANSITIONS, SicknessAction, SicknessState
from api.app.tenancy import with_tenant
from api.app.workflow import check_long_term_threshold, transition


class TestTransition(TenantDBTestCase):
    def setUp(self):
        super().setUp()
        self.org_id = self.add_organisation()
        self.actor = uuid.uuid4()

    def _transition_count(self, case_id):
        with self.factory() as session:
            return session.execute(
                select(func.count())
                .select_from(CaseTransition)
                .where(CaseTransition.sickness_case_id == case_id)
            ).scalar_one()

    def test_acknowledge_moves_to_tracking_and_logs(self):
        case_id = self.add_case(self.org_id, start=date.today())

        case = transition(case_id, "acknowledge", self.actor, self.org_id, notes="Spoke to employee")

        self.assertEqual(case.status, SicknessState.TRACKING)
        [row] = self.fetch(CaseTransition, sickness_case_id=case_id)
        self.assertEqual(row.from_status, SicknessState.REPORTED)
        self.assertEqual(row.to_status, SicknessState.TRACKING)
        self.assertEqual(row.action, "acknowledge")
        self.assertEqual(row.performed_by, self.actor)
        self.assertEqual(row.notes, "Spoke to employee")

        [stored] = self.fetch(SicknessCase, id=case_id)
        self.assertEqual(stored.status, SicknessState.TRACKING)

        [audit] = self.fetch(AuditLog, entity_id=case_id, action="TRANSITION")
        self.assertEqual(audit.meta["fromStatus"], "REPORTED")
        self.assertEqual(audit.meta["toStatus"], "TRACKING")
        self.assertEqual(audit.meta["notes"], "(provided)")

    def test_full_lifecycle_appends_one_row_per_move(self):
        case_id = self.add_case(self.org_id, start=date.today())
        actions = [
            SicknessAction.ACKNOWLEDGE,
            SicknessAction.RECEIVE_FIT_NOTE,
            SicknessAction.RECEIVE_FIT_NOTE,
            SicknessAction.SCHEDULE_RTW,
            SicknessAction.COMPLETE_RTW,
            SicknessAction.CLOSE_CASE,
            SicknessAction.REOPEN,
        ]
        for action in actions:
            transition(case_id, action, self.actor, self.org_id)

        self.assertEqual(self._transition_count(case_id), len(actions))
        [stored] = self.fetch(SicknessCase, id=case_id)
        self.assertEqual(stored.status, SicknessState.TRACKING)

    def test_invalid_moves_change_nothing(self):
        for state in SicknessState:
            case_id = self.add_case(self.org_id, start=date.today(), status=state)
            for action in SicknessAction:
                if action in VALID_TRANSITIONS[state]:
                    continue
                with self.assertRaises(InvalidTransitionError):
                    transition(case_id, action, self.actor, self.org_id)
            [stored] = self.fetch(SicknessCase, id=case_id)
            self.assertEqual(stored.status, state)
            self.assertEqual(self._transition_count(case_id), 0)

    def test_unknown_action_is_validation_error(self):
        case_id = self.add_case(self.org_id, start=date.today())
        with self.assertRaises(ValidationError):
            transition(case_id, "escalate", self.actor, self.org_id)

    def test_case_in_other_organisation_is_not_found(self):
        other = self.add_organisation()
        case_id = self.add_case(other, start=date.today())
        with self.assertRaises(NotFoundError):
            transition(case_id, "acknowledge", self.actor, self.org_id)
        [stored] = self.fetch(SicknessCase, id=case_id)
        self.assertEqual(stored.status, SicknessState.REPORTED)

    def test_open_case_past_threshold_becomes_long_term(self):
        case_id = self.add_case(self.org_id, start=date.today() - timedelta(days=40))
        case = transition(case_id, "acknowledge", self.actor, self.org_id)
        self.assertTrue(case.is_long_term)

    def test_org_threshold_setting_is_respected(self):
        org_id = self.add_organisation(
            settings={"absenceTriggerThresholds": {"longTermDays": 60}}
        )
        case_id = self.add_case(org_id, start=date.today() - timedelta(days=40))
        case = transition(case_id, "acknowledge", self.actor, org_id)
        self.assertFalse(case.is_long_term)


class TestLongTermThreshold(TenantDBTestCase):
    def setUp(self):
        super().setUp()
        self.org_id = self.add_organisation()

    def _check(self, case_id, today=None):
        def work(s):
            case = s.session.get(SicknessCase, case_id)
            return check_long_term_threshold(s, case, today=today), case.is_long_term

        return with_tenant(self.org_id, False, work)

    def test_closed_case_under_threshold_clears_flag(self):
        case_id = self.add_case(
            self.org_id,
            start=date(2026, 1, 5),
            end=date(2026, 1, 9),
            working_days_lost=5,
            is_long_term=True,
        )
        changed, flag = self._check(case_id)
        self.assertIs(changed, False)
        self.assertFalse(flag)
        [stored] = self.fetch(SicknessCase, id=case_id)
        self.assertFalse(stored.is_long_term)

    def test_closed_case_uses_working_days(self):
        case_id = self.add_case(
            self.org_id,
            start=date(2026, 1, 5),
            end=date(2026, 2, 20),
            working_days_lost=35,
        )
        changed, flag = self._check(case_id)
        self.assertIs(changed, True)
        self.assertTrue(flag)

    def test_closed_case_without_working_days_is_skipped(self):
        case_id = self.add_case(
            self.org_id, start=date(2026, 1, 5), end=date(2026, 3, 1), is_long_term=False
        )
        changed, flag = self._check(case_id)
        self.assertIsNone(changed)
        self.assertFalse(flag)

    def test_open_case_counts_calendar_days(self):
        case_id = self.add_case(self.org_id, start=date(2026, 1, 1))
        changed, _ = self._check(case_id, today=date(2026, 1, 28))
        self.assertIsNone(changed)
        changed, flag = self._check(case_id, today=date(2026, 1, 29))
        self.assertIs(changed, True)
        self.assertTrue(flag)


class TestAppendOnlyLog(TenantDBTestCase):
    def setUp(self):
        super().setUp()
        self.org_id = self.add_organisation()
        self.case_id = self.add_case(self.org_id, start=date.today())
        transition(self.case_id, "acknowledge", uuid.uuid4(), self.org_id)

    def test_orm_update_is_rejected(self):
        with self.factory() as session:
            row = session.execute(select(CaseTransition)).scalar_one()
            row.notes = "edited"
            with self.assertRaises(ImmutableRecordError):
                session.flush()

    def test_orm_delete_is_rejected(self):
        with self.factory() as session:
            row = session.execute(select(CaseTransition)).scalar_one()
            session.delete(row)
            with self.assertRaises(ImmutableRecordError):
                session.flush()

    def test_core_update_and_delete_are_rejected(self):
        with self.factory() as session:
            with self.assertRaises(DatabaseError):
                session.execute(update(CaseTransition).values(notes="edited"))
            session.rollback()
            with self.assertRaises(DatabaseError):
                session.execute(delete(CaseTransition))
            session.rollback()
        self.assertEqual(len(self.fetch(CaseTransition, sickness_case_id=self.case_id)), 1)


if __name__ == "__main__":
    unittest.main()
