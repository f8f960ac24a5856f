import os
import sys
import unittest


TEST_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if TEST_ROOT not in sys.path:
    sys.path.insert(0, TEST_ROOT)


from api.app.errors import InvalidTransitionError, ValidationError  # noqa: E402
from api.app.sickness_states import (  # noqa: E402
    MILESTONE_TRANSITIONS,
    VALID_TRANSITIONS,
    SicknessAction,
    SicknessState,
    get_available_actions,
    next_state,
    parse_action,
)


class TestTransitionTable(unittest.TestCase):
    def test_every_state_has_an_entry(self):
        for state in SicknessState:
            self.assertIn(state, VALID_TRANSITIONS)
            self.assertTrue(VALID_TRANSITIONS[state], f"{state} has no outgoing edge")

    def test_happy_path(self):
        path = [
            (SicknessAction.ACKNOWLEDGE, SicknessState.TRACKING),
            (SicknessAction.RECEIVE_FIT_NOTE, SicknessState.FIT_NOTE_RECEIVED),
            (SicknessAction.SCHEDULE_RTW, SicknessState.RTW_SCHEDULED),
            (SicknessAction.COMPLETE_RTW, SicknessState.RTW_COMPLETED),
            (SicknessAction.CLOSE_CASE, SicknessState.CLOSED),
            (SicknessAction.REOPEN, SicknessState.TRACKING),
        ]
        state = SicknessState.REPORTED
        for action, expected in path:
            state = next_state(state, action)
            self.assertEqual(state, expected)

    def test_renewed_fit_note_keeps_state(self):
        self.assertEqual(
            next_state(SicknessState.FIT_NOTE_RECEIVED, SicknessAction.RECEIVE_FIT_NOTE),
            SicknessState.FIT_NOTE_RECEIVED,
        )

    def test_tracking_can_skip_fit_note(self):
        self.assertEqual(
            next_state("TRACKING", "schedule_rtw"), SicknessState.RTW_SCHEDULED
        )

    def test_undefined_pairs_are_rejected(self):
        for state in SicknessState:
            for action in SicknessAction:
                if action in VALID_TRANSITIONS[state]:
                    continue
                with self.assertRaises(InvalidTransitionError) as ctx:
                    next_state(state, action)
                self.assertEqual(ctx.exception.action, action.value)
                self.assertEqual(ctx.exception.current_status, state.value)

    def test_error_message_names_action_and_state(self):
        with self.assertRaises(InvalidTransitionError) as ctx:
            next_state(SicknessState.REPORTED, SicknessAction.CLOSE_CASE)
        self.assertEqual(
            str(ctx.exception),
            "Invalid transition: cannot perform 'close_case' when case is in 'REPORTED' state",
        )


class TestLookups(unittest.TestCase):
    def test_available_actions(self):
        self.assertEqual(
            get_available_actions(SicknessState.TRACKING),
            [SicknessAction.RECEIVE_FIT_NOTE, SicknessAction.SCHEDULE_RTW],
        )
        self.assertEqual(get_available_actions("CLOSED"), [SicknessAction.REOPEN])

    def test_unknown_literals_fail_validation(self):
        with self.assertRaises(ValidationError):
            parse_action("escalate")
        with self.assertRaises(ValidationError):
            get_available_actions("ARCHIVED")

    def test_literals_are_normalised(self):
        self.assertEqual(parse_action(" Acknowledge "), SicknessAction.ACKNOWLEDGE)

    def test_milestone_suggestions(self):
        self.assertEqual(MILESTONE_TRANSITIONS["DAY_1"], SicknessAction.ACKNOWLEDGE)
        self.assertEqual(MILESTONE_TRANSITIONS["DAY_7"], SicknessAction.RECEIVE_FIT_NOTE)


if __name__ == "__main__":
    unittest.main()
