import unittest
import uuid

from db_support import TenantDBTestCase

from api.app import models
from api.app.errors import NotFoundError, ValidationError
from api.app.milestones import (
    DEFAULT_MILESTONES,
    FALLBACK_ACTION_TYPE,
    MilestoneDefault,
    action_type_for,
    get_effective_milestones,
    get_effective_milestones_with_guidance,
    get_guidance_for_milestone,
    get_guidance_map,
    reset_to_default,
    resolve_effective_milestones,
    suggested_action_for,
    upsert_org_guidance,
    upsert_org_milestone,
)
from api.app.schemas.sickness import MilestoneGuidanceRequest, MilestoneOverrideRequest


def _guidance(title: str) -> MilestoneGuidanceRequest:
    return MilestoneGuidanceRequest(
        action_title=title,
        manager_guidance="Call the employee.",
        suggested_text="Hi, how are you feeling?",
        instructions=["Call", "Log the call"],
        employee_view="Your manager will be in touch.",
    )


class TestResolution(unittest.TestCase):
    def test_defaults_only(self):
        resolved = resolve_effective_milestones(DEFAULT_MILESTONES, [])
        self.assertEqual(len(resolved), 19)
        self.assertEqual(resolved[0].milestone_key, "DAY_1")
        self.assertEqual(resolved[-1].milestone_key, "WEEK_52")
        offsets = [m.day_offset for m in resolved]
        self.assertEqual(offsets, sorted(offsets))
        self.assertFalse(any(m.is_overridden for m in resolved))

    def test_override_replaces_default_and_resorts(self):
        override = MilestoneDefault("DAY_3", "Day 20 - Late GP reminder", 20, "Moved")
        resolved = resolve_effective_milestones(DEFAULT_MILESTONES, [override])
        keys = [m.milestone_key for m in resolved]
        self.assertEqual(keys.count("DAY_3"), 1)
        day_3 = next(m for m in resolved if m.milestone_key == "DAY_3")
        self.assertEqual(day_3.label, "Day 20 - Late GP reminder")
        self.assertEqual(day_3.day_offset, 20)
        self.assertTrue(day_3.is_overridden)
        self.assertEqual(keys.index("DAY_3"), keys.index("WEEK_3") - 1)

    def test_inactive_override_hides_milestone(self):
        override = MilestoneDefault("WEEK_2", "Week 2 - Check-in", 14, "Off", is_active=False)
        resolved = resolve_effective_milestones(DEFAULT_MILESTONES, [override])
        self.assertNotIn("WEEK_2", [m.milestone_key for m in resolved])
        self.assertEqual(len(resolved), 18)

        everything = resolve_effective_milestones(
            DEFAULT_MILESTONES, [override], include_inactive=True
        )
        week_2 = next(m for m in everything if m.milestone_key == "WEEK_2")
        self.assertFalse(week_2.is_active)

    def test_override_without_default_is_dropped(self):
        override = MilestoneDefault("WEEK_99", "Made up", 700, "Nope")
        resolved = resolve_effective_milestones(DEFAULT_MILESTONES, [override])
        self.assertNotIn("WEEK_99", [m.milestone_key for m in resolved])

    def test_action_type_mapping(self):
        self.assertEqual(action_type_for("DAY_1"), "NOTIFICATION")
        self.assertEqual(action_type_for("WEEK_4"), "PROMPT")
        self.assertEqual(action_type_for("WEEK_52"), "REVIEW")
        self.assertEqual(action_type_for("CUSTOM_KEY"), FALLBACK_ACTION_TYPE)

    def test_suggested_workflow_action(self):
        resolved = {m.milestone_key: m for m in resolve_effective_milestones(DEFAULT_MILESTONES, [])}
        self.assertEqual(resolved["DAY_1"].suggested_action, "acknowledge")
        self.assertEqual(resolved["DAY_7"].suggested_action, "receive_fit_note")
        self.assertIsNone(resolved["WEEK_4"].suggested_action)
        self.assertIsNone(suggested_action_for("CUSTOM_KEY"))


class TestOverrides(TenantDBTestCase):
    def setUp(self):
        super().setUp()
        self.org_id = self.add_organisation()
        self.actor = uuid.uuid4()

    def test_builtin_catalog_when_table_is_empty(self):
        milestones = get_effective_milestones(self.org_id)
        self.assertEqual(len(milestones), len(DEFAULT_MILESTONES))

    def test_stored_defaults_win_over_builtin_catalog(self):
        with self.factory() as session, session.begin():
            session.add(
                models.MilestoneConfig(
                    milestone_key="DAY_1",
                    label="Day 1 - Stored",
                    day_offset=1,
                    description=None,
                    is_default=True,
                )
            )
        milestones = get_effective_milestones(self.org_id)
        self.assertEqual([m.label for m in milestones], ["Day 1 - Stored"])

    def test_upsert_twice_updates_one_row(self):
        upsert_org_milestone(
            self.org_id,
            "WEEK_2",
            MilestoneOverrideRequest(label="Week 2 - Call", day_offset=10),
            self.actor,
        )
        upsert_org_milestone(
            self.org_id,
            "WEEK_2",
            MilestoneOverrideRequest(label="Week 2 - Visit", day_offset=12),
            self.actor,
        )
        rows = self.fetch(models.MilestoneConfig, organisation_id=self.org_id)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].label, "Week 2 - Visit")

        week_2 = next(
            m for m in get_effective_milestones(self.org_id) if m.milestone_key == "WEEK_2"
        )
        self.assertEqual(week_2.day_offset, 12)
        self.assertTrue(week_2.is_overridden)

        audits = self.fetch(models.AuditLog, entity="milestone_config")
        self.assertEqual(sorted(a.action for a in audits), ["CREATE", "UPDATE"])

    def test_override_is_invisible_to_other_organisations(self):
        other = self.add_organisation()
        upsert_org_milestone(
            self.org_id,
            "DAY_3",
            MilestoneOverrideRequest(label="Hidden", day_offset=3, is_active=False),
            self.actor,
        )
        keys = [m.milestone_key for m in get_effective_milestones(other)]
        self.assertIn("DAY_3", keys)

    def test_unknown_key_is_rejected(self):
        with self.assertRaises(ValidationError):
            upsert_org_milestone(
                self.org_id,
                "WEEK_99",
                MilestoneOverrideRequest(label="Made up", day_offset=3),
                self.actor,
            )
        self.assertEqual(self.fetch(models.MilestoneConfig), [])

    def test_reset_deletes_override_and_guidance(self):
        upsert_org_milestone(
            self.org_id,
            "DAY_7",
            MilestoneOverrideRequest(
                label="Day 7 - Custom", day_offset=8, guidance=_guidance("Custom")
            ),
            self.actor,
        )
        self.assertEqual(len(self.fetch(models.MilestoneGuidance, organisation_id=self.org_id)), 1)

        reset_to_default(self.org_id, "DAY_7", self.actor)

        self.assertEqual(self.fetch(models.MilestoneConfig, organisation_id=self.org_id), [])
        self.assertEqual(self.fetch(models.MilestoneGuidance, organisation_id=self.org_id), [])
        day_7 = next(
            m for m in get_effective_milestones(self.org_id) if m.milestone_key == "DAY_7"
        )
        self.assertEqual(day_7.day_offset, 7)
        self.assertFalse(day_7.is_overridden)

    def test_reset_without_override(self):
        with self.assertRaises(ValidationError):
            reset_to_default(self.org_id, "DAY_7", self.actor)
        with self.assertRaises(NotFoundError):
            reset_to_default(self.org_id, "WEEK_99", self.actor)


class TestGuidance(TenantDBTestCase):
    def setUp(self):
        super().setUp()
        self.org_id = self.add_organisation()
        self.actor = uuid.uuid4()
        with self.factory() as session, session.begin():
            session.add(
                models.MilestoneGuidance(
                    milestone_key="DAY_1",
                    action_title="Default title",
                    manager_guidance="Default guidance",
                    suggested_text="Default text",
                    instructions=["Default step"],
                    employee_view="Default view",
                    is_default=True,
                )
            )

    def test_default_guidance_applies_until_overridden(self):
        self.assertEqual(
            get_guidance_for_milestone("DAY_1", self.org_id).action_title, "Default title"
        )
        self.assertIsNone(get_guidance_for_milestone("DAY_3", self.org_id))

        upsert_org_guidance(self.org_id, "DAY_1", _guidance("Org title"), self.actor)

        self.assertEqual(
            get_guidance_for_milestone("DAY_1", self.org_id).action_title, "Org title"
        )
        self.assertEqual(get_guidance_map(self.org_id)["DAY_1"].action_title, "Org title")

        other = self.add_organisation()
        self.assertEqual(get_guidance_map(other)["DAY_1"].action_title, "Default title")

    def test_guidance_for_unknown_key_is_rejected(self):
        with self.assertRaises(ValidationError):
            upsert_org_guidance(self.org_id, "WEEK_99", _guidance("Nope"), self.actor)

    def test_milestones_with_guidance_flags_source(self):
        upsert_org_guidance(self.org_id, "DAY_3", _guidance("Org day 3"), self.actor)

        rows = {
            r.milestone.milestone_key: r
            for r in get_effective_milestones_with_guidance(self.org_id)
        }
        self.assertEqual(len(rows), len(DEFAULT_MILESTONES))
        self.assertTrue(rows["DAY_1"].guidance_is_default)
        self.assertEqual(rows["DAY_1"].guidance.action_title, "Default title")
        self.assertFalse(rows["DAY_3"].guidance_is_default)
        self.assertEqual(rows["DAY_3"].guidance.instructions, ["Call", "Log the call"])
        self.assertIsNone(rows["WEEK_2"].guidance)


if __name__ == "__main__":
    unittest.main()
