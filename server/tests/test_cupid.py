from __future__ import annotations

import unittest

from longwalk.agents.agent import TraitProfile
from longwalk.config import CupidConfig
from longwalk.sim.cupid import PARTNER_RETIRED, Cupid, compatibility, next_stage, score
from longwalk.sim.narrative import NarrativeKind
from longwalk.sim.state import InteractionRecord, Relationship, Stage

from fakes import make_agent, make_state


class CompatibilityTests(unittest.TestCase):
    def test_symmetric_and_bounded(self) -> None:
        profiles = [
            TraitProfile(),
            TraitProfile(sociability=0, warmth=0, curiosity=0, courage=0, volatility=100, archetype="x"),
            TraitProfile(sociability=100, warmth=100, curiosity=100, courage=100, volatility=0, archetype="y"),
        ]
        for left in profiles:
            for right in profiles:
                value = compatibility(left, right)
                self.assertEqual(value, compatibility(right, left))
                self.assertGreaterEqual(value, -50.0)
                self.assertLessEqual(value, 50.0)

    def test_identical_defaults(self) -> None:
        self.assertAlmostEqual(compatibility(TraitProfile(), TraitProfile()), 27.5)


class ScoreTests(unittest.TestCase):
    def test_outcomes_decay_with_age(self) -> None:
        config = CupidConfig(compatibility_weight=0.0, decay=0.9)
        relationship = Relationship(key=("a", "b"), created_tick=0)
        relationship.history.append(InteractionRecord(tick=0, kind="dialogue_closed", outcome=10.0))

        fresh = score(relationship, TraitProfile(), TraitProfile(), 0, config)
        aged = score(relationship, TraitProfile(), TraitProfile(), 10, config)

        self.assertAlmostEqual(fresh, 10.0)
        self.assertAlmostEqual(aged, 10.0 * 0.9 ** 10)

    def test_score_is_clamped(self) -> None:
        relationship = Relationship(key=("a", "b"), created_tick=0)
        relationship.history.append(InteractionRecord(tick=0, kind="matchmaker", outcome=500.0))
        self.assertEqual(score(relationship, TraitProfile(), TraitProfile(), 0, CupidConfig()), 100.0)


class StageTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config = CupidConfig()

    def test_acquaintance_needs_an_interaction(self) -> None:
        self.assertIs(next_stage(Stage.UNACQUAINTED, 0.0, 0, self.config), Stage.UNACQUAINTED)
        self.assertIs(next_stage(Stage.UNACQUAINTED, 0.0, 1, self.config), Stage.ACQUAINTED)

    def test_up_and_down_thresholds_differ(self) -> None:
        self.assertIs(next_stage(Stage.ACQUAINTED, 30.0, 3, self.config), Stage.ATTRACTED)
        # Between the attracted down-threshold (12) and up-threshold (25): no change either way.
        self.assertIs(next_stage(Stage.ATTRACTED, 20.0, 3, self.config), Stage.ATTRACTED)
        self.assertIs(next_stage(Stage.ACQUAINTED, 20.0, 3, self.config), Stage.ACQUAINTED)
        self.assertIs(next_stage(Stage.ATTRACTED, 10.0, 3, self.config), Stage.ACQUAINTED)

    def test_one_step_per_rescore_on_the_way_down(self) -> None:
        stage = Stage.COMMITTED
        seen = []
        for _ in range(4):
            stage = next_stage(stage, -50.0, 5, self.config)
            seen.append(stage)
        self.assertEqual(seen, [Stage.ATTRACTED, Stage.ACQUAINTED, Stage.UNACQUAINTED, Stage.UNACQUAINTED])

    def test_broken_is_absorbing(self) -> None:
        self.assertIs(next_stage(Stage.COMMITTED, -60.0, 5, self.config), Stage.BROKEN)
        self.assertIs(next_stage(Stage.BROKEN, 100.0, 5, self.config), Stage.BROKEN)


class CupidStepTests(unittest.TestCase):
    def setUp(self) -> None:
        self.cupid = Cupid(CupidConfig())
        self.state = make_state([make_agent("a"), make_agent("b"), make_agent("c")])

    def test_events_create_relationship_and_move_one_stage(self) -> None:
        self.cupid.record(self.state, "b", "a", "dialogue_closed", 20.0, ref="dlg1")
        touched = self.cupid.step(self.state, 0)

        self.assertEqual(touched, [("a", "b")])
        relationship = self.state.relationships[("a", "b")]
        self.assertAlmostEqual(relationship.affinity, 33.75)
        self.assertIs(relationship.stage, Stage.ACQUAINTED)
        self.assertIn(("a", "b"), self.state.agents["a"].relationship_keys)

        self.cupid.record(self.state, "a", "b", "dialogue_closed", 0.0)
        self.cupid.step(self.state, 1)
        self.assertIs(relationship.stage, Stage.ATTRACTED)
        kinds = [entry.kind for entry in self.state.narrative.staged()]
        self.assertEqual(kinds, [NarrativeKind.RELATIONSHIP, NarrativeKind.RELATIONSHIP])

    def test_untouched_pairs_are_not_rescored(self) -> None:
        self.cupid.record(self.state, "a", "b", "dialogue_closed", 5.0)
        self.cupid.step(self.state, 0)
        self.cupid.record(self.state, "a", "c", "dialogue_closed", 5.0)
        touched = self.cupid.step(self.state, 9)

        self.assertEqual(touched, [("a", "c")])
        self.assertEqual(self.state.relationships[("a", "b")].last_scored_tick, 0)

    def test_unknown_agent_event_is_dropped_with_diagnostic(self) -> None:
        self.cupid.record(self.state, "a", "ghost", "rumor", -3.0)
        self.assertEqual(self.cupid.step(self.state, 0), [])
        self.assertEqual(self.state.relationships, {})
        self.assertEqual(self.state.narrative.staged()[-1].kind, NarrativeKind.DIAGNOSTIC)

    def test_partner_retirement_breaks_attached_pairs(self) -> None:
        relationship = Relationship(key=("a", "b"), created_tick=0, stage=Stage.ATTRACTED, affinity=30.0)
        self.state.relationships[("a", "b")] = relationship
        self.state.agents["a"].relationship_keys.add(("a", "b"))
        self.state.agents["b"].relationship_keys.add(("a", "b"))

        self.cupid.record(self.state, "a", "b", PARTNER_RETIRED, 0.0)
        self.cupid.step(self.state, 4)

        self.assertIs(relationship.stage, Stage.BROKEN)
        self.assertEqual(self.state.agents["a"].mood, -15)
        self.assertEqual(self.state.narrative.staged()[-1].kind, NarrativeKind.HEARTBREAK)

    def test_partner_retirement_ignores_strangers(self) -> None:
        self.cupid.record(self.state, "a", "c", PARTNER_RETIRED, 0.0)
        self.cupid.step(self.state, 0)
        self.assertNotIn(("a", "c"), self.state.relationships)

    def test_nudge_queues_matchmaker_bonus(self) -> None:
        self.cupid.nudge(self.state, "a", "c")
        self.cupid.step(self.state, 0)
        history = self.state.relationships[("a", "c")].history
        self.assertEqual([(record.kind, record.outcome) for record in history], [("matchmaker", 12.0)])


if __name__ == "__main__":
    unittest.main()
