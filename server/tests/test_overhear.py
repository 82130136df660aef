from __future__ import annotations

import unittest

from longwalk.config import CupidConfig, OverhearConfig
from longwalk.memory.store import Comprehension
from longwalk.sim.cupid import Cupid
from longwalk.sim.narrative import NarrativeKind
from longwalk.sim.overhear import OverhearPropagator, garble
from longwalk.sim.state import DialogueSession, Relationship, Stage, Turn

from fakes import make_agent, make_state


class OverhearTests(unittest.TestCase):
    def setUp(self) -> None:
        self.cupid = Cupid(CupidConfig())
        self.propagator = OverhearPropagator(OverhearConfig(), self.cupid)
        self.state = make_state(
            [
                make_agent("a", 0.0),
                make_agent("b", 1.0),
                make_agent("c", 1.0, 0.5, perceptiveness=100),
                make_agent("far", 30.0),
            ]
        )
        self.session = DialogueSession(
            id="dlg1",
            participants=("a", "b"),
            opened_tick=0,
            max_turns=6,
            visibility_radius=6.0,
            next_speaker="a",
        )

    def _say(self, speaker: str, text: str, sentiment: float) -> Turn:
        turn = Turn(speaker=speaker, text=text, tick=2, sentiment=sentiment)
        self.session.turns.append(turn)
        self.session.next_speaker = self.session.other(speaker)
        return turn

    def test_clarity_curve(self) -> None:
        self.assertAlmostEqual(self.propagator.clarity(0.0, 6.0, 50), 1.0)
        self.assertAlmostEqual(self.propagator.clarity(3.0, 6.0, 50), 0.5)
        self.assertEqual(self.propagator.clarity(7.0, 6.0, 100), 0.0)
        self.assertEqual(self.propagator.clarity(1.0, 0.0, 100), 0.0)

    def test_listener_gets_private_copy_and_session_is_untouched(self) -> None:
        turn = self._say("b", "I keep thinking about home tonight", 0.1)
        before = list(self.session.turns)

        heard = self.propagator.propagate(self.state, self.session, turn, 2)

        self.assertEqual(self.session.turns, before)
        self.assertEqual(self.session.next_speaker, "a")
        self.assertEqual([item.agent_id for item in heard], ["c"])
        self.assertIn(heard[0].comprehension, {Comprehension.FULL, Comprehension.PARTIAL})
        self.assertEqual(self.state.knowledge.count("c"), 1)
        self.assertEqual(self.state.knowledge.count("a"), 0)
        self.assertEqual(self.state.knowledge.count("far"), 0)
        overheard = [entry for entry in self.state.narrative.staged() if entry.kind is NarrativeKind.OVERHEARD]
        self.assertEqual(len(overheard), 1)
        self.assertEqual(overheard[0].agents, ("c", "b"))

    def test_warm_words_make_attached_listener_jealous(self) -> None:
        self.state.relationships[("a", "c")] = Relationship(key=("a", "c"), created_tick=0, stage=Stage.ATTRACTED, affinity=30.0)
        turn = self._say("b", "I'm so glad we walk together", 0.8)

        self.propagator.propagate(self.state, self.session, turn, 2)

        events = list(self.state.relationship_events)
        self.assertEqual(len(events), 1)
        self.assertEqual((events[0].a, events[0].b, events[0].kind), ("c", "a", "jealousy"))
        self.assertLess(events[0].outcome, 0.0)

    def test_harsh_words_spread_as_rumor_against_speaker(self) -> None:
        turn = self._say("a", "You are a liar and I hate you", -0.9)

        self.propagator.propagate(self.state, self.session, turn, 2)

        events = list(self.state.relationship_events)
        self.assertEqual([(event.a, event.b, event.kind) for event in events], [("c", "a", "rumor")])
        self.assertLess(self.propagator.opinion_of(self.state, "c", "a"), 0.0)

    def test_same_seed_gives_same_comprehension(self) -> None:
        results = []
        for _ in range(2):
            state = make_state([make_agent("a", 0.0), make_agent("b", 1.0), make_agent("c", 4.0)], seed=21)
            turn = Turn(speaker="a", text="one two three four five six", tick=2)
            heard = self.propagator.propagate(state, self.session, turn, 2)
            results.append([(item.comprehension, item.text) for item in heard])
        self.assertEqual(results[0], results[1])


class GarbleTests(unittest.TestCase):
    def test_deterministic_and_only_drops_words(self) -> None:
        text = "the road goes on and on and nobody knows where it ends"
        first = garble(text, 42)
        self.assertEqual(first, garble(text, 42))
        original = set(text.split())
        for word in first.split():
            self.assertTrue(word == "..." or word in original)

    def test_single_word_survives(self) -> None:
        self.assertEqual(garble("help", 7), "help")


if __name__ == "__main__":
    unittest.main()
