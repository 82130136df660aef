from __future__ import annotations

import unittest

from longwalk.agents.agent import ActivityState, Vec2
from longwalk.config import MovementConfig
from longwalk.sim.movement import advance_walkers, pick_wander_destination, plan_route, proximity_pairs, step_towards
from longwalk.sim.route import RouteGraph, RouteNode

from fakes import make_agent, make_state


class StepGeometryTests(unittest.TestCase):
    def test_step_stops_short_of_target(self) -> None:
        point, leftover = step_towards(Vec2(0.0, 0.0), Vec2(10.0, 0.0), 2.5)
        self.assertAlmostEqual(point.x, 2.5)
        self.assertEqual(leftover, 0.0)

    def test_step_reports_unused_distance(self) -> None:
        point, leftover = step_towards(Vec2(0.0, 0.0), Vec2(0.0, 1.0), 2.5)
        self.assertEqual((point.x, point.y), (0.0, 1.0))
        self.assertAlmostEqual(leftover, 1.5)

    def test_wander_destination_is_deterministic_and_excludes_current(self) -> None:
        nodes = ["n1", "n2", "n3"]
        first = pick_wander_destination("w01", 12, nodes, exclude="n2")
        self.assertEqual(first, pick_wander_destination("w01", 12, nodes, exclude="n2"))
        self.assertNotEqual(first, "n2")
        self.assertIsNone(pick_wander_destination("w01", 12, ["n2"], exclude="n2"))


class WalkerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config = MovementConfig(walk_speed=2.5, proximity_radius=3.0, idle_linger_ticks=100)

    def test_walker_carries_leftover_distance_across_waypoints(self) -> None:
        agent = make_agent("a", 0.0, location="n1")
        state = make_state([agent])
        plan_route(agent, state.graph, "n3", 0)
        self.assertEqual(agent.path, ["n2", "n3"])
        self.assertIs(agent.activity, ActivityState.WALKING)

        advance_walkers(state, self.config, 0)
        self.assertAlmostEqual(agent.position.x, 2.5)
        self.assertEqual(agent.last_node, "n2")
        self.assertIsNone(agent.location)
        self.assertIs(agent.activity, ActivityState.WALKING)

        advance_walkers(state, self.config, 1)
        self.assertAlmostEqual(agent.position.x, 4.0)
        self.assertEqual(agent.location, "n3")
        self.assertIs(agent.activity, ActivityState.IDLE)
        self.assertEqual(agent.idle_since, 1)
        self.assertIsNone(agent.destination)

    def test_unreachable_goal_keeps_agent_idle(self) -> None:
        graph = RouteGraph.build(
            [RouteNode("n1", 0.0, 0.0), RouteNode("n2", 5.0, 0.0), RouteNode("n3", 9.0, 0.0)],
            [("n2", "n3")],
        )
        agent = make_agent("a", 0.0, location="n1")
        state = make_state([agent], graph=graph)
        config = MovementConfig(walk_speed=2.5, idle_linger_ticks=0)

        advance_walkers(state, config, 4)

        self.assertIs(agent.activity, ActivityState.IDLE)
        self.assertEqual(agent.path, [])
        self.assertIsNone(agent.destination)
        self.assertEqual(agent.idle_since, 4)

    def test_idle_agent_waits_out_linger_then_walks(self) -> None:
        agent = make_agent("a", 0.0, location="n1")
        state = make_state([agent])
        config = MovementConfig(walk_speed=2.5, idle_linger_ticks=3)

        advance_walkers(state, config, 2)
        self.assertIs(agent.activity, ActivityState.IDLE)

        advance_walkers(state, config, 3)
        self.assertIs(agent.activity, ActivityState.WALKING)
        self.assertIsNotNone(agent.destination)
        self.assertNotEqual(agent.destination, "n1")

    def test_busy_agents_do_not_move(self) -> None:
        agent = make_agent("a", 0.0, location="n1")
        state = make_state([agent])
        plan_route(agent, state.graph, "n3", 0)
        agent.activity = ActivityState.IN_DIALOGUE

        advance_walkers(state, self.config, 0)

        self.assertEqual(agent.position.x, 0.0)
        self.assertEqual(agent.path, ["n2", "n3"])


class ProximityTests(unittest.TestCase):
    def test_pairs_within_radius_sorted(self) -> None:
        state = make_state(
            [
                make_agent("c", 1.0),
                make_agent("a", 0.0),
                make_agent("b", 2.5),
                make_agent("far", 40.0),
            ]
        )
        self.assertEqual(proximity_pairs(state, 3.0), [("a", "b"), ("a", "c"), ("b", "c")])

    def test_same_node_counts_even_with_zero_radius(self) -> None:
        state = make_state([make_agent("a", 0.0, location="n1"), make_agent("b", 0.0, location="n1")])
        self.assertEqual(proximity_pairs(state, 0.0), [("a", "b")])

    def test_inactive_agents_are_ignored(self) -> None:
        retired = make_agent("b", 1.0)
        retired.activity = ActivityState.INACTIVE
        state = make_state([make_agent("a", 0.0), retired])
        self.assertEqual(proximity_pairs(state, 3.0), [])


if __name__ == "__main__":
    unittest.main()
