from __future__ import annotations

import unittest

from longwalk.data.route import default_route
from longwalk.errors import RoutingFailure
from longwalk.sim.route import RouteGraph, RouteNode


def _square() -> RouteGraph:
    nodes = [
        RouteNode("a", 0.0, 0.0),
        RouteNode("b", 1.0, 1.0),
        RouteNode("c", 1.0, -1.0),
        RouteNode("d", 2.0, 0.0),
        RouteNode("island", 9.0, 9.0),
    ]
    edges = [("a", "c", 1.0), ("a", "b", 1.0), ("b", "d", 1.0), ("c", "d", 1.0)]
    return RouteGraph.build(nodes, edges)


class RouteGraphTests(unittest.TestCase):
    def test_equal_cost_paths_resolve_by_node_id_order(self) -> None:
        graph = _square()
        self.assertEqual(graph.shortest_path("a", "d"), ["a", "b", "d"])
        self.assertEqual(graph.shortest_path("d", "a"), ["d", "b", "a"])

    def test_cheaper_longer_path_wins(self) -> None:
        nodes = [RouteNode("a", 0.0, 0.0), RouteNode("b", 1.0, 0.0), RouteNode("c", 2.0, 0.0)]
        graph = RouteGraph.build(nodes, [("a", "c", 10.0), ("a", "b", 2.0), ("b", "c", 2.0)])
        path = graph.shortest_path("a", "c")
        self.assertEqual(path, ["a", "b", "c"])
        self.assertAlmostEqual(graph.path_cost(path), 4.0)

    def test_default_edge_cost_is_euclidean(self) -> None:
        graph = RouteGraph.build([RouteNode("a", 0.0, 0.0), RouteNode("b", 3.0, 4.0)], [("a", "b")])
        self.assertAlmostEqual(graph.path_cost(["a", "b"]), 5.0)

    def test_same_node_path(self) -> None:
        self.assertEqual(_square().shortest_path("c", "c"), ["c"])

    def test_unreachable_destination_raises(self) -> None:
        with self.assertRaises(RoutingFailure) as ctx:
            _square().shortest_path("a", "island")
        self.assertEqual(ctx.exception.source, "a")
        self.assertEqual(ctx.exception.destination, "island")

    def test_unknown_nodes_raise(self) -> None:
        graph = _square()
        with self.assertRaises(RoutingFailure):
            graph.shortest_path("nowhere", "a")
        with self.assertRaises(RoutingFailure):
            graph.shortest_path("a", "nowhere")

    def test_build_rejects_bad_input(self) -> None:
        with self.assertRaises(ValueError):
            RouteGraph.build([RouteNode("a", 0, 0), RouteNode("a", 1, 1)], [])
        with self.assertRaises(ValueError):
            RouteGraph.build([RouteNode("a", 0, 0)], [("a", "ghost")])

    def test_dict_round_trip_keeps_paths(self) -> None:
        graph = default_route()
        restored = RouteGraph.from_dict(graph.to_dict())
        self.assertEqual(restored.sorted_node_ids(), graph.sorted_node_ids())
        self.assertEqual(restored.shortest_path("n01", "n10"), graph.shortest_path("n01", "n10"))

    def test_nearest_node(self) -> None:
        graph = _square()
        self.assertEqual(graph.nearest_node(1.9, 0.1), "d")

    def test_default_route_is_connected(self) -> None:
        graph = default_route()
        for node_id in graph.sorted_node_ids():
            path = graph.shortest_path("n01", node_id)
            self.assertEqual(path[0], "n01")
            self.assertEqual(path[-1], node_id)


if __name__ == "__main__":
    unittest.main()
