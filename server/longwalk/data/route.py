from __future__ import annotations

from longwalk.sim.route import RouteGraph, RouteNode


NODES = [
    RouteNode("n01", 0.0, 0.0, "Border crossing", ("start", "sparse")),
    RouteNode("n02", 8.0, 2.0, "Northern woods", ("woods",)),
    RouteNode("n03", 16.0, 0.0, "Pine clearing", ("woods", "rest")),
    RouteNode("n04", 24.0, 3.0, "Small town main street", ("town", "crowd")),
    RouteNode("n05", 24.0, -5.0, "Roadside vendors", ("town", "food")),
    RouteNode("n06", 32.0, 0.0, "Coastal hill climb", ("uphill",)),
    RouteNode("n07", 40.0, 4.0, "Hilltop overlook", ("uphill", "rest")),
    RouteNode("n08", 40.0, -4.0, "Rain belt", ("weather",)),
    RouteNode("n09", 48.0, 0.0, "Bridge", ("narrow",)),
    RouteNode("n10", 56.0, 0.0, "Southern stretch", ("sparse",)),
]

EDGES: list[tuple[str, str] | tuple[str, str, float]] = [
    ("n01", "n02"),
    ("n02", "n03"),
    ("n03", "n04"),
    ("n03", "n05"),
    ("n04", "n05"),
    ("n04", "n06"),
    ("n05", "n06"),
    ("n06", "n07"),
    ("n06", "n08"),
    ("n07", "n09"),
    ("n08", "n09"),
    ("n09", "n10"),
]


def default_route() -> RouteGraph:
    return RouteGraph.build(NODES, EDGES)
