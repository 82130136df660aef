from __future__ import annotations

import heapq
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from longwalk.errors import RoutingFailure


@dataclass(frozen=True)
class RouteNode:
    id: str
    x: float
    y: float
    label: str = ""
    tags: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {"id": self.id, "x": self.x, "y": self.y, "label": self.label, "tags": list(self.tags)}


@dataclass(frozen=True)
class RouteGraph:
    """Immutable map of walkable nodes; edges are undirected."""

    nodes: Mapping[str, RouteNode]
    adjacency: Mapping[str, tuple[tuple[str, float], ...]] = field(default_factory=dict)

    @classmethod
    def build(cls, nodes: Iterable[RouteNode], edges: Iterable[tuple[str, str] | tuple[str, str, float]]) -> "RouteGraph":
        by_id: dict[str, RouteNode] = {}
        for node in nodes:
            if node.id in by_id:
                raise ValueError(f"duplicate route node {node.id!r}")
            by_id[node.id] = node

        neighbours: dict[str, dict[str, float]] = {node_id: {} for node_id in by_id}
        for edge in edges:
            a, b = edge[0], edge[1]
            if a not in by_id or b not in by_id:
                raise ValueError(f"edge references unknown node: {a!r} -> {b!r}")
            if a == b:
                continue
            cost = float(edge[2]) if len(edge) > 2 else _euclidean(by_id[a], by_id[b])
            if cost < 0:
                raise ValueError(f"negative edge cost {a!r} -> {b!r}")
            previous = neighbours[a].get(b)
            if previous is None or cost < previous:
                neighbours[a][b] = cost
                neighbours[b][a] = cost

        adjacency = {
            node_id: tuple(sorted(targets.items()))
            for node_id, targets in neighbours.items()
        }
        return cls(nodes=dict(by_id), adjacency=adjacency)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RouteGraph":
        nodes = [
            RouteNode(
                id=str(raw["id"]),
                x=float(raw["x"]),
                y=float(raw["y"]),
                label=str(raw.get("label", "")),
                tags=tuple(str(tag) for tag in raw.get("tags", [])),
            )
            for raw in payload.get("nodes", [])
        ]
        edges: list[tuple[str, str] | tuple[str, str, float]] = []
        for raw in payload.get("edges", []):
            if isinstance(raw, Mapping):
                if "cost" in raw:
                    edges.append((str(raw["a"]), str(raw["b"]), float(raw["cost"])))
                else:
                    edges.append((str(raw["a"]), str(raw["b"])))
            else:
                edges.append(tuple(raw))
        return cls.build(nodes, edges)

    def node(self, node_id: str) -> RouteNode:
        return self.nodes[node_id]

    def neighbours(self, node_id: str) -> tuple[tuple[str, float], ...]:
        return self.adjacency.get(node_id, ())

    def sorted_node_ids(self) -> list[str]:
        return sorted(self.nodes.keys())

    def path_cost(self, path: list[str]) -> float:
        total = 0.0
        for left, right in zip(path, path[1:]):
            total += dict(self.neighbours(left))[right]
        return total

    def shortest_path(self, source: str, destination: str) -> list[str]:
        if source not in self.nodes:
            raise RoutingFailure(source, destination, detail="unknown source node")
        if destination not in self.nodes:
            raise RoutingFailure(source, destination, detail="unknown destination node")
        if source == destination:
            return [source]

        # Heap keys compare (cost, path) so equal-cost routes resolve by node id order.
        frontier: list[tuple[float, tuple[str, ...]]] = [(0.0, (source,))]
        settled: set[str] = set()
        while frontier:
            cost, path = heapq.heappop(frontier)
            current = path[-1]
            if current in settled:
                continue
            settled.add(current)
            if current == destination:
                return list(path)
            for neighbour, edge_cost in self.neighbours(current):
                if neighbour in settled:
                    continue
                heapq.heappush(frontier, (cost + edge_cost, path + (neighbour,)))

        raise RoutingFailure(source, destination)

    def nearest_node(self, x: float, y: float) -> str:
        best_id = ""
        best_distance = math.inf
        for node_id in self.sorted_node_ids():
            node = self.nodes[node_id]
            distance = math.hypot(node.x - x, node.y - y)
            if distance < best_distance:
                best_distance = distance
                best_id = node_id
        return best_id

    def to_dict(self) -> dict:
        edges = []
        for node_id in self.sorted_node_ids():
            for neighbour, cost in self.neighbours(node_id):
                if node_id < neighbour:
                    edges.append({"a": node_id, "b": neighbour, "cost": round(cost, 3)})
        return {"nodes": [self.nodes[node_id].to_dict() for node_id in self.sorted_node_ids()], "edges": edges}


def _euclidean(a: RouteNode, b: RouteNode) -> float:
    return math.hypot(a.x - b.x, a.y - b.y)
