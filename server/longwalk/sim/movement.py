from __future__ import annotations

import logging
import math

from longwalk.agents.agent import ActivityState, Agent, Vec2
from longwalk.config import MovementConfig
from longwalk.errors import RoutingFailure
from longwalk.sim.route import RouteGraph
from longwalk.sim.state import PairKey, WorldState


LOGGER = logging.getLogger("longwalk.sim.movement")


def distance_2d(a: Vec2, b: Vec2) -> float:
    return math.sqrt((a.x - b.x) ** 2 + (a.y - b.y) ** 2)


def step_towards(current: Vec2, target: Vec2, max_step: float) -> tuple[Vec2, float]:
    """Move up to `max_step` towards `target`; returns the new point and unused distance."""
    dx = target.x - current.x
    dy = target.y - current.y
    distance = math.sqrt(dx * dx + dy * dy)
    if distance < 1e-6:
        return Vec2(target.x, target.y), max_step
    if max_step >= distance:
        return Vec2(target.x, target.y), max_step - distance

    ratio = max_step / distance
    return Vec2(current.x + dx * ratio, current.y + dy * ratio), 0.0


def pick_wander_destination(agent_id: str, tick: int, node_ids: list[str], exclude: str | None = None) -> str | None:
    candidates = [node_id for node_id in node_ids if node_id != exclude]
    if not candidates:
        return None
    seed = sum(ord(ch) for ch in agent_id) * 31 + tick * 17
    return candidates[seed % len(candidates)]


def plan_route(agent: Agent, graph: RouteGraph, destination: str, tick: int) -> None:
    origin = agent.location or agent.last_node or graph.nearest_node(agent.position.x, agent.position.y)
    path = graph.shortest_path(origin, destination)
    agent.destination = destination
    agent.path = path[1:] if agent.location == path[0] else path
    if not agent.path:
        agent.destination = None
        return
    agent.activity = ActivityState.WALKING


def _assign_goal(agent: Agent, graph: RouteGraph, config: MovementConfig, tick: int) -> None:
    if tick - agent.idle_since < config.idle_linger_ticks:
        return
    destination = pick_wander_destination(agent.id, tick, graph.sorted_node_ids(), exclude=agent.location)
    if destination is None:
        return
    try:
        plan_route(agent, graph, destination, tick)
    except RoutingFailure as exc:
        LOGGER.warning("Dropping goal for %s: %s", agent.id, exc)
        agent.destination = None
        agent.path = []
        agent.activity = ActivityState.IDLE
        agent.idle_since = tick


def _walk(agent: Agent, graph: RouteGraph, config: MovementConfig, tick: int) -> None:
    budget = config.walk_speed
    agent.location = None
    while agent.path and budget > 0:
        waypoint = graph.node(agent.path[0])
        agent.position, budget = step_towards(agent.position, Vec2(waypoint.x, waypoint.y), budget)
        if agent.position.x == waypoint.x and agent.position.y == waypoint.y:
            agent.last_node = waypoint.id
            agent.location = waypoint.id
            agent.path.pop(0)
            if agent.path:
                agent.location = None if budget > 0 else waypoint.id

    if not agent.path:
        agent.activity = ActivityState.IDLE
        agent.destination = None
        agent.idle_since = tick


def advance_walkers(state: WorldState, config: MovementConfig, tick: int) -> None:
    graph = state.graph
    for agent in state.ordered_agents():
        if agent.activity is ActivityState.IDLE:
            _assign_goal(agent, graph, config, tick)
        elif agent.activity is ActivityState.WALKING:
            _walk(agent, graph, config, tick)


def proximity_pairs(state: WorldState, radius: float) -> list[PairKey]:
    agents = state.active_agents()
    pairs: list[PairKey] = []
    for index, left in enumerate(agents):
        for right in agents[index + 1:]:
            same_node = left.location is not None and left.location == right.location
            if same_node or distance_2d(left.position, right.position) <= radius:
                pairs.append((left.id, right.id))
    return pairs
