from __future__ import annotations

import random
import threading
from collections.abc import Callable
from typing import Any

from longwalk.agents.agent import Agent, TraitProfile, Vec2
from longwalk.config import CrisisConfig, MovementConfig, SimulationConfig
from longwalk.errors import ServiceError
from longwalk.llm.agent_client import TaskKind
from longwalk.memory.store import KnowledgeStore
from longwalk.sim.engine import SimulationEngine
from longwalk.sim.narrative import NarrativeTracker
from longwalk.sim.route import RouteGraph, RouteNode
from longwalk.sim.state import WorldState


class ScriptedService:
    """In-process reasoning service answering from a handler function."""

    enabled = True

    def __init__(self, handler: Callable[[TaskKind, dict[str, Any]], dict[str, Any]]) -> None:
        self.handler = handler
        self.calls: list[tuple[TaskKind, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def complete(self, task: TaskKind, context: dict[str, Any], schema: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self.calls.append((task, context))
        return self.handler(task, context)

    def tasks(self) -> list[TaskKind]:
        return [task for task, _context in self.calls]


class FailingService:
    enabled = True

    def __init__(self, exc: Exception | None = None) -> None:
        self.exc = exc or ServiceError("upstream unavailable")
        self.calls = 0

    def complete(self, task: TaskKind, context: dict[str, Any], schema: dict[str, Any]) -> dict[str, Any]:
        self.calls += 1
        raise self.exc


def friendly_handler(task: TaskKind, context: dict[str, Any]) -> dict[str, Any]:
    if task is TaskKind.PROPOSE:
        return {"text": "Walk with me a while?"}
    if task is TaskKind.ACCEPT:
        return {"accept": True, "reason": "company helps", "text": "Sure."}
    if task is TaskKind.DIALOGUE_TURN:
        return {"utterance": "Glad you're here.", "end_conversation": False, "sentiment": 0.5}
    return {"respond": False, "action": None, "sentiment": 0.0}


def line_graph() -> RouteGraph:
    nodes = [
        RouteNode("n1", 0.0, 0.0, "Start"),
        RouteNode("n2", 2.0, 0.0, "Mile marker"),
        RouteNode("n3", 4.0, 0.0, "Bend"),
        RouteNode("n4", 50.0, 0.0, "Far camp"),
    ]
    return RouteGraph.build(nodes, [("n1", "n2"), ("n2", "n3"), ("n3", "n4")])


def make_agent(agent_id: str, x: float = 0.0, y: float = 0.0, location: str | None = None, **traits: Any) -> Agent:
    return Agent(
        id=agent_id,
        name=agent_id.upper(),
        traits=TraitProfile(**traits),
        position=Vec2(x, y),
        location=location,
        last_node=location,
    )


def make_state(agents: list[Agent], graph: RouteGraph | None = None, seed: int = 3) -> WorldState:
    return WorldState(
        agents={agent.id: agent for agent in agents},
        graph=graph or line_graph(),
        narrative=NarrativeTracker(200),
        knowledge=KnowledgeStore(),
        rng=random.Random(seed),
    )


def quiet_config(**overrides: Any) -> SimulationConfig:
    """Walkers stay put and no random crises fire."""
    config = SimulationConfig(
        seed=11,
        movement=MovementConfig(walk_speed=2.5, proximity_radius=3.0, idle_linger_ticks=10_000),
        crisis=CrisisConfig(chance_scale=0.0),
    )
    for name, value in overrides.items():
        setattr(config, name, value)
    return config


def make_engine(
    agents: list[Agent],
    service: Any = None,
    config: SimulationConfig | None = None,
    graph: RouteGraph | None = None,
) -> SimulationEngine:
    return SimulationEngine(
        config or quiet_config(),
        graph=graph or line_graph(),
        agents={agent.id: agent for agent in agents},
        service=service,
    )
