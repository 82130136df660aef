from __future__ import annotations

from longwalk.agents.agent import Agent, TraitProfile, Vec2
from longwalk.sim.route import RouteGraph


# (id, name, start node, mood, traits)
ROSTER: list[tuple[str, str, str, int, TraitProfile]] = [
    ("w01", "Garraty", "n01", 10, TraitProfile(sociability=70, warmth=75, curiosity=65, courage=55, volatility=35, perceptiveness=60, archetype="everyman")),
    ("w02", "McVries", "n01", -5, TraitProfile(sociability=65, warmth=55, curiosity=70, courage=80, volatility=55, perceptiveness=80, archetype="martyr")),
    ("w03", "Stebbins", "n02", 0, TraitProfile(sociability=15, warmth=20, curiosity=85, courage=60, volatility=20, perceptiveness=95, archetype="oracle")),
    ("w04", "Olson", "n02", 15, TraitProfile(sociability=80, warmth=30, curiosity=25, courage=40, volatility=80, perceptiveness=30, archetype="braggart")),
    ("w05", "Baker", "n03", 5, TraitProfile(sociability=55, warmth=80, curiosity=50, courage=60, volatility=15, perceptiveness=55, archetype="everyman")),
    ("w06", "Barkovitch", "n04", -20, TraitProfile(sociability=45, warmth=5, curiosity=40, courage=50, volatility=95, perceptiveness=60, archetype="antagonist")),
    ("w07", "Abraham", "n05", 0, TraitProfile(sociability=60, warmth=60, curiosity=55, courage=45, volatility=40, perceptiveness=45, archetype="joker")),
    ("w08", "Parker", "n05", -10, TraitProfile(sociability=40, warmth=35, curiosity=45, courage=75, volatility=70, perceptiveness=50, archetype="rebel")),
]


def build_roster(graph: RouteGraph) -> dict[str, Agent]:
    agents: dict[str, Agent] = {}
    for idx, (agent_id, name, node_id, mood, traits) in enumerate(ROSTER):
        node = graph.node(node_id)
        agents[agent_id] = Agent(
            id=agent_id,
            name=name,
            traits=traits,
            position=Vec2(node.x, node.y),
            location=node.id,
            last_node=node.id,
            mood=mood,
            idle_since=-idx,
        )
    return agents
