from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Any

from longwalk.agents.agent import Agent
from longwalk.config import CrisisScript, SimulationConfig
from longwalk.data.route import default_route
from longwalk.data.walkers import build_roster
from longwalk.llm.agent_client import AgentClient, DisabledReasoningService, OpenAIReasoningService, ReasoningService
from longwalk.memory.store import KnowledgeItem, KnowledgeStore
from longwalk.sim.approach import ApproachCoordinator
from longwalk.sim.context import ContextBuilder
from longwalk.sim.crisis import CrisisDirector
from longwalk.sim.cupid import Cupid
from longwalk.sim.dialogue import DialogueRunner
from longwalk.sim.movement import advance_walkers
from longwalk.sim.narrative import NarrativeEntry, NarrativeTracker
from longwalk.sim.overhear import OverhearPropagator
from longwalk.sim.route import RouteGraph
from longwalk.sim.state import PairKey, Stage, WorldState


LOGGER = logging.getLogger("longwalk.sim.engine")


@dataclass
class TickResult:
    tick: int
    entries: list[NarrativeEntry]
    touched_pairs: list[PairKey]


class SimulationEngine:
    """Owns the world state and runs the per-tick phases in a fixed order."""

    def __init__(
        self,
        config: SimulationConfig | None = None,
        *,
        graph: RouteGraph | None = None,
        agents: dict[str, Agent] | None = None,
        service: ReasoningService | None = None,
    ) -> None:
        self.config = config or SimulationConfig()
        graph = graph or default_route()
        agents = agents if agents is not None else build_roster(graph)
        for agent in agents.values():
            for node_id in (agent.location, agent.last_node):
                if node_id is not None and node_id not in graph.nodes:
                    raise ValueError(f"agent {agent.id} references unknown node {node_id!r}")

        self.state = WorldState(
            agents=agents,
            graph=graph,
            narrative=NarrativeTracker(self.config.narrative_history_limit),
            knowledge=KnowledgeStore(),
            rng=random.Random(self.config.seed),
            pending_crisis_scripts=list(self.config.crisis.schedule),
        )
        self.client = AgentClient(service or DisabledReasoningService(), self.config.agent_client)
        self.context = ContextBuilder(self.config.context)
        self.cupid = Cupid(self.config.cupid)
        self.overhear = OverhearPropagator(self.config.overhear, self.cupid)
        self.dialogue = DialogueRunner(self.config.dialogue, self.config.cupid, self.cupid, self.client, self.context)
        self.approach = ApproachCoordinator(
            self.config.approach,
            self.config.movement,
            self.cupid,
            self.dialogue,
            self.client,
            self.context,
        )
        self.crisis = CrisisDirector(self.config.crisis, self.cupid, self.client, self.context)
        # Guards world state for callers outside the ticking thread.
        self._lock = threading.RLock()

    @classmethod
    def from_env(cls) -> "SimulationEngine":
        service = OpenAIReasoningService.from_env()
        if not service.enabled:
            LOGGER.info("Reasoning service not configured; running on local fallbacks")
        return cls(SimulationConfig.from_env(), service=service)

    @property
    def tick(self) -> int:
        return self.state.tick

    def step(self) -> TickResult:
        with self._lock:
            state = self.state
            tick = state.tick

            advance_walkers(state, self.config.movement, tick)
            self.approach.step(state, tick)
            for session, turn in self.dialogue.step(state, tick):
                self.overhear.propagate(state, session, turn, tick)
            self.crisis.step(state, tick)
            touched = self.cupid.step(state, tick)
            entries = state.narrative.commit()

            state.tick += 1
        if entries:
            LOGGER.debug("tick=%s committed=%s touched=%s", tick, len(entries), len(touched))
        return TickResult(tick=tick, entries=entries, touched_pairs=touched)

    def advance(self, ticks: int = 1) -> list[NarrativeEntry]:
        if ticks < 0:
            raise ValueError("ticks must be non-negative")
        committed: list[NarrativeEntry] = []
        with self._lock:
            for _ in range(ticks):
                committed.extend(self.step().entries)
        return committed

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            payload = self.state.snapshot()
            payload["counters"] = {
                "proposals": len(self.state.proposals),
                "dialogues": len(self.state.sessions),
                "crises": len(self.state.crises),
                "relationships": len(self.state.relationships),
                "narrative_entries": len(self.state.narrative),
            }
            payload["agent_client"] = dict(self.client.stats)
        return payload

    def narrative(self, limit: int = 50, agent_id: str | None = None) -> list[NarrativeEntry]:
        with self._lock:
            return self.state.narrative.recent(limit, agent_ids=[agent_id] if agent_id else None)

    def entries_since(self, seq: int, agent_id: str | None = None) -> list[NarrativeEntry]:
        with self._lock:
            entries = self.state.narrative.since(seq)
        if agent_id is None:
            return entries
        return [entry for entry in entries if entry.involves(agent_id)]

    def agent_details(self, agent_id: str) -> dict[str, Any] | None:
        with self._lock:
            agent = self.state.agents.get(agent_id)
            if agent is None:
                return None
            payload = agent.to_state_payload()
            payload["traits"] = agent.traits.to_dict()
            payload["relationships"] = [
                self.state.relationships[key].to_dict()
                for key in sorted(agent.relationship_keys)
                if key in self.state.relationships
            ]
            payload["partners"] = self.cupid.partners(self.state, agent_id, {Stage.ATTRACTED, Stage.COMMITTED})
            payload["knowledge_items"] = self.state.knowledge.count(agent_id)
        return payload

    def recall(self, agent_id: str, query: str | None = None, limit: int = 10) -> list[KnowledgeItem]:
        """What an agent has overheard, newest first or ranked by overlap with `query`."""
        with self._lock:
            if agent_id not in self.state.agents:
                raise KeyError(agent_id)
            if query and query.strip():
                return self.state.knowledge.search(agent_id, query, limit)
            return self.state.knowledge.recent(agent_id, limit)

    def _require_active(self, agent_id: str) -> Agent:
        agent = self.state.agents.get(agent_id)
        if agent is None:
            raise KeyError(agent_id)
        if not agent.active:
            raise ValueError(f"{agent_id} is no longer walking")
        return agent

    def match_pair(self, a: str, b: str) -> None:
        if a == b:
            raise ValueError("cannot match a walker with themselves")
        with self._lock:
            self._require_active(a)
            self._require_active(b)
            self.cupid.nudge(self.state, a, b)

    def trigger_crisis(
        self,
        kind: str,
        *,
        severity: int | None = None,
        quota: int | None = None,
        deadline_ticks: int | None = None,
        location: str | None = None,
        target_agent: str | None = None,
    ) -> CrisisScript:
        if kind not in self.crisis.kinds:
            raise ValueError(f"unknown crisis kind {kind!r}")
        if location is not None and location not in self.state.graph.nodes:
            raise ValueError(f"unknown location {location!r}")
        with self._lock:
            if target_agent is not None:
                self._require_active(target_agent)
            script = CrisisScript(
                tick=self.state.tick,
                kind=kind,
                severity=severity,
                quota=quota,
                deadline_ticks=deadline_ticks,
                location=location,
                target_agent=target_agent,
            )
            self.state.pending_crisis_scripts.append(script)
        return script

    def retire_agent(self, agent_id: str) -> None:
        with self._lock:
            self._require_active(agent_id)
            if agent_id not in self.state.pending_retirements:
                self.state.pending_retirements.append(agent_id)

    def close(self) -> None:
        self.client.close()
