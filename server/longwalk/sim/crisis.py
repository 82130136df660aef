from __future__ import annotations

import logging
from dataclasses import dataclass
from itertools import combinations

from longwalk.agents.agent import ActivityState, Agent
from longwalk.config import CrisisConfig, CrisisScript
from longwalk.llm.agent_client import (
    AgentClient,
    CallToken,
    CrisisResponseDecision,
    ServiceRequest,
    TaskKind,
)
from longwalk.sim.context import ContextBuilder
from longwalk.sim.cupid import PARTNER_RETIRED, Cupid
from longwalk.sim.narrative import NarrativeKind
from longwalk.sim.rules import crisis_response_heuristic
from longwalk.sim.state import Crisis, CrisisResponse, CrisisState, Stage, WorldState
from longwalk.sim.templates import render, selector_for


LOGGER = logging.getLogger("longwalk.sim.crisis")


@dataclass(frozen=True)
class CrisisKind:
    kind: str
    title: str
    description: str
    base_chance: float
    severity: int
    quota: int
    deadline_ticks: int
    min_tick: int = 0
    targeted: bool = False


CRISIS_KINDS: dict[str, CrisisKind] = {
    "stumble": CrisisKind(
        kind="stumble",
        title="STUMBLE",
        description="{target} catches a foot on a crack in the road and pitches forward.",
        base_chance=0.02,
        severity=2,
        quota=1,
        deadline_ticks=3,
        min_tick=10,
        targeted=True,
    ),
    "falling_asleep": CrisisKind(
        kind="falling_asleep",
        title="FALLING ASLEEP",
        description="{target} is walking with eyes half shut, drifting toward the shoulder.",
        base_chance=0.015,
        severity=2,
        quota=1,
        deadline_ticks=4,
        min_tick=20,
        targeted=True,
    ),
    "cramp_lockup": CrisisKind(
        kind="cramp_lockup",
        title="CRAMP",
        description="{target}'s calf locks up mid-stride. They can barely keep pace.",
        base_chance=0.015,
        severity=3,
        quota=2,
        deadline_ticks=4,
        min_tick=30,
        targeted=True,
    ),
    "storm": CrisisKind(
        kind="storm",
        title="STORM",
        description="Rain comes sideways across {location}. Nobody can see the road.",
        base_chance=0.01,
        severity=3,
        quota=2,
        deadline_ticks=6,
        min_tick=15,
    ),
    "cold_night": CrisisKind(
        kind="cold_night",
        title="COLD NIGHT",
        description="The temperature drops near {location}. Walkers start to shiver and slow.",
        base_chance=0.01,
        severity=2,
        quota=3,
        deadline_ticks=8,
        min_tick=25,
    ),
}

_ENDINGS = {
    CrisisState.RESOLVED: NarrativeKind.CRISIS_RESOLVED,
    CrisisState.FAILED: NarrativeKind.CRISIS_FAILED,
    CrisisState.TIMED_OUT: NarrativeKind.CRISIS_TIMED_OUT,
}


class CrisisDirector:
    def __init__(
        self,
        config: CrisisConfig,
        cupid: Cupid,
        client: AgentClient,
        context: ContextBuilder,
        kinds: dict[str, CrisisKind] | None = None,
    ) -> None:
        self.config = config
        self.cupid = cupid
        self.client = client
        self.context = context
        self.kinds = kinds or CRISIS_KINDS

    def step(self, state: WorldState, tick: int) -> None:
        while state.pending_retirements:
            self.retire(state, state.pending_retirements.pop(0), tick, reason="withdrew from the walk")
        for crisis in state.active_crises():
            if crisis.triggered_tick < tick:
                self._advance(state, crisis, tick)
        self._evaluate_triggers(state, tick)

    def describe(self, state: WorldState, crisis: Crisis) -> str:
        kind_info = self.kinds.get(crisis.kind)
        template = kind_info.description if kind_info else "Something goes wrong near {location}."
        location = state.graph.node(crisis.location).label if crisis.location in state.graph.nodes else "the road"
        return template.format(target=state.agent_name(crisis.target_agent), location=location)

    # --- retirement -------------------------------------------------------

    def retire(self, state: WorldState, agent_id: str, tick: int, reason: str) -> bool:
        agent = state.agents.get(agent_id)
        if agent is None or not agent.active:
            LOGGER.warning("Ignoring retirement of %s: unknown or already inactive", agent_id)
            return False
        agent.activity = ActivityState.INACTIVE
        agent.path = []
        agent.destination = None
        for key in sorted(agent.relationship_keys):
            partner = key[1] if key[0] == agent_id else key[0]
            self.cupid.record(state, partner, agent_id, PARTNER_RETIRED, 0.0)
        state.narrative.record(
            tick,
            NarrativeKind.RETIRED,
            (agent_id,),
            f"{agent.name} {reason}.",
            reason=reason,
        )
        return True

    # --- active crises ----------------------------------------------------

    def eligible(self, state: WorldState, crisis: Crisis, agent: Agent) -> bool:
        return (
            agent.active
            and agent.activity is not ActivityState.IN_DIALOGUE
            and agent.id != crisis.target_agent
            and agent.id not in crisis.responses
        )

    def _offer_order(self, state: WorldState, crisis: Crisis) -> list[Agent]:
        candidates = [agent for agent in state.active_agents() if self.eligible(state, crisis, agent)]
        if crisis.target_agent is None:
            return candidates
        return sorted(
            candidates,
            key=lambda agent: (-self.cupid.affinity_of(state, agent.id, crisis.target_agent), agent.id),
        )

    def _advance(self, state: WorldState, crisis: Crisis, tick: int) -> None:
        offered = self._offer_order(state, crisis)[: self.config.offers_per_tick]
        description = self.describe(state, crisis)
        requests: list[ServiceRequest] = []
        for agent in offered:
            crisis.offered.add(agent.id)
            others = [crisis.target_agent] if crisis.target_agent and state.has_agent(crisis.target_agent) else []
            requests.append(
                ServiceRequest(
                    token=CallToken("crisis", f"{crisis.id}:{agent.id}", tick),
                    task=TaskKind.CRISIS_RESPONSE,
                    context=self.context.build(
                        state,
                        TaskKind.CRISIS_RESPONSE,
                        agent.id,
                        others,
                        extra=self.context.crisis_extra(state, crisis, description),
                    ),
                )
            )

        for agent, result in zip(offered, self.client.dispatch(requests)):
            if not self.is_current(state, result.token):
                LOGGER.debug("Discarding stale crisis response token=%s", result.token)
                continue
            if result.ok and isinstance(result.decision, CrisisResponseDecision):
                qualifying = result.decision.respond
                text = (result.decision.action or "").strip()
                fallback = False
            else:
                affinity = self.cupid.affinity_of(state, agent.id, crisis.target_agent) if crisis.target_agent else 0.0
                qualifying = crisis_response_heuristic(agent, crisis, affinity, self.config)
                text = ""
                fallback = True
            if not text:
                text = render(
                    "crisis_help" if qualifying else "crisis_hold_back",
                    selector_for(crisis.id, agent.id, tick),
                )
            crisis.responses[agent.id] = CrisisResponse(
                agent_id=agent.id,
                tick=tick,
                qualifying=qualifying,
                text=text,
                fallback=fallback,
            )
            if qualifying:
                state.narrative.record(
                    tick,
                    NarrativeKind.CRISIS_RESPONSE,
                    (agent.id,) + ((crisis.target_agent,) if crisis.target_agent else ()),
                    f"{agent.name} steps in: \"{text}\"",
                    crisis_id=crisis.id,
                )
            if crisis.qualifying_count() >= crisis.quota:
                self._finish(state, crisis, CrisisState.RESOLVED, tick)
                return

        if tick >= crisis.deadline_tick:
            outcome = CrisisState.FAILED if crisis.qualifying_count() > 0 else CrisisState.TIMED_OUT
            self._finish(state, crisis, outcome, tick)
            return

        if crisis.state is CrisisState.TRIGGERED:
            crisis.state = CrisisState.ESCALATING
        elapsed = tick - crisis.triggered_tick
        if elapsed % self.config.escalation_interval == 0 and crisis.severity < self.config.max_severity:
            crisis.severity += 1
            state.narrative.record(
                tick,
                NarrativeKind.CRISIS_ESCALATED,
                (crisis.target_agent,) if crisis.target_agent else (),
                f"{crisis.title} gets worse. Severity {crisis.severity}.",
                crisis_id=crisis.id,
                severity=crisis.severity,
            )

    def is_current(self, state: WorldState, token: CallToken) -> bool:
        if token.owner_kind != "crisis" or ":" not in token.owner_id:
            return False
        crisis_id, agent_id = token.owner_id.split(":", 1)
        crisis = state.crises.get(crisis_id)
        agent = state.agents.get(agent_id)
        return crisis is not None and agent is not None and crisis.active and self.eligible(state, crisis, agent)

    def _finish(self, state: WorldState, crisis: Crisis, outcome: CrisisState, tick: int) -> None:
        crisis.state = outcome
        crisis.ended_tick = tick
        responders = sorted(agent_id for agent_id, r in crisis.responses.items() if r.qualifying)
        holdouts = sorted(agent_id for agent_id in crisis.offered if agent_id not in responders)
        target = crisis.target_agent

        if outcome is CrisisState.RESOLVED:
            for a, b in combinations(responders, 2):
                self.cupid.record(state, a, b, "crisis_co_response", self.config.co_response_bonus, ref=crisis.id)
            for helper in responders:
                if target:
                    self.cupid.record(state, helper, target, "crisis_rescue", self.config.co_response_bonus, ref=crisis.id)
                state.agents[helper].adjust_mood(self.config.mood_delta)
            if target and state.has_agent(target):
                state.agents[target].adjust_mood(self.config.mood_delta)
            text = f"{crisis.title} passes. {', '.join(state.agent_name(a) for a in responders)} got everyone through it."
        else:
            for helper in responders:
                for holdout in holdouts:
                    self.cupid.record(state, helper, holdout, "crisis_failed", self.config.failure_penalty, ref=crisis.id)
            if target:
                for holdout in holdouts:
                    self.cupid.record(state, target, holdout, "crisis_abandoned", self.config.failure_penalty, ref=crisis.id)
            if not responders:
                for a, b in combinations(holdouts, 2):
                    self.cupid.record(state, a, b, "crisis_failed", self.config.failure_penalty, ref=crisis.id)
            for agent_id in sorted(crisis.offered | ({target} if target else set())):
                agent = state.agents.get(agent_id)
                if agent is not None and agent.active:
                    agent.adjust_mood(-self.config.mood_delta)
            if outcome is CrisisState.FAILED:
                text = f"{crisis.title}: not enough help came in time."
            else:
                text = f"{crisis.title}: nobody stepped in."

        involved = tuple(responders) + ((target,) if target else ())
        state.narrative.record(
            tick,
            _ENDINGS[outcome],
            involved,
            text,
            crisis_id=crisis.id,
            responders=responders,
            severity=crisis.severity,
        )
        LOGGER.info("crisis %s ended state=%s tick=%s responders=%s", crisis.id, outcome.value, tick, responders)
        if outcome is not CrisisState.RESOLVED and target:
            self.retire(state, target, tick, reason=f"could not recover from the {crisis.title.lower()}")

    # --- triggers ---------------------------------------------------------

    def tension(self, state: WorldState) -> int:
        return sum(
            1
            for relationship in state.relationships.values()
            if relationship.stage is not Stage.BROKEN and relationship.affinity < self.config.tension_affinity
        )

    def _evaluate_triggers(self, state: WorldState, tick: int) -> None:
        due = [script for script in state.pending_crisis_scripts if script.tick <= tick]
        for script in due:
            if len(state.active_crises()) >= self.config.max_active:
                break
            state.pending_crisis_scripts.remove(script)
            self.trigger(state, script, tick)

        if len(state.active_crises()) >= self.config.max_active:
            return
        if tick - state.last_crisis_tick < self.config.min_gap_ticks:
            return
        multiplier = 1.0 + self.tension(state) * self.config.tension_multiplier
        for kind_info in self.kinds.values():
            if tick < kind_info.min_tick:
                continue
            chance = kind_info.base_chance * self.config.chance_scale * multiplier
            if chance <= 0 or state.rng.random() >= chance:
                continue
            if self.trigger(state, CrisisScript(tick=tick, kind=kind_info.kind), tick) is not None:
                break

    def trigger(self, state: WorldState, script: CrisisScript, tick: int) -> Crisis | None:
        kind_info = self.kinds.get(script.kind)
        if kind_info is None:
            LOGGER.warning("Unknown crisis kind %r, ignoring", script.kind)
            return None

        target_id = script.target_agent
        if kind_info.targeted and target_id is None:
            candidates = [
                agent.id
                for agent in state.active_agents()
                if agent.activity is not ActivityState.IN_DIALOGUE
            ]
            if not candidates:
                return None
            target_id = state.rng.choice(candidates)
        if target_id is not None:
            target = state.agents.get(target_id)
            if target is None or not target.active:
                LOGGER.warning("Crisis %s target %r is not an active walker", script.kind, target_id)
                return None

        location = script.location
        if location is None:
            if target_id is not None:
                target = state.agents[target_id]
                location = target.location or target.last_node or state.graph.nearest_node(target.position.x, target.position.y)
            else:
                location = state.rng.choice(state.graph.sorted_node_ids())

        severity = script.severity if script.severity is not None else kind_info.severity
        crisis = Crisis(
            id=state.next_id("crisis"),
            kind=kind_info.kind,
            title=kind_info.title,
            severity=max(1, min(self.config.max_severity, severity)),
            quota=max(1, script.quota if script.quota is not None else kind_info.quota),
            triggered_tick=tick,
            deadline_tick=tick + max(1, script.deadline_ticks if script.deadline_ticks is not None else kind_info.deadline_ticks),
            location=location,
            target_agent=target_id,
            state=CrisisState.TRIGGERED,
        )
        state.crises[crisis.id] = crisis
        state.last_crisis_tick = tick
        state.narrative.record(
            tick,
            NarrativeKind.CRISIS_TRIGGERED,
            (target_id,) if target_id else (),
            f"{crisis.title}. {self.describe(state, crisis)}",
            crisis_id=crisis.id,
            severity=crisis.severity,
            quota=crisis.quota,
            deadline_tick=crisis.deadline_tick,
        )
        LOGGER.info("crisis %s triggered kind=%s target=%s deadline=%s", crisis.id, crisis.kind, target_id, crisis.deadline_tick)
        return crisis
