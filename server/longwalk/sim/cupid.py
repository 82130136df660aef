from __future__ import annotations

import logging

from longwalk.agents.agent import TraitProfile
from longwalk.config import CupidConfig
from longwalk.errors import InvariantViolation
from longwalk.sim.narrative import NarrativeKind
from longwalk.sim.state import (
    STAGE_ORDER,
    InteractionRecord,
    PairKey,
    Relationship,
    RelationshipEvent,
    Stage,
    WorldState,
    pair_key,
)


LOGGER = logging.getLogger("longwalk.sim.cupid")

PARTNER_RETIRED = "partner_retired"

_SIMILARITY_TRAITS = ("sociability", "warmth", "curiosity", "courage")


def clamp(value: float, low: float = -100.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def compatibility(a: TraitProfile, b: TraitProfile) -> float:
    """Symmetric trait compatibility in [-50, 50]."""
    gaps = [abs(getattr(a, name) - getattr(b, name)) for name in _SIMILARITY_TRAITS]
    similarity = 1.0 - (sum(gaps) / len(gaps)) / 100.0
    warmth = (a.warmth + b.warmth) / 200.0
    friction = (a.volatility + b.volatility) / 200.0
    bonus = 5.0 if a.archetype == b.archetype else 0.0
    return clamp(40.0 * similarity + 20.0 * warmth - 25.0 * friction - 20.0 + bonus, -50.0, 50.0)


def score(relationship: Relationship, traits_a: TraitProfile, traits_b: TraitProfile, tick: int, config: CupidConfig) -> float:
    total = config.compatibility_weight * compatibility(traits_a, traits_b)
    for record in relationship.history:
        age = max(0, tick - record.tick)
        total += record.outcome * (config.decay ** age)
    return clamp(total)


def next_stage(stage: Stage, affinity: float, interactions: int, config: CupidConfig) -> Stage:
    """Move at most one stage per rescore; up and down thresholds differ."""
    if stage is Stage.BROKEN or affinity <= config.broken_threshold:
        return Stage.BROKEN

    index = STAGE_ORDER.index(stage)
    if index + 1 < len(STAGE_ORDER):
        candidate = STAGE_ORDER[index + 1]
        up, _down = config.thresholds[candidate.value]
        if affinity >= up and (candidate is not Stage.ACQUAINTED or interactions > 0):
            return candidate
    if index > 0:
        _up, down = config.thresholds[stage.value]
        if affinity < down:
            return STAGE_ORDER[index - 1]
    return stage


class Cupid:
    def __init__(self, config: CupidConfig) -> None:
        self.config = config

    def record(self, state: WorldState, a: str, b: str, kind: str, outcome: float, ref: str | None = None) -> None:
        state.queue_relationship_event(RelationshipEvent(a=a, b=b, kind=kind, outcome=outcome, ref=ref))

    def stage_of(self, state: WorldState, a: str, b: str) -> Stage:
        relationship = state.relationship(a, b)
        return relationship.stage if relationship else Stage.UNACQUAINTED

    def affinity_of(self, state: WorldState, a: str, b: str) -> float:
        relationship = state.relationship(a, b)
        return relationship.affinity if relationship else 0.0

    def partners(self, state: WorldState, agent_id: str, stages: set[Stage]) -> list[str]:
        agent = state.agents.get(agent_id)
        if agent is None:
            return []
        partners: list[str] = []
        for key in sorted(agent.relationship_keys):
            relationship = state.relationships.get(key)
            if relationship is None or relationship.stage not in stages:
                continue
            partners.append(key[1] if key[0] == agent_id else key[0])
        return partners

    def step(self, state: WorldState, tick: int) -> list[PairKey]:
        touched: set[PairKey] = set()
        heartbreaks: list[tuple[PairKey, str]] = []
        while state.relationship_events:
            event = state.relationship_events.popleft()
            try:
                relationship = self._ensure_relationship(state, event, tick)
            except InvariantViolation as exc:
                LOGGER.warning("Dropping relationship event: %s", exc)
                state.narrative.record(
                    tick,
                    NarrativeKind.DIAGNOSTIC,
                    [agent_id for agent_id in (event.a, event.b) if state.has_agent(agent_id)],
                    f"Relationship event discarded: {exc.detail}",
                    entity=exc.entity,
                )
                continue
            if relationship is None:
                continue
            if event.kind == PARTNER_RETIRED:
                heartbreaks.append((relationship.key, event.b))
                continue
            relationship.history.append(
                InteractionRecord(tick=tick, kind=event.kind, outcome=event.outcome, ref=event.ref)
            )
            if len(relationship.history) > self.config.history_limit:
                del relationship.history[: len(relationship.history) - self.config.history_limit]
            touched.add(relationship.key)

        for key in sorted(touched):
            self._rescore(state, state.relationships[key], tick)
        for key, retired_id in heartbreaks:
            self._heartbreak(state, state.relationships[key], retired_id, tick)
        return sorted(touched)

    def _ensure_relationship(self, state: WorldState, event: RelationshipEvent, tick: int) -> Relationship | None:
        if event.a == event.b:
            return None
        for agent_id in (event.a, event.b):
            if not state.has_agent(agent_id):
                raise InvariantViolation("relationship", f"unknown agent {agent_id!r}")
        key = pair_key(event.a, event.b)
        relationship = state.relationships.get(key)
        if relationship is not None:
            return relationship
        if event.kind == PARTNER_RETIRED:
            return None
        relationship = Relationship(key=key, created_tick=tick)
        state.relationships[key] = relationship
        state.agents[key[0]].relationship_keys.add(key)
        state.agents[key[1]].relationship_keys.add(key)
        return relationship

    def _rescore(self, state: WorldState, relationship: Relationship, tick: int) -> None:
        a, b = relationship.key
        relationship.affinity = score(
            relationship,
            state.agents[a].traits,
            state.agents[b].traits,
            tick,
            self.config,
        )
        relationship.last_scored_tick = tick
        previous = relationship.stage
        relationship.stage = next_stage(previous, relationship.affinity, len(relationship.history), self.config)
        if relationship.stage is previous:
            return
        LOGGER.debug("stage %s %s -> %s affinity=%.1f", relationship.key, previous.value, relationship.stage.value, relationship.affinity)
        state.narrative.record(
            tick,
            NarrativeKind.RELATIONSHIP,
            relationship.key,
            _stage_text(state.agent_name(a), state.agent_name(b), previous, relationship.stage),
            previous=previous.value,
            stage=relationship.stage.value,
            affinity=round(relationship.affinity, 2),
        )

    def _heartbreak(self, state: WorldState, relationship: Relationship, retired_id: str, tick: int) -> None:
        if relationship.stage not in {Stage.ATTRACTED, Stage.COMMITTED}:
            return
        survivor_id = relationship.key[0] if relationship.key[1] == retired_id else relationship.key[1]
        survivor = state.agents[survivor_id]
        previous = relationship.stage
        relationship.stage = Stage.BROKEN
        relationship.last_scored_tick = tick
        severity = 1.0 if previous is Stage.COMMITTED else 0.6
        survivor.adjust_mood(int(self.config.heartbreak_mood * severity))
        state.narrative.record(
            tick,
            NarrativeKind.HEARTBREAK,
            (survivor_id, retired_id),
            f"{survivor.name} looks back toward where {state.agent_name(retired_id)} was. A connection cut short.",
            previous=previous.value,
        )

    def nudge(self, state: WorldState, a: str, b: str) -> None:
        """Matchmaker push: a strong positive interaction applied at the next rescore."""
        self.record(state, a, b, "matchmaker", self.config.matchmaker_bonus)


def _stage_text(name_a: str, name_b: str, previous: Stage, stage: Stage) -> str:
    if stage is Stage.BROKEN:
        return f"Something has broken between {name_a} and {name_b}."
    if STAGE_ORDER.index(stage) > STAGE_ORDER.index(previous):
        if stage is Stage.ACQUAINTED:
            return f"{name_a} and {name_b} know each other's names now."
        if stage is Stage.ATTRACTED:
            return f"{name_a} and {name_b} keep finding reasons to walk side by side."
        return f"{name_a} and {name_b} exchange a look that says everything."
    return f"{name_a} and {name_b} drift a little further apart."
