from __future__ import annotations

import random
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque

from longwalk.agents.agent import Agent
from longwalk.config import CrisisScript
from longwalk.memory.store import KnowledgeStore
from longwalk.sim.narrative import NarrativeTracker
from longwalk.sim.route import RouteGraph


PairKey = tuple[str, str]


def pair_key(a: str, b: str) -> PairKey:
    return (a, b) if a <= b else (b, a)


# --- Relationships -------------------------------------------------------


class Stage(str, Enum):
    UNACQUAINTED = "unacquainted"
    ACQUAINTED = "acquainted"
    ATTRACTED = "attracted"
    COMMITTED = "committed"
    BROKEN = "broken"


STAGE_ORDER = (Stage.UNACQUAINTED, Stage.ACQUAINTED, Stage.ATTRACTED, Stage.COMMITTED)


@dataclass(frozen=True)
class InteractionRecord:
    tick: int
    kind: str
    outcome: float
    ref: str | None = None


@dataclass
class Relationship:
    key: PairKey
    created_tick: int
    stage: Stage = Stage.UNACQUAINTED
    affinity: float = 0.0
    history: list[InteractionRecord] = field(default_factory=list)
    last_scored_tick: int = -1

    def to_dict(self) -> dict:
        return {
            "pair": list(self.key),
            "stage": self.stage.value,
            "affinity": round(self.affinity, 2),
            "interactions": len(self.history),
        }


@dataclass(frozen=True)
class RelationshipEvent:
    a: str
    b: str
    kind: str
    outcome: float
    ref: str | None = None


# --- Dialogue ------------------------------------------------------------


class DialogueEndReason(str, Enum):
    COMPLETED = "completed"
    MAX_TURNS = "max_turns"
    FAILED = "failed"
    INVALID = "invalid"


@dataclass(frozen=True)
class Turn:
    speaker: str
    text: str
    tick: int
    sentiment: float = 0.0
    fallback: bool = False

    def to_dict(self) -> dict:
        return {
            "speaker": self.speaker,
            "text": self.text,
            "tick": self.tick,
            "sentiment": round(self.sentiment, 3),
            "fallback": self.fallback,
        }


@dataclass
class DialogueSession:
    id: str
    participants: tuple[str, str]
    opened_tick: int
    max_turns: int
    visibility_radius: float
    next_speaker: str
    proposal_id: str | None = None
    opening_line: str = ""
    turns: list[Turn] = field(default_factory=list)
    attempts: int = 0
    fallback_turns: int = 0
    closed_tick: int | None = None
    close_reason: DialogueEndReason | None = None

    @property
    def open(self) -> bool:
        return self.close_reason is None

    def other(self, agent_id: str) -> str:
        a, b = self.participants
        return b if agent_id == a else a

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "participants": list(self.participants),
            "opened_tick": self.opened_tick,
            "opening_line": self.opening_line,
            "turns": [turn.to_dict() for turn in self.turns],
            "next_speaker": self.next_speaker if self.open else None,
            "closed_tick": self.closed_tick,
            "close_reason": self.close_reason.value if self.close_reason else None,
        }


# --- Approach ------------------------------------------------------------


class ProposalStatus(str, Enum):
    IDLE = "idle"
    PROPOSAL_SENT = "proposal_sent"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    DIALOGUE_OPEN = "dialogue_open"
    CLOSED = "closed"


@dataclass
class Proposal:
    id: str
    proposer: str
    target: str
    sent_tick: int
    status: ProposalStatus = ProposalStatus.PROPOSAL_SENT
    opening_line: str = ""
    session_id: str | None = None
    resolved_tick: int | None = None

    @property
    def key(self) -> PairKey:
        return pair_key(self.proposer, self.target)


# --- Crisis --------------------------------------------------------------


class CrisisState(str, Enum):
    DORMANT = "dormant"
    TRIGGERED = "triggered"
    ESCALATING = "escalating"
    RESOLVED = "resolved"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


ACTIVE_CRISIS_STATES = frozenset({CrisisState.TRIGGERED, CrisisState.ESCALATING})


@dataclass(frozen=True)
class CrisisResponse:
    agent_id: str
    tick: int
    qualifying: bool
    text: str
    fallback: bool = False


@dataclass
class Crisis:
    id: str
    kind: str
    title: str
    severity: int
    quota: int
    triggered_tick: int
    deadline_tick: int
    location: str | None = None
    target_agent: str | None = None
    state: CrisisState = CrisisState.DORMANT
    offered: set[str] = field(default_factory=set)
    responses: dict[str, CrisisResponse] = field(default_factory=dict)
    ended_tick: int | None = None

    @property
    def active(self) -> bool:
        return self.state in ACTIVE_CRISIS_STATES

    def qualifying_count(self) -> int:
        return sum(1 for response in self.responses.values() if response.qualifying)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "title": self.title,
            "severity": self.severity,
            "quota": self.quota,
            "state": self.state.value,
            "triggered_tick": self.triggered_tick,
            "deadline_tick": self.deadline_tick,
            "location": self.location,
            "target_agent": self.target_agent,
            "responders": sorted(agent_id for agent_id, r in self.responses.items() if r.qualifying),
        }


# --- Store ---------------------------------------------------------------


@dataclass
class WorldState:
    """Authoritative mutable world snapshot passed explicitly to every subsystem."""

    agents: dict[str, Agent]
    graph: RouteGraph
    narrative: NarrativeTracker
    knowledge: KnowledgeStore
    rng: random.Random
    relationships: dict[PairKey, Relationship] = field(default_factory=dict)
    sessions: dict[str, DialogueSession] = field(default_factory=dict)
    proposals: dict[str, Proposal] = field(default_factory=dict)
    crises: dict[str, Crisis] = field(default_factory=dict)
    cooldowns: dict[PairKey, int] = field(default_factory=dict)
    relationship_events: Deque[RelationshipEvent] = field(default_factory=deque)
    pending_crisis_scripts: list[CrisisScript] = field(default_factory=list)
    pending_retirements: list[str] = field(default_factory=list)
    tick: int = 0
    last_crisis_tick: int = -10_000
    _counters: dict[str, int] = field(default_factory=dict)

    def next_id(self, prefix: str) -> str:
        value = self._counters.get(prefix, 0) + 1
        self._counters[prefix] = value
        return f"{prefix}{value}"

    def ordered_agents(self) -> list[Agent]:
        return [self.agents[agent_id] for agent_id in sorted(self.agents)]

    def active_agents(self) -> list[Agent]:
        return [agent for agent in self.ordered_agents() if agent.active]

    def has_agent(self, agent_id: str | None) -> bool:
        return agent_id is not None and agent_id in self.agents

    def agent_name(self, agent_id: str | None) -> str:
        if agent_id is None:
            return "someone"
        agent = self.agents.get(agent_id)
        return agent.name if agent else agent_id

    def relationship(self, a: str, b: str) -> Relationship | None:
        return self.relationships.get(pair_key(a, b))

    def open_sessions(self) -> list[DialogueSession]:
        return [self.sessions[sid] for sid in sorted(self.sessions, key=id_order) if self.sessions[sid].open]

    def open_sessions_for(self, agent_id: str) -> list[DialogueSession]:
        return [session for session in self.open_sessions() if agent_id in session.participants]

    def active_crises(self) -> list[Crisis]:
        return [self.crises[cid] for cid in sorted(self.crises, key=id_order) if self.crises[cid].active]

    def queue_relationship_event(self, event: RelationshipEvent) -> None:
        self.relationship_events.append(event)

    def in_cooldown(self, a: str, b: str, tick: int) -> bool:
        return self.cooldowns.get(pair_key(a, b), -1) > tick

    def snapshot(self) -> dict[str, Any]:
        return {
            "tick": self.tick,
            "agents": [agent.to_state_payload() for agent in self.ordered_agents()],
            "dialogues": [session.to_dict() for session in self.open_sessions()],
            "relationships": [
                self.relationships[key].to_dict() for key in sorted(self.relationships)
            ],
            "crises": [crisis.to_dict() for crisis in self.active_crises()],
            "narrative_seq": self.narrative.next_seq,
        }


def id_order(entity_id: str) -> tuple[str, int]:
    prefix = entity_id.rstrip("0123456789")
    digits = entity_id[len(prefix):]
    return (prefix, int(digits) if digits else 0)
