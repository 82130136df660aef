from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque


LOGGER = logging.getLogger("longwalk.sim.narrative")


class NarrativeKind(str, Enum):
    PROPOSAL = "proposal"
    DECLINE = "decline"
    DIALOGUE = "dialogue"
    OVERHEARD = "overheard"
    RELATIONSHIP = "relationship"
    HEARTBREAK = "heartbreak"
    CRISIS_TRIGGERED = "crisis_triggered"
    CRISIS_ESCALATED = "crisis_escalated"
    CRISIS_RESPONSE = "crisis_response"
    CRISIS_RESOLVED = "crisis_resolved"
    CRISIS_FAILED = "crisis_failed"
    CRISIS_TIMED_OUT = "crisis_timed_out"
    RETIRED = "retired"
    DIAGNOSTIC = "diagnostic"


@dataclass(frozen=True)
class NarrativeEntry:
    seq: int
    tick: int
    kind: NarrativeKind
    agents: tuple[str, ...]
    text: str
    payload: dict[str, Any] = field(default_factory=dict)

    def involves(self, agent_id: str) -> bool:
        return agent_id in self.agents

    def to_dict(self) -> dict:
        return {
            "seq": self.seq,
            "tick": self.tick,
            "kind": self.kind.value,
            "agents": list(self.agents),
            "text": self.text,
            "payload": dict(self.payload),
        }


class NarrativeTracker:
    """Append-only log of significant events.

    Entries recorded during a tick are staged and only become visible to
    readers (context assembly, snapshots) once the engine commits them at the
    end of the tick.
    """

    def __init__(self, history_limit: int = 2000) -> None:
        self._log: Deque[NarrativeEntry] = deque(maxlen=max(50, history_limit))
        self._staged: list[NarrativeEntry] = []
        self._next_seq = 0

    @property
    def next_seq(self) -> int:
        return self._next_seq

    def record(
        self,
        tick: int,
        kind: NarrativeKind,
        agents: Iterable[str],
        text: str,
        **payload: Any,
    ) -> NarrativeEntry:
        entry = NarrativeEntry(
            seq=self._next_seq,
            tick=tick,
            kind=kind,
            agents=tuple(agents),
            text=text,
            payload=payload,
        )
        self._next_seq += 1
        self._staged.append(entry)
        if LOGGER.isEnabledFor(logging.DEBUG):
            LOGGER.debug("narrative staged tick=%s kind=%s text=%r", tick, kind.value, text[:120])
        return entry

    def staged(self) -> list[NarrativeEntry]:
        return list(self._staged)

    def commit(self) -> list[NarrativeEntry]:
        committed = self._staged
        self._staged = []
        self._log.extend(committed)
        return committed

    def recent(
        self,
        limit: int,
        agent_ids: Iterable[str] | None = None,
        kinds: Iterable[NarrativeKind] | None = None,
    ) -> list[NarrativeEntry]:
        if limit <= 0:
            return []
        wanted_agents = set(agent_ids) if agent_ids is not None else None
        wanted_kinds = set(kinds) if kinds is not None else None
        items: list[NarrativeEntry] = []
        for entry in reversed(self._log):
            if wanted_kinds is not None and entry.kind not in wanted_kinds:
                continue
            if wanted_agents is not None and not wanted_agents.intersection(entry.agents):
                continue
            items.append(entry)
            if len(items) >= limit:
                break
        return items

    def since(self, seq: int) -> list[NarrativeEntry]:
        return [entry for entry in self._log if entry.seq >= seq]

    def __len__(self) -> int:
        return len(self._log)
