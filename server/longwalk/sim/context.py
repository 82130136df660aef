from __future__ import annotations

import json
import logging
from typing import Any

from longwalk.config import ContextConfig
from longwalk.llm.agent_client import TaskKind
from longwalk.sim.state import Crisis, DialogueSession, Stage, WorldState


LOGGER = logging.getLogger("longwalk.sim.context")

TASK_DESCRIPTIONS: dict[TaskKind, str] = {
    TaskKind.PROPOSE: "Open a conversation with the walker beside you.",
    TaskKind.ACCEPT: "Another walker wants to talk. Decide whether to talk back.",
    TaskKind.DIALOGUE_TURN: "Say the next line in your conversation.",
    TaskKind.CRISIS_RESPONSE: "Something is going wrong on the road. Decide whether to step in.",
}


def _size(payload: dict[str, Any]) -> int:
    return len(json.dumps(payload, ensure_ascii=False))


class ContextBuilder:
    def __init__(self, config: ContextConfig | None = None) -> None:
        self.config = config or ContextConfig()

    def build(
        self,
        state: WorldState,
        task: TaskKind,
        actor_id: str,
        others: list[str] | tuple[str, ...] = (),
        extra: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        actor = state.agents[actor_id]
        involved = [actor_id, *others]
        payload: dict[str, Any] = {
            "task": {
                "kind": task.value,
                "tick": state.tick,
                "instructions": TASK_DESCRIPTIONS[task],
            },
            "actor": actor.to_profile(),
            "others": [self._other_view(state, actor_id, other_id) for other_id in others if state.has_agent(other_id)],
            "narrative": [
                {"tick": entry.tick, "kind": entry.kind.value, "text": entry.text}
                for entry in state.narrative.recent(self.config.narrative_limit, agent_ids=involved)
            ],
            "knowledge": [
                {
                    "tick": item.tick,
                    "speaker": state.agent_name(item.speaker),
                    "text": item.text,
                    "comprehension": item.comprehension.value,
                }
                for item in state.knowledge.recent(actor_id, self.config.knowledge_limit)
            ],
        }
        if extra:
            payload.update(extra)
        return self._trim(payload)

    def _other_view(self, state: WorldState, actor_id: str, other_id: str) -> dict[str, Any]:
        other = state.agents[other_id]
        relationship = state.relationship(actor_id, other_id)
        view = other.to_profile()
        view["relationship"] = {
            "stage": relationship.stage.value if relationship else Stage.UNACQUAINTED.value,
            "affinity": round(relationship.affinity, 1) if relationship else 0.0,
        }
        view["overheard_opinion"] = round(state.knowledge.opinion_of(actor_id, other_id), 2)
        return view

    def dialogue_extra(self, state: WorldState, session: DialogueSession) -> dict[str, Any]:
        tail = session.turns[-self.config.history_turns:]
        return {
            "dialogue": {
                "session_id": session.id,
                "opening_line": session.opening_line,
                "turns_left": max(0, session.max_turns - len(session.turns)),
                "history": [
                    {"speaker": state.agent_name(turn.speaker), "text": turn.text}
                    for turn in tail
                ],
            }
        }

    def crisis_extra(self, state: WorldState, crisis: Crisis, description: str) -> dict[str, Any]:
        return {
            "crisis": {
                "kind": crisis.kind,
                "title": crisis.title,
                "description": description,
                "severity": crisis.severity,
                "ticks_left": max(0, crisis.deadline_tick - state.tick),
                "helpers_needed": max(0, crisis.quota - crisis.qualifying_count()),
                "target": state.agent_name(crisis.target_agent) if crisis.target_agent else None,
            }
        }

    def _trim(self, payload: dict[str, Any]) -> dict[str, Any]:
        limit = self.config.max_context_chars
        if _size(payload) <= limit:
            return payload

        # Oldest items go first: narrative and knowledge are newest-first, history is chronological.
        droppable: list[tuple[list[Any], int]] = [
            (payload["narrative"], -1),
            (payload["knowledge"], -1),
        ]
        dialogue = payload.get("dialogue")
        if isinstance(dialogue, dict) and isinstance(dialogue.get("history"), list):
            droppable.append((dialogue["history"], 0))

        while _size(payload) > limit:
            candidates = [(items, index) for items, index in droppable if items]
            if not candidates:
                LOGGER.debug("Context still over budget after trimming: %s chars", _size(payload))
                break
            items, index = max(candidates, key=lambda row: len(row[0]))
            items.pop(index)
        return payload
