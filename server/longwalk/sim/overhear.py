from __future__ import annotations

import logging

from longwalk.config import OverhearConfig
from longwalk.memory.store import Comprehension, KnowledgeItem
from longwalk.sim.cupid import Cupid
from longwalk.sim.movement import distance_2d
from longwalk.sim.narrative import NarrativeKind
from longwalk.sim.state import DialogueSession, Stage, Turn, WorldState
from longwalk.sim.templates import mix_selector, selector_for


LOGGER = logging.getLogger("longwalk.sim.overhear")

_ATTACHED = {Stage.ATTRACTED, Stage.COMMITTED}


def garble(text: str, selector: int) -> str:
    """Drop roughly a third of the words, deterministically for a given selector."""
    words = text.split()
    if len(words) <= 1:
        return text
    kept: list[str] = []
    for index, word in enumerate(words):
        if mix_selector(selector + index) % 3 == 0:
            if not kept or kept[-1] != "...":
                kept.append("...")
            continue
        kept.append(word)
    if all(word == "..." for word in kept):
        kept[0] = words[0]
    return " ".join(kept)


class OverhearPropagator:
    def __init__(self, config: OverhearConfig, cupid: Cupid) -> None:
        self.config = config
        self.cupid = cupid

    def clarity(self, distance: float, radius: float, perceptiveness: int) -> float:
        if radius <= 0 or distance > radius:
            return 0.0
        proximity = max(0.0, 1.0 - distance / radius)
        value = (proximity ** self.config.distance_falloff) * (self.config.perception_base + perceptiveness / 100.0)
        return max(0.0, min(1.0, value))

    def propagate(self, state: WorldState, session: DialogueSession, turn: Turn, tick: int) -> list[KnowledgeItem]:
        speaker = state.agents.get(turn.speaker)
        if speaker is None or session.visibility_radius <= 0:
            return []

        heard: list[KnowledgeItem] = []
        for listener in state.active_agents():
            if listener.id in session.participants:
                continue
            distance = distance_2d(listener.position, speaker.position)
            if distance > session.visibility_radius:
                continue
            clarity = self.clarity(distance, session.visibility_radius, listener.traits.perceptiveness)
            roll = state.rng.random()
            if roll < clarity * self.config.full_share:
                comprehension = Comprehension.FULL
                text = turn.text
            elif roll < clarity:
                comprehension = Comprehension.PARTIAL
                text = garble(turn.text, selector_for(listener.id, session.id, turn.tick))
            else:
                continue

            item = state.knowledge.add(
                agent_id=listener.id,
                tick=tick,
                session_id=session.id,
                speaker=speaker.id,
                about=session.participants,
                text=text,
                comprehension=comprehension,
                sentiment=turn.sentiment,
            )
            heard.append(item)
            state.narrative.record(
                tick,
                NarrativeKind.OVERHEARD,
                (listener.id, speaker.id),
                f"{listener.name} overhears {speaker.name}: \"{text}\"",
                session_id=session.id,
                comprehension=comprehension.value,
                clarity=round(clarity, 3),
            )
            self._side_effects(state, session, turn, listener.id, comprehension)
        return heard

    def _side_effects(
        self,
        state: WorldState,
        session: DialogueSession,
        turn: Turn,
        listener_id: str,
        comprehension: Comprehension,
    ) -> None:
        weight = 1.0 if comprehension is Comprehension.FULL else 0.5
        if turn.sentiment >= self.config.jealousy_sentiment:
            for participant in session.participants:
                if self.cupid.stage_of(state, listener_id, participant) in _ATTACHED:
                    LOGGER.debug("jealousy listener=%s participant=%s session=%s", listener_id, participant, session.id)
                    self.cupid.record(
                        state,
                        listener_id,
                        participant,
                        "jealousy",
                        self.config.jealousy_penalty * weight,
                        ref=session.id,
                    )
        if turn.sentiment <= self.config.rumor_sentiment:
            self.cupid.record(
                state,
                listener_id,
                turn.speaker,
                "rumor",
                self.config.rumor_penalty * weight,
                ref=session.id,
            )

    def opinion_of(self, state: WorldState, listener_id: str, subject_id: str) -> float:
        return state.knowledge.opinion_of(listener_id, subject_id)
