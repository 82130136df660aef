from __future__ import annotations

import logging

from longwalk.agents.agent import ActivityState
from longwalk.config import CupidConfig, DialogueConfig
from longwalk.errors import InvariantViolation
from longwalk.llm.agent_client import AgentClient, CallResult, CallToken, DialogueTurnDecision, ServiceRequest, TaskKind
from longwalk.sim.context import ContextBuilder
from longwalk.sim.cupid import Cupid
from longwalk.sim.narrative import NarrativeKind
from longwalk.sim.rules import text_sentiment
from longwalk.sim.state import (
    DialogueEndReason,
    DialogueSession,
    Proposal,
    ProposalStatus,
    Turn,
    WorldState,
    pair_key,
)
from longwalk.sim.templates import render, selector_for


LOGGER = logging.getLogger("longwalk.sim.dialogue")


class DialogueRunner:
    def __init__(
        self,
        config: DialogueConfig,
        cupid_config: CupidConfig,
        cupid: Cupid,
        client: AgentClient,
        context: ContextBuilder,
    ) -> None:
        self.config = config
        self.cupid_config = cupid_config
        self.cupid = cupid
        self.client = client
        self.context = context

    def open_session(self, state: WorldState, proposal: Proposal, tick: int) -> DialogueSession:
        for agent_id in (proposal.proposer, proposal.target):
            agent = state.agents.get(agent_id)
            if agent is None:
                raise InvariantViolation("dialogue", f"unknown agent {agent_id!r}")
            if not agent.active:
                raise InvariantViolation("dialogue", f"agent {agent_id!r} is inactive")
            if agent.session_id is not None:
                raise InvariantViolation("dialogue", f"agent {agent_id!r} already in session {agent.session_id}")

        session = DialogueSession(
            id=state.next_id("dlg"),
            participants=(proposal.proposer, proposal.target),
            opened_tick=tick,
            max_turns=self.config.max_turns,
            visibility_radius=self.config.visibility_radius,
            next_speaker=proposal.target,
            proposal_id=proposal.id,
            opening_line=proposal.opening_line,
        )
        state.sessions[session.id] = session
        for agent_id in session.participants:
            agent = state.agents[agent_id]
            agent.activity = ActivityState.IN_DIALOGUE
            agent.session_id = session.id
            agent.path = []
            agent.destination = None
        proposal.status = ProposalStatus.DIALOGUE_OPEN
        proposal.session_id = session.id
        LOGGER.debug("session %s opened %s tick=%s", session.id, session.participants, tick)
        return session

    def step(self, state: WorldState, tick: int) -> list[tuple[DialogueSession, Turn]]:
        live: list[DialogueSession] = []
        for session in state.open_sessions():
            if session.opened_tick >= tick:
                continue
            problem = self._validate(state, session)
            if problem is not None:
                self.close(state, session, DialogueEndReason.INVALID, tick, detail=problem)
                continue
            live.append(session)

        requests = [self._request(state, session) for session in live]
        results = self.client.dispatch(requests)

        spoken: list[tuple[DialogueSession, Turn]] = []
        for result in results:
            applied = self.apply(state, result, tick)
            if applied is not None:
                spoken.append(applied)
        return spoken

    def _request(self, state: WorldState, session: DialogueSession) -> ServiceRequest:
        speaker = session.next_speaker
        context = self.context.build(
            state,
            TaskKind.DIALOGUE_TURN,
            speaker,
            [session.other(speaker)],
            extra=self.context.dialogue_extra(state, session),
        )
        return ServiceRequest(
            token=CallToken("session", session.id, len(session.turns)),
            task=TaskKind.DIALOGUE_TURN,
            context=context,
        )

    def is_current(self, state: WorldState, token: CallToken) -> bool:
        session = state.sessions.get(token.owner_id)
        return (
            token.owner_kind == "session"
            and session is not None
            and session.open
            and len(session.turns) == token.version
        )

    def apply(self, state: WorldState, result: CallResult, tick: int) -> tuple[DialogueSession, Turn] | None:
        """Apply one turn result. Results for closed sessions or an advanced turn index are ignored."""
        if not self.is_current(state, result.token):
            LOGGER.debug("Discarding stale dialogue result token=%s", result.token)
            return None
        session = state.sessions[result.token.owner_id]
        speaker = session.next_speaker
        listener = session.other(speaker)

        if result.ok and isinstance(result.decision, DialogueTurnDecision):
            decision = result.decision
            sentiment = decision.sentiment if decision.sentiment is not None else text_sentiment(decision.utterance)
            turn = Turn(speaker=speaker, text=decision.utterance, tick=tick, sentiment=sentiment)
            ending = decision.end_conversation
        else:
            session.attempts += 1
            LOGGER.warning(
                "Dialogue turn failed session=%s speaker=%s attempt=%s failure=%s",
                session.id,
                speaker,
                session.attempts,
                result.failure.kind.value if result.failure else "unexpected decision",
            )
            if session.attempts <= self.config.turn_retry_limit:
                return None
            if not self.config.fallback_enabled or session.fallback_turns >= self.config.max_fallback_turns:
                self.close(state, session, DialogueEndReason.FAILED, tick)
                return None
            text = render(
                "dialogue_turn",
                selector_for(session.id, len(session.turns), tick),
                target_name=state.agent_name(listener),
                name=state.agent_name(speaker),
            )
            turn = Turn(speaker=speaker, text=text, tick=tick, sentiment=text_sentiment(text), fallback=True)
            session.fallback_turns += 1
            ending = False

        session.attempts = 0
        session.turns.append(turn)
        session.next_speaker = listener
        if ending:
            self.close(state, session, DialogueEndReason.COMPLETED, tick)
        elif len(session.turns) >= session.max_turns:
            self.close(state, session, DialogueEndReason.MAX_TURNS, tick)
        return session, turn

    def _validate(self, state: WorldState, session: DialogueSession) -> str | None:
        for agent_id in session.participants:
            agent = state.agents.get(agent_id)
            if agent is None:
                return f"unknown participant {agent_id!r}"
            if not agent.active:
                return f"participant {agent_id!r} is no longer walking"
            if agent.session_id != session.id:
                return f"participant {agent_id!r} is not reserved for this session"
        return None

    def close(
        self,
        state: WorldState,
        session: DialogueSession,
        reason: DialogueEndReason,
        tick: int,
        detail: str | None = None,
    ) -> None:
        if not session.open:
            return
        session.close_reason = reason
        session.closed_tick = tick
        for agent_id in session.participants:
            agent = state.agents.get(agent_id)
            if agent is None or agent.session_id != session.id:
                continue
            agent.session_id = None
            agent.proposal_id = None
            if agent.activity is ActivityState.IN_DIALOGUE:
                agent.activity = ActivityState.IDLE
                agent.idle_since = tick
        proposal = state.proposals.get(session.proposal_id) if session.proposal_id else None
        if proposal is not None:
            proposal.status = ProposalStatus.CLOSED

        a, b = session.participants
        if reason is DialogueEndReason.INVALID:
            LOGGER.warning("Force-closing session %s: %s", session.id, detail)
            state.narrative.record(
                tick,
                NarrativeKind.DIAGNOSTIC,
                [agent_id for agent_id in session.participants if state.has_agent(agent_id)],
                f"Conversation {session.id} was cut off: {detail}",
                session_id=session.id,
                reason=reason.value,
            )
            return

        mean_sentiment = (
            sum(turn.sentiment for turn in session.turns) / len(session.turns) if session.turns else 0.0
        )
        state.narrative.record(
            tick,
            NarrativeKind.DIALOGUE,
            session.participants,
            _summary_text(state.agent_name(a), state.agent_name(b), session, reason, mean_sentiment),
            session_id=session.id,
            reason=reason.value,
            turns=len(session.turns),
            fallback_turns=session.fallback_turns,
            mean_sentiment=round(mean_sentiment, 3),
        )
        state.cooldowns[pair_key(a, b)] = tick + self.config.rechat_cooldown_ticks
        if session.turns:
            outcome = self.cupid_config.contact_bonus + mean_sentiment * self.cupid_config.outcome_weight
            self.cupid.record(state, a, b, "dialogue_closed", outcome, ref=session.id)


def _summary_text(
    name_a: str,
    name_b: str,
    session: DialogueSession,
    reason: DialogueEndReason,
    mean_sentiment: float,
) -> str:
    if reason is DialogueEndReason.FAILED:
        return f"The conversation between {name_a} and {name_b} trails off into silence."
    if mean_sentiment >= 0.3:
        tone = "warmly"
    elif mean_sentiment <= -0.3:
        tone = "sharply"
    else:
        tone = "quietly"
    return f"{name_a} and {name_b} talked {tone} for {len(session.turns)} turns."
