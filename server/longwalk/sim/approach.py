from __future__ import annotations

import logging

from longwalk.agents.agent import ActivityState, Agent
from longwalk.config import ApproachConfig, MovementConfig
from longwalk.errors import InvariantViolation
from longwalk.llm.agent_client import (
    AcceptDecision,
    AgentClient,
    CallToken,
    ProposalLine,
    ServiceRequest,
    TaskKind,
)
from longwalk.sim.context import ContextBuilder
from longwalk.sim.cupid import Cupid, compatibility
from longwalk.sim.dialogue import DialogueRunner
from longwalk.sim.movement import proximity_pairs
from longwalk.sim.narrative import NarrativeKind
from longwalk.sim.rules import accept_heuristic, pick_proposer, proposal_score
from longwalk.sim.state import Proposal, ProposalStatus, WorldState, id_order
from longwalk.sim.templates import render, selector_for


LOGGER = logging.getLogger("longwalk.sim.approach")

_FREE = {ActivityState.IDLE, ActivityState.WALKING}


class ApproachCoordinator:
    """Turns proximity into conversations: propose on one tick, answer on the next."""

    def __init__(
        self,
        config: ApproachConfig,
        movement: MovementConfig,
        cupid: Cupid,
        dialogue: DialogueRunner,
        client: AgentClient,
        context: ContextBuilder,
    ) -> None:
        self.config = config
        self.movement = movement
        self.cupid = cupid
        self.dialogue = dialogue
        self.client = client
        self.context = context

    def step(self, state: WorldState, tick: int) -> None:
        self._resolve_pending(state, tick)
        self._send_proposals(state, tick)

    # --- resolution -------------------------------------------------------

    def pending(self, state: WorldState, tick: int) -> list[Proposal]:
        return [
            state.proposals[pid]
            for pid in sorted(state.proposals, key=id_order)
            if state.proposals[pid].status is ProposalStatus.PROPOSAL_SENT and state.proposals[pid].sent_tick < tick
        ]

    def _resolve_pending(self, state: WorldState, tick: int) -> None:
        live: list[Proposal] = []
        for proposal in self.pending(state, tick):
            problem = self._validate(state, proposal)
            if problem is not None:
                self._cancel(state, proposal, tick, problem)
                continue
            live.append(proposal)

        requests = [
            ServiceRequest(
                token=CallToken("proposal", proposal.id, 0),
                task=TaskKind.ACCEPT,
                context=self.context.build(
                    state,
                    TaskKind.ACCEPT,
                    proposal.target,
                    [proposal.proposer],
                    extra={
                        "proposal": {
                            "from": state.agent_name(proposal.proposer),
                            "opening_line": proposal.opening_line,
                        }
                    },
                ),
            )
            for proposal in live
        ]
        for proposal, result in zip(live, self.client.dispatch(requests)):
            if not self.is_current(state, result.token):
                LOGGER.debug("Discarding stale acceptance for %s", proposal.id)
                continue
            reply: str | None = None
            if result.ok and isinstance(result.decision, AcceptDecision):
                accepted = result.decision.accept
                reply = (result.decision.text or "").strip() or None
            else:
                accepted = self._accept_fallback(state, proposal)
            if accepted:
                self._accept(state, proposal, tick, reply)
            else:
                self._decline(state, proposal, tick, reply)

    def is_current(self, state: WorldState, token: CallToken) -> bool:
        proposal = state.proposals.get(token.owner_id)
        return (
            token.owner_kind == "proposal"
            and proposal is not None
            and proposal.status is ProposalStatus.PROPOSAL_SENT
            and self._validate(state, proposal) is None
        )

    def _validate(self, state: WorldState, proposal: Proposal) -> str | None:
        for agent_id in (proposal.proposer, proposal.target):
            agent = state.agents.get(agent_id)
            if agent is None:
                return f"unknown agent {agent_id!r}"
            if not agent.active:
                return f"{agent_id} is no longer walking"
            if agent.proposal_id != proposal.id or agent.activity is not ActivityState.PROPOSING:
                return f"{agent_id} is no longer reserved"
        return None

    def _accept_fallback(self, state: WorldState, proposal: Proposal) -> bool:
        target = state.agents[proposal.target]
        proposer = state.agents[proposal.proposer]
        return accept_heuristic(
            target,
            compatibility=compatibility(target.traits, proposer.traits),
            stage=self.cupid.stage_of(state, target.id, proposer.id),
            affinity=self.cupid.affinity_of(state, target.id, proposer.id),
            opinion=state.knowledge.opinion_of(target.id, proposer.id),
            config=self.config,
        )

    def _accept(self, state: WorldState, proposal: Proposal, tick: int, reply: str | None) -> None:
        proposal.status = ProposalStatus.ACCEPTED
        proposal.resolved_tick = tick
        try:
            self.dialogue.open_session(state, proposal, tick)
        except InvariantViolation as exc:
            self._cancel(state, proposal, tick, exc.detail)
            return
        proposer = state.agent_name(proposal.proposer)
        target = state.agent_name(proposal.target)
        text = f"{target} falls into step beside {proposer}."
        if reply:
            text = f"{text} \"{reply}\""
        state.narrative.record(
            tick,
            NarrativeKind.PROPOSAL,
            (proposal.proposer, proposal.target),
            text,
            proposal_id=proposal.id,
            status=ProposalStatus.ACCEPTED.value,
            session_id=proposal.session_id,
        )

    def _decline(self, state: WorldState, proposal: Proposal, tick: int, reply: str | None) -> None:
        proposal.status = ProposalStatus.DECLINED
        proposal.resolved_tick = tick
        self._release(state, proposal, tick)
        state.cooldowns[proposal.key] = tick + self.config.decline_cooldown_ticks
        line = reply or render(
            "decline",
            selector_for(proposal.id, tick),
            target_name=state.agent_name(proposal.proposer),
        )
        state.narrative.record(
            tick,
            NarrativeKind.DECLINE,
            (proposal.target, proposal.proposer),
            f"{state.agent_name(proposal.target)} waves {state.agent_name(proposal.proposer)} off: \"{line}\"",
            proposal_id=proposal.id,
        )

    def _cancel(self, state: WorldState, proposal: Proposal, tick: int, reason: str) -> None:
        LOGGER.warning("Cancelling proposal %s: %s", proposal.id, reason)
        proposal.status = ProposalStatus.CLOSED
        proposal.resolved_tick = tick
        self._release(state, proposal, tick)
        state.narrative.record(
            tick,
            NarrativeKind.DIAGNOSTIC,
            [agent_id for agent_id in (proposal.proposer, proposal.target) if state.has_agent(agent_id)],
            f"Proposal {proposal.id} dropped: {reason}",
            proposal_id=proposal.id,
        )

    def _release(self, state: WorldState, proposal: Proposal, tick: int) -> None:
        for agent_id in (proposal.proposer, proposal.target):
            agent = state.agents.get(agent_id)
            if agent is None or agent.proposal_id != proposal.id:
                continue
            agent.proposal_id = None
            if agent.activity is ActivityState.PROPOSING:
                agent.activity = ActivityState.IDLE
                agent.idle_since = tick

    # --- new proposals ----------------------------------------------------

    def _eligible(self, agent: Agent) -> bool:
        return agent.activity in _FREE and agent.proposal_id is None and agent.session_id is None

    def _send_proposals(self, state: WorldState, tick: int) -> None:
        reserved: set[str] = set()
        sent: list[Proposal] = []
        for left_id, right_id in proximity_pairs(state, self.movement.proximity_radius):
            if left_id in reserved or right_id in reserved:
                continue
            left = state.agents[left_id]
            right = state.agents[right_id]
            if not (self._eligible(left) and self._eligible(right)):
                continue
            if state.in_cooldown(left_id, right_id, tick):
                continue
            proposer, target = pick_proposer(left, right)
            score = proposal_score(
                compatibility=compatibility(proposer.traits, target.traits),
                stage=self.cupid.stage_of(state, proposer.id, target.id),
                affinity=self.cupid.affinity_of(state, proposer.id, target.id),
                opinion=state.knowledge.opinion_of(proposer.id, target.id),
                config=self.config,
            )
            if score is None or score < self.config.propose_threshold:
                continue

            proposal = Proposal(id=state.next_id("prop"), proposer=proposer.id, target=target.id, sent_tick=tick)
            state.proposals[proposal.id] = proposal
            for agent in (proposer, target):
                agent.activity = ActivityState.PROPOSING
                agent.proposal_id = proposal.id
                agent.path = []
                agent.destination = None
                reserved.add(agent.id)
            sent.append(proposal)
            LOGGER.debug("proposal %s %s -> %s score=%.1f", proposal.id, proposer.id, target.id, score)

        if not sent:
            return
        requests = [
            ServiceRequest(
                token=CallToken("proposal", proposal.id, 0),
                task=TaskKind.PROPOSE,
                context=self.context.build(state, TaskKind.PROPOSE, proposal.proposer, [proposal.target]),
            )
            for proposal in sent
        ]
        for proposal, result in zip(sent, self.client.dispatch(requests)):
            if not self.is_current(state, result.token):
                continue
            if result.ok and isinstance(result.decision, ProposalLine):
                proposal.opening_line = result.decision.text
            else:
                proposal.opening_line = render(
                    "propose",
                    selector_for(proposal.id, tick),
                    target_name=state.agent_name(proposal.target),
                )
            state.narrative.record(
                tick,
                NarrativeKind.PROPOSAL,
                (proposal.proposer, proposal.target),
                f"{state.agent_name(proposal.proposer)} drifts over to {state.agent_name(proposal.target)}: "
                f"\"{proposal.opening_line}\"",
                proposal_id=proposal.id,
                status=ProposalStatus.PROPOSAL_SENT.value,
            )
