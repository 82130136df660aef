from __future__ import annotations

from longwalk.agents.agent import Agent
from longwalk.config import ApproachConfig, CrisisConfig
from longwalk.memory.store import _tokenize
from longwalk.sim.state import Crisis, Stage


# Whole words only, inflections listed explicitly.
NEGATIVE_KEYWORDS = {
    "hate", "hated", "liar", "liars", "shut", "stupid", "leave", "die", "dies", "died", "dying",
    "never", "fault", "weak", "idiot", "sick",
}
POSITIVE_KEYWORDS = {
    "thank", "thanks", "friend", "friends", "glad", "home", "together", "help", "helped", "love",
    "loved", "hope", "hoping", "laugh", "laughed", "good", "kind",
}


def text_sentiment(text: str) -> float:
    words = _tokenize(text)
    pos = len(words & POSITIVE_KEYWORDS)
    neg = len(words & NEGATIVE_KEYWORDS)
    if pos == neg:
        return 0.0
    return max(-1.0, min(1.0, (pos - neg) / 3.0))


def pick_proposer(left: Agent, right: Agent) -> tuple[Agent, Agent]:
    if left.traits.sociability != right.traits.sociability:
        return (left, right) if left.traits.sociability > right.traits.sociability else (right, left)
    return (left, right) if left.id < right.id else (right, left)


def proposal_score(
    *,
    compatibility: float,
    stage: Stage,
    affinity: float,
    opinion: float,
    config: ApproachConfig,
) -> float | None:
    if stage is Stage.BROKEN:
        return None
    return (
        compatibility
        + config.stage_bonus.get(stage.value, 0.0)
        + affinity * config.affinity_weight
        + opinion * config.opinion_weight
    )


def accept_heuristic(
    target: Agent,
    *,
    compatibility: float,
    stage: Stage,
    affinity: float,
    opinion: float,
    config: ApproachConfig,
) -> bool:
    base = proposal_score(
        compatibility=compatibility,
        stage=stage,
        affinity=affinity,
        opinion=opinion,
        config=config,
    )
    if base is None:
        return False
    score = base + (target.traits.sociability - 50) / 5.0 + target.mood / 10.0
    return score >= config.accept_threshold


def crisis_response_score(agent: Agent, crisis: Crisis, affinity_to_target: float) -> float:
    return (
        agent.traits.courage * 0.6
        + agent.traits.warmth * 0.4
        + affinity_to_target / 4.0
        + agent.mood / 10.0
        - crisis.severity * 5.0
    )


def crisis_response_heuristic(agent: Agent, crisis: Crisis, affinity_to_target: float, config: CrisisConfig) -> bool:
    return crisis_response_score(agent, crisis, affinity_to_target) >= config.response_threshold
