from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field


LOGGER = logging.getLogger("longwalk.config")


def clamp_int(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def clamp_float(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int, low: int, high: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        value = default
    return clamp_int(value, low, high)


def env_float(name: str, default: float, low: float, high: float) -> float:
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        value = default
    return clamp_float(value, low, high)


@dataclass
class MovementConfig:
    walk_speed: float = 2.5
    proximity_radius: float = 3.0
    idle_linger_ticks: int = 3

    @classmethod
    def from_env(cls) -> "MovementConfig":
        return cls(
            walk_speed=env_float("SIM_WALK_SPEED", 2.5, 0.1, 50.0),
            proximity_radius=env_float("SIM_PROXIMITY_RADIUS", 3.0, 0.0, 100.0),
            idle_linger_ticks=env_int("SIM_IDLE_LINGER_TICKS", 3, 0, 100),
        )


@dataclass
class ApproachConfig:
    propose_threshold: float = 5.0
    accept_threshold: float = 0.0
    decline_cooldown_ticks: int = 8
    affinity_weight: float = 0.3
    opinion_weight: float = 4.0
    stage_bonus: dict[str, float] = field(
        default_factory=lambda: {
            "unacquainted": 0.0,
            "acquainted": 4.0,
            "attracted": 10.0,
            "committed": 14.0,
        }
    )

    @classmethod
    def from_env(cls) -> "ApproachConfig":
        return cls(
            propose_threshold=env_float("APPROACH_PROPOSE_THRESHOLD", 5.0, -100.0, 100.0),
            accept_threshold=env_float("APPROACH_ACCEPT_THRESHOLD", 0.0, -100.0, 100.0),
            decline_cooldown_ticks=env_int("APPROACH_DECLINE_COOLDOWN_TICKS", 8, 0, 500),
            affinity_weight=env_float("APPROACH_AFFINITY_WEIGHT", 0.3, 0.0, 5.0),
            opinion_weight=env_float("APPROACH_OPINION_WEIGHT", 4.0, 0.0, 50.0),
        )


@dataclass
class DialogueConfig:
    max_turns: int = 6
    turn_retry_limit: int = 1
    max_fallback_turns: int = 4
    fallback_enabled: bool = True
    visibility_radius: float = 6.0
    rechat_cooldown_ticks: int = 12

    @classmethod
    def from_env(cls) -> "DialogueConfig":
        return cls(
            max_turns=env_int("DIALOGUE_MAX_TURNS", 6, 1, 40),
            turn_retry_limit=env_int("DIALOGUE_TURN_RETRY_LIMIT", 1, 0, 10),
            max_fallback_turns=env_int("DIALOGUE_MAX_FALLBACK_TURNS", 4, 0, 40),
            fallback_enabled=env_bool("DIALOGUE_FALLBACK_ENABLED", True),
            visibility_radius=env_float("DIALOGUE_VISIBILITY_RADIUS", 6.0, 0.0, 100.0),
            rechat_cooldown_ticks=env_int("DIALOGUE_RECHAT_COOLDOWN_TICKS", 12, 0, 1000),
        )


@dataclass
class OverhearConfig:
    distance_falloff: float = 1.0
    perception_base: float = 0.5
    full_share: float = 0.5
    jealousy_sentiment: float = 0.3
    jealousy_penalty: float = -6.0
    rumor_sentiment: float = -0.3
    rumor_penalty: float = -3.0

    @classmethod
    def from_env(cls) -> "OverhearConfig":
        return cls(
            distance_falloff=env_float("OVERHEAR_DISTANCE_FALLOFF", 1.0, 0.1, 8.0),
            perception_base=env_float("OVERHEAR_PERCEPTION_BASE", 0.5, 0.0, 2.0),
            full_share=env_float("OVERHEAR_FULL_SHARE", 0.5, 0.0, 1.0),
            jealousy_sentiment=env_float("OVERHEAR_JEALOUSY_SENTIMENT", 0.3, -1.0, 1.0),
            jealousy_penalty=env_float("OVERHEAR_JEALOUSY_PENALTY", -6.0, -50.0, 0.0),
            rumor_sentiment=env_float("OVERHEAR_RUMOR_SENTIMENT", -0.3, -1.0, 1.0),
            rumor_penalty=env_float("OVERHEAR_RUMOR_PENALTY", -3.0, -50.0, 0.0),
        )


@dataclass
class CrisisScript:
    tick: int
    kind: str
    severity: int | None = None
    quota: int | None = None
    deadline_ticks: int | None = None
    location: str | None = None
    target_agent: str | None = None


def parse_crisis_schedule(raw: str) -> list[CrisisScript]:
    scripts: list[CrisisScript] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk or ":" not in chunk:
            continue
        tick_raw, kind = chunk.split(":", 1)
        try:
            tick = int(tick_raw.strip())
        except ValueError:
            LOGGER.warning("Ignoring malformed crisis schedule entry %r", chunk)
            continue
        scripts.append(CrisisScript(tick=max(0, tick), kind=kind.strip()))
    return scripts


@dataclass
class CrisisConfig:
    max_active: int = 1
    min_gap_ticks: int = 10
    chance_scale: float = 1.0
    offers_per_tick: int = 2
    escalation_interval: int = 3
    max_severity: int = 5
    tension_affinity: float = -20.0
    tension_multiplier: float = 0.5
    co_response_bonus: float = 8.0
    failure_penalty: float = -5.0
    mood_delta: int = 10
    response_threshold: float = 40.0
    schedule: list[CrisisScript] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> "CrisisConfig":
        return cls(
            max_active=env_int("CRISIS_MAX_ACTIVE", 1, 0, 16),
            min_gap_ticks=env_int("CRISIS_MIN_GAP_TICKS", 10, 0, 1000),
            chance_scale=env_float("CRISIS_CHANCE_SCALE", 1.0, 0.0, 10.0),
            offers_per_tick=env_int("CRISIS_OFFERS_PER_TICK", 2, 1, 16),
            escalation_interval=env_int("CRISIS_ESCALATION_INTERVAL", 3, 1, 100),
            max_severity=env_int("CRISIS_MAX_SEVERITY", 5, 1, 10),
            tension_affinity=env_float("CRISIS_TENSION_AFFINITY", -20.0, -100.0, 100.0),
            tension_multiplier=env_float("CRISIS_TENSION_MULTIPLIER", 0.5, 0.0, 10.0),
            co_response_bonus=env_float("CRISIS_CO_RESPONSE_BONUS", 8.0, 0.0, 50.0),
            failure_penalty=env_float("CRISIS_FAILURE_PENALTY", -5.0, -50.0, 0.0),
            mood_delta=env_int("CRISIS_MOOD_DELTA", 10, 0, 50),
            response_threshold=env_float("CRISIS_RESPONSE_THRESHOLD", 40.0, -100.0, 200.0),
            schedule=parse_crisis_schedule(os.getenv("CRISIS_SCHEDULE", "")),
        )


@dataclass
class CupidConfig:
    compatibility_weight: float = 0.5
    outcome_weight: float = 10.0
    contact_bonus: float = 3.0
    matchmaker_bonus: float = 12.0
    heartbreak_mood: int = -25
    decay: float = 0.97
    history_limit: int = 64
    # (up, down) per non-terminal stage above unacquainted; up must exceed down.
    thresholds: dict[str, tuple[float, float]] = field(
        default_factory=lambda: {
            "acquainted": (-10.0, -30.0),
            "attracted": (25.0, 12.0),
            "committed": (55.0, 40.0),
        }
    )
    broken_threshold: float = -60.0

    @classmethod
    def from_env(cls) -> "CupidConfig":
        return cls(
            compatibility_weight=env_float("CUPID_COMPATIBILITY_WEIGHT", 0.5, 0.0, 5.0),
            outcome_weight=env_float("CUPID_OUTCOME_WEIGHT", 10.0, 0.0, 100.0),
            contact_bonus=env_float("CUPID_CONTACT_BONUS", 3.0, 0.0, 50.0),
            matchmaker_bonus=env_float("CUPID_MATCHMAKER_BONUS", 12.0, 0.0, 100.0),
            heartbreak_mood=env_int("CUPID_HEARTBREAK_MOOD", -25, -100, 0),
            decay=env_float("CUPID_DECAY", 0.97, 0.0, 1.0),
            history_limit=env_int("CUPID_HISTORY_LIMIT", 64, 4, 4096),
            broken_threshold=env_float("CUPID_BROKEN_THRESHOLD", -60.0, -100.0, 0.0),
        )


@dataclass
class ContextConfig:
    narrative_limit: int = 6
    knowledge_limit: int = 4
    history_turns: int = 8
    max_context_chars: int = 6000

    @classmethod
    def from_env(cls) -> "ContextConfig":
        return cls(
            narrative_limit=env_int("CONTEXT_NARRATIVE_LIMIT", 6, 0, 50),
            knowledge_limit=env_int("CONTEXT_KNOWLEDGE_LIMIT", 4, 0, 50),
            history_turns=env_int("CONTEXT_HISTORY_TURNS", 8, 1, 40),
            max_context_chars=env_int("CONTEXT_MAX_CHARS", 6000, 500, 100_000),
        )


@dataclass
class AgentClientConfig:
    timeout_sec: float = 20.0
    max_workers: int = 4

    @classmethod
    def from_env(cls) -> "AgentClientConfig":
        return cls(
            timeout_sec=env_float("AGENT_CLIENT_TIMEOUT_SEC", 20.0, 0.05, 180.0),
            max_workers=env_int("AGENT_CLIENT_MAX_WORKERS", 4, 1, 32),
        )


@dataclass
class SimulationConfig:
    seed: int = 7
    narrative_history_limit: int = 2000
    movement: MovementConfig = field(default_factory=MovementConfig)
    approach: ApproachConfig = field(default_factory=ApproachConfig)
    dialogue: DialogueConfig = field(default_factory=DialogueConfig)
    overhear: OverhearConfig = field(default_factory=OverhearConfig)
    crisis: CrisisConfig = field(default_factory=CrisisConfig)
    cupid: CupidConfig = field(default_factory=CupidConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    agent_client: AgentClientConfig = field(default_factory=AgentClientConfig)

    @classmethod
    def from_env(cls) -> "SimulationConfig":
        return cls(
            seed=env_int("SIM_SEED", 7, 0, 2**31 - 1),
            narrative_history_limit=env_int("SIM_NARRATIVE_HISTORY", 2000, 50, 100_000),
            movement=MovementConfig.from_env(),
            approach=ApproachConfig.from_env(),
            dialogue=DialogueConfig.from_env(),
            overhear=OverhearConfig.from_env(),
            crisis=CrisisConfig.from_env(),
            cupid=CupidConfig.from_env(),
            context=ContextConfig.from_env(),
            agent_client=AgentClientConfig.from_env(),
        )
