from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass
class Vec2:
    x: float
    y: float = 0.0

    def to_dict(self) -> dict:
        return {"x": round(self.x, 2), "y": round(self.y, 2)}


class ActivityState(str, Enum):
    IDLE = "idle"
    WALKING = "walking"
    PROPOSING = "proposing"
    IN_DIALOGUE = "in_dialogue"
    INACTIVE = "inactive"


@dataclass(frozen=True)
class TraitProfile:
    sociability: int = 50
    warmth: int = 50
    curiosity: int = 50
    courage: int = 50
    volatility: int = 30
    perceptiveness: int = 50
    archetype: str = "walker"

    def to_dict(self) -> dict:
        return {
            "sociability": self.sociability,
            "warmth": self.warmth,
            "curiosity": self.curiosity,
            "courage": self.courage,
            "volatility": self.volatility,
            "perceptiveness": self.perceptiveness,
            "archetype": self.archetype,
        }


def mood_label(mood: int) -> str:
    if mood <= -60:
        return "despairing"
    if mood <= -20:
        return "low"
    if mood < 20:
        return "steady"
    if mood < 60:
        return "hopeful"
    return "elated"


@dataclass
class Agent:
    id: str
    name: str
    traits: TraitProfile
    position: Vec2
    location: str | None = None
    last_node: str | None = None
    destination: str | None = None
    path: list[str] = field(default_factory=list)
    activity: ActivityState = ActivityState.IDLE
    mood: int = 0
    idle_since: int = 0
    session_id: str | None = None
    proposal_id: str | None = None
    relationship_keys: set[tuple[str, str]] = field(default_factory=set)

    @property
    def active(self) -> bool:
        return self.activity is not ActivityState.INACTIVE

    @property
    def mood_label(self) -> str:
        return mood_label(self.mood)

    def adjust_mood(self, delta: int) -> None:
        self.mood = max(-100, min(100, self.mood + delta))

    def to_profile(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "traits": self.traits.to_dict(),
            "mood": self.mood,
            "mood_label": self.mood_label,
            "activity": self.activity.value,
        }

    def to_state_payload(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "pos": self.position.to_dict(),
            "location": self.location,
            "destination": self.destination,
            "activity": self.activity.value,
            "mood": self.mood,
            "mood_label": self.mood_label,
            "session_id": self.session_id,
        }
