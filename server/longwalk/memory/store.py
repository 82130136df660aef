from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque


_STOPWORDS = {
    "and",
    "the",
    "for",
    "with",
    "this",
    "that",
    "from",
    "have",
    "was",
    "were",
    "you",
    "your",
    "they",
    "them",
}

LOGGER = logging.getLogger("longwalk.memory.store")


def _tokenize(text: str) -> frozenset[str]:
    lowered = text.lower()
    cleaned = "".join(ch if ch.isalnum() else " " for ch in lowered)
    words = [word for word in cleaned.split() if len(word) >= 3 and word not in _STOPWORDS]
    return frozenset(words)


class Comprehension(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"


@dataclass(slots=True, frozen=True)
class KnowledgeItem:
    agent_id: str
    tick: int
    session_id: str
    speaker: str
    about: tuple[str, ...]
    text: str
    comprehension: Comprehension
    sentiment: float
    tokens: frozenset[str] = field(default_factory=frozenset)

    def to_dict(self) -> dict:
        return {
            "tick": self.tick,
            "session_id": self.session_id,
            "speaker": self.speaker,
            "about": list(self.about),
            "text": self.text,
            "comprehension": self.comprehension.value,
            "sentiment": round(self.sentiment, 3),
        }


class KnowledgeStore:
    """Per-agent private store of information picked up second-hand."""

    def __init__(self, per_agent_limit: int = 200) -> None:
        self.per_agent_limit = max(10, per_agent_limit)
        self._items: dict[str, Deque[KnowledgeItem]] = defaultdict(
            lambda: deque(maxlen=self.per_agent_limit)
        )

    def add(
        self,
        *,
        agent_id: str,
        tick: int,
        session_id: str,
        speaker: str,
        about: tuple[str, ...],
        text: str,
        comprehension: Comprehension,
        sentiment: float,
    ) -> KnowledgeItem:
        item = KnowledgeItem(
            agent_id=agent_id,
            tick=tick,
            session_id=session_id,
            speaker=speaker,
            about=about,
            text=text,
            comprehension=comprehension,
            sentiment=sentiment,
            tokens=_tokenize(text),
        )
        items = self._items[agent_id]
        if len(items) == items.maxlen:
            LOGGER.debug("Knowledge full agent=%s dropping tick=%s", agent_id, items[0].tick)
        items.append(item)
        return item

    def recent(self, agent_id: str, limit: int, about: str | None = None) -> list[KnowledgeItem]:
        if limit <= 0:
            return []
        results: list[KnowledgeItem] = []
        for item in reversed(self._items.get(agent_id, ())):
            if about is not None and about not in item.about:
                continue
            results.append(item)
            if len(results) >= limit:
                break
        return results

    def search(self, agent_id: str, query: str, limit: int = 5) -> list[KnowledgeItem]:
        query_tokens = _tokenize(query)
        if not query_tokens:
            return []
        scored: list[tuple[int, int, KnowledgeItem]] = []
        for item in self._items.get(agent_id, ()):
            overlap = len(query_tokens & item.tokens)
            if overlap:
                scored.append((overlap, item.tick, item))
        scored.sort(key=lambda row: (row[0], row[1]), reverse=True)
        return [item for _overlap, _tick, item in scored[:limit]]

    def opinion_of(self, agent_id: str, subject_id: str) -> float:
        """Sum of sentiment overheard from `subject_id`, weighted by how much was understood."""
        total = 0.0
        for item in self._items.get(agent_id, ()):
            if item.speaker != subject_id:
                continue
            weight = 1.0 if item.comprehension is Comprehension.FULL else 0.5
            total += item.sentiment * weight
        return total

    def count(self, agent_id: str) -> int:
        return len(self._items.get(agent_id, ()))
