from __future__ import annotations

import logging
from typing import Any


TEMPLATES: dict[str, list[str]] = {
    "propose": [
        "{target_name}, mind if I walk with you a while?",
        "Hey {target_name}. Long road. Talk to me?",
        "{target_name}, you look like you could use the company.",
        "Room for one more next to you, {target_name}?",
        "{target_name}, tell me something that isn't about the road.",
        "Mind the pace with me, {target_name}? I'd rather not walk alone.",
    ],
    "dialogue_turn": [
        "I keep counting steps. It helps, a little.",
        "Where are you from, {target_name}? Really from?",
        "My feet stopped hurting an hour ago. That can't be good.",
        "I think about home when it gets quiet like this.",
        "You're holding up better than most, {target_name}.",
        "Funny, the road looks the same in every direction.",
        "Keep talking. It's easier when someone's talking.",
        "I don't know why I signed up. Do you?",
    ],
    "decline": [
        "Not now, {target_name}.",
        "I need to keep to myself for a while.",
        "Maybe later.",
        "Save your breath, {target_name}.",
    ],
    "crisis_help": [
        "I've got you. Keep moving.",
        "Lean on me, we do this together.",
        "Over here! I can help.",
        "Stay with me, don't stop now.",
    ],
    "crisis_hold_back": [
        "I can't. I'm barely standing myself.",
        "Not this time.",
        "Someone else has to do it.",
    ],
}

LOGGER = logging.getLogger("longwalk.sim.templates")


def mix_selector(selector: int) -> int:
    # Deterministic integer mixer to avoid obvious modulo cycles on sequential ticks.
    value = abs(int(selector)) & 0xFFFFFFFF
    value ^= value >> 16
    value = (value * 0x45D9F3B) & 0xFFFFFFFF
    value ^= value >> 16
    value = (value * 0x45D9F3B) & 0xFFFFFFFF
    value ^= value >> 16
    return value


def selector_for(*parts: str | int) -> int:
    seed = 0
    for part in parts:
        if isinstance(part, int):
            seed = seed * 31 + part
        else:
            seed = seed * 31 + sum(ord(ch) for ch in part)
    return seed


def choose_template(kind: str, selector: int) -> str:
    options = TEMPLATES.get(kind, [])
    if not options:
        return "..."
    return options[mix_selector(selector) % len(options)]


def render(kind: str, selector: int, **kwargs: Any) -> str:
    template = choose_template(kind, selector)
    payload = dict(kwargs)
    payload.setdefault("target_name", "friend")
    payload.setdefault("name", "Walker")

    class _SafeFormatDict(dict):
        def __missing__(self, key: str) -> str:
            if LOGGER.isEnabledFor(logging.DEBUG):
                LOGGER.debug("Template missing key kind=%s key=%s", kind, key)
            return ""

    return template.format_map(_SafeFormatDict(payload))
