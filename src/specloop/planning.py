from __future__ import annotations

import re
from collections.abc import Iterable

from specloop.state.document import WorkItem

BASE_SCORE = 100
PHASE_PENALTY = 5
SHORT_TEXT_LIMIT = 60
SHORT_TEXT_BONUS = 5

# Each group contributes its bonus at most once.
KEYWORD_BONUSES: tuple[tuple[tuple[str, ...], int], ...] = (
    (("skeleton", "create", "build"), 20),
    (("test", "verify"), 10),
    (("wire", "connect"), 15),
    (("add", "implement"), 12),
    (("command", "!"), 8),
)

VAGUE_PATTERNS = (
    re.compile(r"^(enable|implement|build|create)\s+\w+\s+\w+$", re.IGNORECASE),
    re.compile(r"adapter$", re.IGNORECASE),
    re.compile(r"placeholder", re.IGNORECASE),
)

EXPANSIONS: dict[str, tuple[str, ...]] = {
    "whatsapp channel adapter": (
        "Create src/channels/whatsapp-adapter.ts skeleton with WhatsApp Web.js",
        "Wire WhatsApp adapter to channel-manager.ts",
        "Test WhatsApp message receive and reply",
    ),
    "telegram channel adapter": (
        "Create src/channels/telegram-adapter.ts skeleton with node-telegram-bot-api",
        "Wire Telegram adapter to channel-manager.ts",
        "Test Telegram message receive and reply",
    ),
}


def score(item: WorkItem) -> int:
    """Priority of ``item``; higher runs first."""
    value = BASE_SCORE - PHASE_PENALTY * item.phase_index
    lowered = item.text.lower()
    for keywords, bonus in KEYWORD_BONUSES:
        if any(keyword in lowered for keyword in keywords):
            value += bonus
    if len(item.text) < SHORT_TEXT_LIMIT:
        value += SHORT_TEXT_BONUS
    return value


def rank(items: Iterable[WorkItem]) -> list[WorkItem]:
    # sorted() is stable, so equal scores keep document order.
    return sorted(items, key=score, reverse=True)


def is_vague(text: str) -> bool:
    candidate = text.strip()
    return any(pattern.search(candidate) for pattern in VAGUE_PATTERNS)


def subdivide(item: WorkItem) -> list[str] | None:
    normalized = " ".join(item.text.lower().split())
    for key, subtasks in EXPANSIONS.items():
        if key in normalized:
            return list(subtasks)
    return None
