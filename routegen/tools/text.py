"""Small text helpers shared by prompts and search queries."""
from __future__ import annotations

MAX_PROMPT_WORDS = 100


def cap_words(text: str | None, limit: int = MAX_PROMPT_WORDS) -> str:
    """Trim ``text`` to its first ``limit`` whitespace-separated words."""
    cleaned = (text or "").strip()
    words = cleaned.split()
    if len(words) <= limit:
        return cleaned
    return " ".join(words[:limit])
