"""Phrase counting over free-text user messages."""

from __future__ import annotations

import re
from collections.abc import Iterable

FUTURE_PHRASES = (
    "will",
    "going to",
    "plan to",
    "tomorrow",
    "next week",
    "soon",
    "later",
    "eventually",
)
ACTION_PHRASES = ("did", "done", "completed", "shipped", "launched", "finished")


def compile_phrases(phrases: Iterable[str]) -> list[re.Pattern[str]]:
    r"""Word-bounded, case-insensitive patterns; inner spaces match any whitespace.

    "will" must not match "willing", so every phrase is wrapped in \b.
    """
    compiled = []
    for phrase in phrases:
        body = r"\s+".join(re.escape(part) for part in phrase.split())
        compiled.append(re.compile(rf"\b{body}\b", re.IGNORECASE))
    return compiled


_FUTURE = compile_phrases(FUTURE_PHRASES)
_ACTION = compile_phrases(ACTION_PHRASES)


def normalize_text(text: str) -> str:
    """Lowercase and fold typographic apostrophes."""
    return text.replace("’", "'").replace("‘", "'").lower()


def count_present(text: str, patterns: list[re.Pattern[str]]) -> int:
    """Number of distinct phrases present in text."""
    normalized = normalize_text(text)
    return sum(1 for p in patterns if p.search(normalized))


def count_occurrences(text: str, patterns: list[re.Pattern[str]]) -> int:
    """Total number of phrase hits in text."""
    normalized = normalize_text(text)
    return sum(len(p.findall(normalized)) for p in patterns)


def future_tense_ratio(messages: Iterable[str]) -> float:
    """Share of future-tense phrases among future + action phrases.

    Returns 0.0 when no phrase of either kind appears.
    """
    future = 0
    action = 0
    for message in messages:
        if not message:
            continue
        future += count_present(message, _FUTURE)
        action += count_present(message, _ACTION)
    total = future + action
    return future / total if total else 0.0
