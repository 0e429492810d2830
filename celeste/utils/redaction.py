"""
Redaction helpers for keeping user identifiers and free text out of logs
and model prompts.

Provides:
- redact(): Hash sensitive strings for correlation without exposure
- preview(): Short, hashed preview of free-text user messages
- sanitize_for_prompt(): Remove potential prompt injection patterns
"""

from __future__ import annotations

import re
from hashlib import sha256

# Patterns that could be used for prompt injection
INJECTION_PATTERNS = [
    r"ignore\s+(previous|above|all)\s+instructions?",
    r"disregard\s+(previous|above|all)\s+instructions?",
    r"new\s+instructions?:",
    r"system\s*:",
    r"assistant\s*:",
    r"\[INST\]",
    r"\[/INST\]",
]
INJECTION_REGEX = re.compile("|".join(INJECTION_PATTERNS), re.IGNORECASE)


def redact(value: str | None) -> str:
    """
    Return a stable hash representation of a sensitive string.
    """
    if not value:
        return "hash:missing"
    digest = sha256(value.encode("utf-8")).hexdigest()[:12]
    return f"hash:{digest}"


def preview(text: str | None, max_length: int = 24) -> str:
    """
    Partially redact a user message for logging while preserving debuggability.

    Shows first N characters + hash suffix for correlation.

    Example:
        "I will launch the new pricing page tomorrow" ->
        "I will launch the new pr... (h:3f9a1c)"
    """
    if not text:
        return "(empty)"

    visible = text[:max_length] + "..." if len(text) > max_length else text
    digest = sha256(text.encode("utf-8")).hexdigest()[:6]
    return f"{visible} (h:{digest})"


def sanitize_for_prompt(text: str, max_length: int = 500) -> str:
    """
    Sanitize user-provided text before sending it to a hosted model.

    Truncates, strips known injection patterns and drops characters that
    confuse prompt parsing.
    """
    if not text:
        return ""

    text = text[:max_length]
    text = INJECTION_REGEX.sub("[REDACTED]", text)
    text = re.sub(r"[<>{}|\\]", "", text)
    return text.strip()
