"""
Resistance tracking.

The whole state machine: six integer levels, one transition ("+1 when a reply
pushes back hard enough"), capped at 5, never decreasing.
"""

from __future__ import annotations

from dataclasses import dataclass

from celeste.config import MAX_RESISTANCE_LEVEL
from celeste.detection.language import compile_phrases, count_occurrences
from celeste.infrastructure.cache import BehavioralCache, resistance_key
from celeste.interventions.templates import clamp_level
from celeste.observability.logging import get_logger
from celeste.observability.telemetry import counter, log_event
from celeste.storage.repository import BehavioralStore, DatastoreError
from celeste.utils.redaction import redact

logger = get_logger(__name__)

RESISTANCE_MARKERS = (
    "but",
    "however",
    "yes but",
    "can't",
    "impossible",
    "maybe later",
    "not ready",
    "need to think",
    "too aggressive",
    "too harsh",
    "unfair",
)
ESCALATION_THRESHOLD = 2

_MARKERS = compile_phrases(RESISTANCE_MARKERS)


def count_resistance(reply: str | None) -> int:
    """Total hedge-marker hits in a reply ("yes but" also counts as "but")."""
    if not reply:
        return 0
    return count_occurrences(reply, _MARKERS)


def next_level(current: int, score: int) -> int:
    """Escalate by one when score exceeds the threshold; never go down."""
    current = clamp_level(current)
    if score > ESCALATION_THRESHOLD:
        return min(current + 1, MAX_RESISTANCE_LEVEL)
    return current


@dataclass(frozen=True)
class ResistanceUpdate:
    """Outcome of scoring one reply. persisted=False when the level could not be read or saved."""

    previous_level: int
    level: int
    score: int
    escalated: bool
    persisted: bool = True


class ResistanceTracker:
    """Reads and advances the per-user resistance level.

    Only levels read from or written to the datastore are cached, so a level
    seen through the cache is never ahead of what is stored.
    """

    def __init__(self, store: BehavioralStore, cache: BehavioralCache) -> None:
        self.store = store
        self.cache = cache

    def _read_level(self, user_id: str) -> int | None:
        """Cached or stored level, None when the datastore read fails."""
        key = resistance_key(user_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        try:
            level = clamp_level(self.store.get_resistance_level(user_id))
        except DatastoreError as e:
            logger.warning("Resistance level unavailable for %s: %s", redact(user_id), e)
            counter("store.fallback")
            return None
        self.cache.set(key, level)
        return level

    def current_level(self, user_id: str) -> int:
        """Level used to pick templates; 0 when the datastore is unavailable."""
        level = self._read_level(user_id)
        return 0 if level is None else level

    def track(
        self, user_id: str, reply: str, intervention_id: str | None = None
    ) -> ResistanceUpdate:
        """Score a reply and persist the new level if it escalated.

        Nothing is written when the stored level cannot be read: upserting
        from a guessed baseline could overwrite a higher level.

        Side Effects:
            - Upserts the resistance row in the datastore on escalation
            - Caches the new level only once the upsert succeeded
        """
        score = count_resistance(reply)
        previous = self._read_level(user_id)
        if previous is None:
            counter("resistance.skipped")
            log_event("resistance.skipped", user=redact(user_id), score=score)
            return ResistanceUpdate(
                previous_level=0, level=0, score=score, escalated=False, persisted=False
            )

        level = next_level(previous, score)
        escalated = level > previous
        if not escalated:
            return ResistanceUpdate(previous_level=previous, level=level, score=score, escalated=False)

        try:
            self.store.save_resistance_level(user_id, level, intervention_id)
        except DatastoreError as e:
            logger.warning("Failed to persist resistance for %s: %s", redact(user_id), e)
            counter("store.fallback")
            return ResistanceUpdate(
                previous_level=previous,
                level=previous,
                score=score,
                escalated=False,
                persisted=False,
            )

        self.cache.set(resistance_key(user_id), level)
        counter("resistance.escalated")
        log_event(
            "resistance.escalated",
            user=redact(user_id),
            previous=previous,
            level=level,
            score=score,
        )
        return ResistanceUpdate(previous_level=previous, level=level, score=score, escalated=True)
