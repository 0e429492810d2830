"""Outcome scoring for delivered interventions."""

from __future__ import annotations

from pydantic import BaseModel, Field

ACTION_TAKEN_WEIGHT = 0.3
REVENUE_IMPACT_WEIGHT = 0.3
PATTERN_BROKEN_WEIGHT = 0.2
BREAKTHROUGH_WEIGHT = 0.2


class Outcome(BaseModel):
    """What happened after an intervention, as reported by the caller."""

    action_taken: bool = False
    revenue_impact: float = 0.0
    pattern_broken: bool = False
    breakthrough: bool = False
    notes: str | None = Field(default=None, max_length=2000)


def calculate_effectiveness(outcome: Outcome) -> float:
    """Weighted sum of the four outcome signals, capped at 1.0."""
    score = 0.0
    if outcome.action_taken:
        score += ACTION_TAKEN_WEIGHT
    if outcome.revenue_impact > 0:
        score += REVENUE_IMPACT_WEIGHT
    if outcome.pattern_broken:
        score += PATTERN_BROKEN_WEIGHT
    if outcome.breakthrough:
        score += BREAKTHROUGH_WEIGHT
    return round(min(score, 1.0), 4)
