"""Escalating interventions, resistance tracking and outcome scoring."""

from __future__ import annotations

from celeste.interventions.effectiveness import Outcome, calculate_effectiveness
from celeste.interventions.generator import (
    Intervention,
    InterventionContext,
    InterventionGenerator,
)
from celeste.interventions.resistance import (
    ResistanceTracker,
    ResistanceUpdate,
    count_resistance,
    next_level,
)
from celeste.interventions.templates import LEVEL_NAMES, TEMPLATES, clamp_level, get_template

__all__ = [
    "LEVEL_NAMES",
    "TEMPLATES",
    "Intervention",
    "InterventionContext",
    "InterventionGenerator",
    "Outcome",
    "ResistanceTracker",
    "ResistanceUpdate",
    "calculate_effectiveness",
    "clamp_level",
    "count_resistance",
    "get_template",
    "next_level",
]
