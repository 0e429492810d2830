"""Heuristic behavioral pattern detection."""

from __future__ import annotations

from celeste.detection.engine import detect_patterns, run_detectors
from celeste.detection.models import BehavioralMetrics, PatternResult, PatternType, Severity

__all__ = [
    "BehavioralMetrics",
    "PatternResult",
    "PatternType",
    "Severity",
    "detect_patterns",
    "run_detectors",
]
