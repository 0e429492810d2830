"""Runs every detector over one metrics bundle and merges the results."""

from __future__ import annotations

from celeste.config import INTERVENTION_COST_THRESHOLD, PATTERN_MIN_CONFIDENCE
from celeste.detection.detectors import DETECTORS
from celeste.detection.models import BehavioralMetrics, PatternResult
from celeste.observability.logging import get_logger
from celeste.observability.telemetry import counter

logger = get_logger(__name__)


def run_detectors(metrics: BehavioralMetrics) -> list[PatternResult]:
    """All detector hits, unfiltered, in detector order.

    A detector that raises is logged and skipped; the others still run.
    """
    results: list[PatternResult] = []
    for name, detector in DETECTORS.items():
        try:
            result = detector(metrics)
        except (ArithmeticError, KeyError, TypeError, ValueError) as e:
            logger.warning("Detector %s failed: %s", name, e)
            counter("detector.errors")
            continue
        if result is not None:
            results.append(result)
    return results


def detect_patterns(
    metrics: BehavioralMetrics, min_confidence: float = PATTERN_MIN_CONFIDENCE
) -> list[PatternResult]:
    """Confident patterns, highest estimated cost first."""
    confident = [r for r in run_detectors(metrics) if r.confidence > min_confidence]
    confident.sort(key=lambda r: r.estimated_cost, reverse=True)
    for result in confident:
        counter(f"pattern.detected.{result.type}")
    return confident


def should_intervene(
    patterns: list[PatternResult], cost_threshold: float = INTERVENTION_COST_THRESHOLD
) -> bool:
    """True when any pattern is critical or expensive enough to act on."""
    return any(p.is_critical or p.estimated_cost > cost_threshold for p in patterns)
