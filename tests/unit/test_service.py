"""Unit tests for AnalysisService: fan-out, degradation, caching and profile"""

from __future__ import annotations

import concurrent.futures
import time
from datetime import UTC, datetime, timedelta

import pytest

from celeste.interventions.effectiveness import Outcome
from celeste.ml.inference import keyword_classify
from celeste.observability.telemetry import get_counters, get_latency_stats
from celeste.service import analyze_trajectory, find_dominant_pattern, prediction_accuracy
from celeste.storage.repository import DatastoreError

# Same reference time as the service fixture clock
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


def days_ago(days: int) -> str:
    return (NOW - timedelta(days=days)).isoformat()


def test_analyze_builds_intervention_and_records_delivery(service, procrastinating_store):
    result = service.analyze("u1", "I will launch tomorrow")

    assert [p.type for p in result.patterns] == ["procrastination"]
    assert result.should_intervene
    assert result.intervention is not None
    assert "$8,400" in result.intervention.message
    assert result.resistance_level == 0
    assert not result.cached

    delivery = procrastinating_store.deliveries[-1]
    assert delivery["intervention_id"] == result.intervention.tracking_id
    assert delivery["pattern_type"] == "procrastination"
    assert get_latency_stats("analyze.latency")["count"] == 1
    assert get_counters()["message.label.procrastination"] == 1


def test_analyze_uses_stored_resistance_level(service, procrastinating_store):
    procrastinating_store.resistance["u1"] = 3
    result = service.analyze("u1", "I will launch tomorrow")
    assert result.resistance_level == 3
    assert result.intervention.level == 3
    assert result.intervention.severity == "critical"


def test_analyze_without_data_returns_nothing(service):
    result = service.analyze("u2", "hello")
    assert result.patterns == []
    assert not result.should_intervene
    assert result.intervention is None
    assert result.confidence == 0.0


def test_analyze_degrades_when_store_down(service, procrastinating_store):
    procrastinating_store.fail = True
    result = service.analyze("u1", "I will launch tomorrow")
    # Only the current message is left to score, which stays under the confidence bar
    assert result.patterns == []
    assert result.intervention is None
    assert get_counters()["store.fallback"] >= 7


def test_analyze_caches_per_user(service, procrastinating_store):
    service.analyze("u1", "I will launch tomorrow")
    reads = len(procrastinating_store.calls)

    second = service.analyze("u1", "I will launch tomorrow")
    assert second.cached
    assert [p.type for p in second.patterns] == ["procrastination"]
    # Only delivery/breakthrough writes, no detector reads
    new_calls = procrastinating_store.calls[reads:]
    assert "list_pending_tasks" not in new_calls


def test_slow_read_falls_back_to_default(service, procrastinating_store, monkeypatch):
    service.call_timeout = 0.2

    def slow_tasks(user_id):
        time.sleep(1.0)
        return [{"task_type": "planning"}] * 50

    monkeypatch.setattr(procrastinating_store, "list_tasks", slow_tasks)
    metrics = service.collect_metrics("u1", "")
    assert metrics.tasks == []
    assert len(metrics.pending_tasks) == 1


def test_competitors_read_only_with_business_type(service, store):
    service.collect_metrics("u2")
    assert "list_competitors" not in store.calls

    store.contexts["u3"] = {"business_type": "saas", "monthly_recurring_revenue": 100}
    store.competitors["saas"] = [{"monthly_recurring_revenue": 5000, "product_count": 1}]
    metrics = service.collect_metrics("u3")
    assert metrics.competitors == store.competitors["saas"]
    assert metrics.current_mrr == 100


def test_track_outcome_scores_and_stores(service, store):
    outcome = Outcome(action_taken=True, revenue_impact=250, pattern_broken=True, breakthrough=True)
    result = service.track_outcome("iv-1", outcome, user_id="u1")
    assert result.effectiveness == pytest.approx(1.0)
    assert result.stored
    assert store.outcomes["iv-1"]["user_id"] == "u1"


def test_track_outcome_failed_write(service, store):
    store.fail = True
    result = service.track_outcome("iv-1", Outcome(action_taken=True))
    assert result.effectiveness == pytest.approx(0.3)
    assert not result.stored


def test_track_resistance_then_analyze_escalates(service, procrastinating_store):
    update = service.track_resistance("u1", "But this is unfair and impossible")
    assert update.level == 1
    result = service.analyze("u1", "I will launch tomorrow")
    assert result.resistance_level == 1


def test_record_signals(service, store):
    result = service.record_signals(
        "u1",
        [{"type": "hesitation", "confidence": 0.8, "evidence": {"pause_ms": 4000}}],
        connection_id="c-1",
    )
    assert result.received == 1
    assert result.stored == 1
    assert store.signals[0]["context"]["connection_id"] == "c-1"
    assert store.signals[0]["pattern_type"] == "hesitation"


def test_health(service, store):
    assert service.health().healthy
    store.fail = True
    report = service.health()
    assert not report.healthy
    assert report.database == "disconnected"


# ============================================================================
# Profile
# ============================================================================


def test_get_patterns_excludes_resistance_row(service, store):
    store.resistance["u1"] = 2
    store.patterns["u1"] = [
        {"pattern_type": "excuse", "confidence": 0.9, "occurrence_count": 4, "last_observed": days_ago(1)},
        {"pattern_type": "procrastination", "confidence": 0.8, "occurrence_count": 2, "last_observed": days_ago(1)},
    ]
    profile = service.get_patterns("u1")
    assert [p["pattern_type"] for p in profile["patterns"]] == ["excuse", "procrastination"]
    assert profile["dominant_pattern"] == "excuse"
    assert profile["trajectory"] is None


def test_get_patterns_degrades_to_empty(service, store):
    store.fail = True
    profile = service.get_patterns("u1")
    assert profile["patterns"] == []
    assert profile["dominant_pattern"] is None
    assert profile["prediction_accuracy"] == 0.0


def test_find_dominant_pattern_weighs_recency():
    patterns = [
        {"pattern_type": "old", "confidence": 1.0, "occurrence_count": 10, "last_observed": days_ago(100)},
        {"pattern_type": "fresh", "confidence": 0.5, "occurrence_count": 2, "last_observed": days_ago(0)},
    ]
    assert find_dominant_pattern(patterns, NOW) == "fresh"
    assert find_dominant_pattern([], NOW) is None


def test_prediction_accuracy():
    predictions = [
        {"outcome_verified": True, "confidence": 0.9},
        {"outcome_verified": True, "confidence": 0.4},
    ]
    assert prediction_accuracy(predictions) == 0.5
    assert prediction_accuracy([]) == 0.0


def test_analyze_trajectory():
    states = [
        {
            "momentum_trajectory": {"current": 0.8},
            "energy_trajectory": {"current": 0.4},
            "breakthrough_indicators": {"proximity": 0.7},
            "risk_factors": {"level": "low"},
        },
        {"momentum_trajectory": {"current": 0.5}, "energy_trajectory": {"current": 0.6}},
    ]
    trajectory = analyze_trajectory(states)
    assert trajectory["direction"] == "ascending"
    assert trajectory["velocity"] == pytest.approx(0.3)
    assert trajectory["energy_trend"] == pytest.approx(-0.2)
    assert trajectory["breakthrough_proximity"] == 0.7
    assert trajectory["risk_level"] == "low"
    assert analyze_trajectory(states[:1]) is None


# ============================================================================
# Concurrency and degraded results
# ============================================================================

DETECTOR_READS = (
    "get_business_context",
    "list_pending_tasks",
    "list_tasks",
    "list_revenue_history",
    "list_recent_messages",
    "get_top_excuse",
    "list_blockers",
)


def _slowed(fn, seconds):
    def wrapper(*args, **kwargs):
        time.sleep(seconds)
        return fn(*args, **kwargs)

    return wrapper


def test_concurrent_analyses_are_not_starved(service, store, monkeypatch):
    service.call_timeout = 0.5
    users = [f"user-{i}" for i in range(12)]
    for user in users:
        store.pending_tasks[user] = [
            {"task_requested": "the landing page", "created_at": days_ago(84), "was_used": False}
        ]
    for name in DETECTOR_READS:
        monkeypatch.setattr(store, name, _slowed(getattr(store, name), 0.15))
    monkeypatch.setattr(store, "ping", _slowed(store.ping, 0.15))

    with concurrent.futures.ThreadPoolExecutor(max_workers=len(users) + 1) as pool:
        health = pool.submit(service.health)
        results = list(pool.map(lambda u: service.analyze(u, "I will launch tomorrow"), users))

    assert [[p.type for p in r.patterns] for r in results] == [["procrastination"]] * len(users)
    assert "store.fallback" not in get_counters()
    assert health.result().healthy


def test_degraded_analysis_is_not_cached(service, procrastinating_store, monkeypatch):
    def tasks_fail(user_id):
        raise DatastoreError("list_tasks failed: timeout")

    monkeypatch.setattr(procrastinating_store, "list_tasks", tasks_fail)
    first = service.analyze("u1", "I will launch tomorrow")
    assert [p.type for p in first.patterns] == ["procrastination"]
    assert get_counters()["analyze.degraded"] == 1

    monkeypatch.undo()
    second = service.analyze("u1", "I will launch tomorrow")
    assert not second.cached
    third = service.analyze("u1", "I will launch tomorrow")
    assert third.cached


def test_degraded_profile_is_not_cached(service, store):
    store.fail = True
    service.get_patterns("u1")
    store.fail = False
    store.patterns["u1"] = [{"pattern_type": "excuse", "confidence": 0.9, "occurrence_count": 1}]
    assert service.get_patterns("u1")["dominant_pattern"] == "excuse"


def test_slow_classifier_is_not_a_store_fallback(service, procrastinating_store, monkeypatch):
    service.inference.timeout = 0.1

    def slow_classify(text):
        time.sleep(0.5)
        return keyword_classify(text)

    monkeypatch.setattr(service.inference, "classify", slow_classify)
    result = service.analyze("u1", "I will launch tomorrow")

    counters = get_counters()
    assert [p.type for p in result.patterns] == ["procrastination"]
    assert counters["inference.fallback"] == 1
    assert "store.fallback" not in counters
    # Keyword label still logged
    assert counters["message.label.procrastination"] == 1
    assert result.processing_time_ms < 500


# ============================================================================
# Realtime events
# ============================================================================


def test_realtime_event_announces_intervention_once(service, procrastinating_store):
    procrastinating_store.messages["u1"] = ["I will launch tomorrow"]
    announced: set[str] = set()

    event = service.realtime_event("u1", announced)
    assert event["type"] == "intervention"
    assert event["resistance_level"] == 0
    assert event["timestamp"] == int(NOW.timestamp() * 1000)
    assert service.realtime_event("u1", announced) is None
    assert len(procrastinating_store.deliveries) == 1


def test_realtime_event_without_patterns(service, store):
    assert service.realtime_event("u2", set()) is None
