"""
Pytest configuration for Celeste tests

Provides an in-memory BehavioralStore, a service wired to it with a fixed
clock and seeded RNG, and a TestClient with the service dependency swapped.
"""

from __future__ import annotations

import random
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from fastapi.testclient import TestClient

from celeste.infrastructure.cache import BehavioralCache
from celeste.interventions.generator import InterventionGenerator
from celeste.ml.inference import InferenceClient
from celeste.observability.telemetry import reset_counters, reset_latencies
from celeste.service import AnalysisService
from celeste.storage.repository import RESISTANCE_PATTERN, DatastoreError

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


def days_ago(days: int) -> str:
    return (NOW - timedelta(days=days)).isoformat()


class FakeBehavioralStore:
    """BehavioralStore over plain dicts keyed by user id.

    Set fail=True to make every call raise DatastoreError.
    """

    def __init__(self) -> None:
        self.fail = False
        self.contexts: dict[str, dict[str, Any]] = {}
        self.pending_tasks: dict[str, list[dict[str, Any]]] = {}
        self.tasks: dict[str, list[dict[str, Any]]] = {}
        self.revenue: dict[str, list[float]] = {}
        self.messages: dict[str, list[str]] = {}
        self.excuses: dict[str, dict[str, Any]] = {}
        self.blockers: dict[str, list[dict[str, Any]]] = {}
        self.competitors: dict[str, list[dict[str, Any]]] = {}
        self.breakthroughs: dict[str, list[dict[str, Any]]] = {}
        self.resistance: dict[str, int] = {}
        self.patterns: dict[str, list[dict[str, Any]]] = {}
        self.predictions: dict[str, list[dict[str, Any]]] = {}
        self.evolution: dict[str, list[dict[str, Any]]] = {}
        self.states: dict[str, list[dict[str, Any]]] = {}
        self.deliveries: list[dict[str, Any]] = []
        self.outcomes: dict[str, dict[str, Any]] = {}
        self.signals: list[dict[str, Any]] = []
        self.calls: list[str] = []

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if self.fail:
            raise DatastoreError(f"{name} failed: store offline")

    def ping(self) -> None:
        self._check("ping")

    def get_business_context(self, user_id):
        self._check("get_business_context")
        return self.contexts.get(user_id)

    def list_pending_tasks(self, user_id):
        self._check("list_pending_tasks")
        return list(self.pending_tasks.get(user_id, []))

    def list_tasks(self, user_id):
        self._check("list_tasks")
        return list(self.tasks.get(user_id, []))

    def list_revenue_history(self, user_id, limit=12):
        self._check("list_revenue_history")
        return list(self.revenue.get(user_id, []))[:limit]

    def list_recent_messages(self, user_id, limit=50):
        self._check("list_recent_messages")
        return list(self.messages.get(user_id, []))[:limit]

    def get_top_excuse(self, user_id):
        self._check("get_top_excuse")
        return self.excuses.get(user_id)

    def list_blockers(self, user_id, limit=20):
        self._check("list_blockers")
        return list(self.blockers.get(user_id, []))[:limit]

    def list_competitors(self, user_id, business_type, limit=20):
        self._check("list_competitors")
        return list(self.competitors.get(business_type, []))[:limit]

    def list_breakthroughs(self, pattern_type, limit=5):
        self._check("list_breakthroughs")
        return list(self.breakthroughs.get(pattern_type, []))[:limit]

    def get_resistance_level(self, user_id):
        self._check("get_resistance_level")
        return self.resistance.get(user_id, 0)

    def save_resistance_level(self, user_id, level, intervention_id=None):
        self._check("save_resistance_level")
        self.resistance[user_id] = level

    def record_delivery(self, delivery):
        self._check("record_delivery")
        self.deliveries.append(delivery)

    def record_outcome(self, outcome):
        self._check("record_outcome")
        self.outcomes[outcome["intervention_id"]] = outcome

    def list_user_patterns(self, user_id):
        self._check("list_user_patterns")
        rows = list(self.patterns.get(user_id, []))
        if user_id in self.resistance:
            rows.append(
                {
                    "pattern_type": RESISTANCE_PATTERN,
                    "pattern_data": {"level": self.resistance[user_id]},
                }
            )
        return rows

    def list_predictions(self, user_id, limit=50):
        self._check("list_predictions")
        return list(self.predictions.get(user_id, []))[:limit]

    def list_pattern_evolution(self, user_id, limit=20):
        self._check("list_pattern_evolution")
        return list(self.evolution.get(user_id, []))[:limit]

    def list_state_evolution(self, user_id, limit=100):
        self._check("list_state_evolution")
        return list(self.states.get(user_id, []))[:limit]

    def record_signals(self, rows):
        self._check("record_signals")
        self.signals.extend(rows)
        return len(rows)


@pytest.fixture(autouse=True)
def reset_telemetry():
    reset_counters()
    reset_latencies()
    yield
    reset_counters()
    reset_latencies()


@pytest.fixture
def store() -> FakeBehavioralStore:
    return FakeBehavioralStore()


@pytest.fixture
def procrastinating_store(store) -> FakeBehavioralStore:
    """u1: one task pending for 84 days, no MRR (default daily burn applies)."""
    store.pending_tasks["u1"] = [
        {"task_requested": "the landing page", "created_at": days_ago(84), "was_used": False}
    ]
    return store


@pytest.fixture
def service(store):
    svc = AnalysisService(
        store=store,
        cache=BehavioralCache(maxsize=100, ttl=30),
        generator=InterventionGenerator(rng=random.Random(7)),
        inference=InferenceClient(api_key="", enabled=False),
        call_timeout=1.0,
        clock=lambda: NOW,
    )
    yield svc
    svc.close()


@pytest.fixture
def client(service):
    from celeste.api.app import app
    from celeste.api.dependencies import get_analysis_service

    app.dependency_overrides[get_analysis_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
