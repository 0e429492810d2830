"""Unit tests for SupabaseBehavioralStore against a fake query-builder client"""

from __future__ import annotations

from typing import Any

import pytest

from celeste.infrastructure.retry import CircuitBreaker
from celeste.observability.telemetry import get_counters
from celeste.storage import DatastoreError, SupabaseBehavioralStore
from celeste.storage.repository import RESISTANCE_PATTERN


class FakeResponse:
    def __init__(self, data: list[dict[str, Any]] | None) -> None:
        self.data = data


class FakeQuery:
    """Chainable stand-in for the supabase query builder."""

    def __init__(self, client: FakeClient, table: str) -> None:
        self.client = client
        self.table = table
        self.ops: list[tuple[str, tuple]] = []

    @property
    def not_(self) -> FakeQuery:
        self.ops.append(("not_", ()))
        return self

    def __getattr__(self, name: str):
        def op(*args, **kwargs):
            self.ops.append((name, args))
            if kwargs:
                self.ops.append((f"{name}_kwargs", tuple(sorted(kwargs.items()))))
            return self

        return op

    def execute(self) -> FakeResponse:
        self.client.executed.append(self)
        if self.client.error is not None:
            raise self.client.error
        return FakeResponse(self.client.rows.get(self.table, []))


class FakeClient:
    def __init__(self) -> None:
        self.rows: dict[str, list[dict[str, Any]]] = {}
        self.error: Exception | None = None
        self.executed: list[FakeQuery] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def store(client):
    return SupabaseBehavioralStore(
        url="https://example.supabase.co",
        key="anon",
        client=client,
        breaker=CircuitBreaker(stage="supabase-test", fail_max=2, reset_timeout=30.0),
    )


def test_unconfigured_store_raises_datastore_error():
    with pytest.raises(DatastoreError):
        SupabaseBehavioralStore(url="", key="").ping()


def test_revenue_history_skips_nulls(store, client):
    client.rows["task_history"] = [
        {"revenue_after_use": 1200},
        {"revenue_after_use": None},
        {"revenue_after_use": "1100.5"},
    ]
    assert store.list_revenue_history("u1") == [1200.0, 1100.5]


def test_revenue_history_skips_malformed_values(store, client):
    client.rows["task_history"] = [
        {"revenue_after_use": "junk"},
        {"revenue_after_use": 900},
        {"revenue_after_use": {"amount": 5}},
    ]
    assert store.list_revenue_history("u1") == [900.0]
    assert get_counters()["store.malformed_rows"] == 2


def test_blockers_exclude_resolved_before_limit(store, client):
    client.rows["pattern_occurrences"] = [
        {"pattern_type": "blocking", "resolved": False},
        {"pattern_type": "avoidance"},
    ]
    assert [b["pattern_type"] for b in store.list_blockers("u1")] == ["blocking", "avoidance"]

    ops = client.executed[-1].ops
    resolved_filter = ops.index(("is_", ("resolved", "true")))
    assert ops[resolved_filter - 1] == ("not_", ())
    assert resolved_filter < ops.index(("limit", (20,)))


def test_resistance_level_read_is_clamped(store, client):
    client.rows["user_patterns"] = [{"pattern_data": {"level": 9}}]
    assert store.get_resistance_level("u1") == 5
    client.rows["user_patterns"] = [{"pattern_data": {"level": "junk"}}]
    assert store.get_resistance_level("u1") == 0
    client.rows["user_patterns"] = []
    assert store.get_resistance_level("u1") == 0


def test_save_resistance_level_upserts_on_user_and_pattern(store, client):
    store.save_resistance_level("u1", 3, "iv-1")
    query = client.executed[-1]
    assert query.table == "user_patterns"
    name, (payload,) = query.ops[0]
    assert name == "upsert"
    assert payload["pattern_type"] == RESISTANCE_PATTERN
    assert payload["pattern_data"]["level"] == 3
    assert ("upsert_kwargs", (("on_conflict", "user_id,pattern_type"),)) in query.ops


def test_backend_failure_wraps_into_datastore_error(store, client):
    client.error = ConnectionError("reset by peer")
    with pytest.raises(DatastoreError, match="list_tasks failed"):
        store.list_tasks("u1")


def test_open_circuit_fails_fast_with_503(store, client):
    client.error = ConnectionError("reset by peer")
    for _ in range(2):
        with pytest.raises(DatastoreError):
            store.ping()
    executed = len(client.executed)

    with pytest.raises(DatastoreError) as excinfo:
        store.ping()
    assert excinfo.value.status_code == 503
    assert len(client.executed) == executed


def test_record_signals_counts_rows(store, client):
    assert store.record_signals([]) == 0
    assert store.record_signals([{"user_id": "u1"}, {"user_id": "u1"}]) == 2
