"""Integration tests for the realtime event stream

The streams are bounded with max_events so TestClient can read them to the
end; poll and heartbeat intervals are shortened per test.
"""

from __future__ import annotations

import asyncio
import json

import pytest

from celeste.api.routes import realtime
from celeste.observability.telemetry import get_counters


@pytest.fixture
def fast_stream(monkeypatch):
    monkeypatch.setattr(realtime, "REALTIME_POLL_SECONDS", 0.01)


def read_stream(client, path: str) -> list[str]:
    with client.stream("GET", path) as response:
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        return [line for line in response.iter_lines() if line]


def data_events(lines: list[str]) -> list[dict]:
    return [json.loads(line.removeprefix("data: ")) for line in lines if line.startswith("data: ")]


def test_critical_pattern_streams_intervention(client, procrastinating_store, fast_stream):
    procrastinating_store.messages["u1"] = ["I will launch tomorrow"]
    procrastinating_store.resistance["u1"] = 2

    events = data_events(read_stream(client, "/api/realtime/u1?max_events=1"))

    assert len(events) == 1
    event = events[0]
    assert event["type"] == "intervention"
    assert event["pattern"] == "procrastination"
    assert event["severity"] == "critical"
    assert event["resistance_level"] == 2
    assert event["intervention"]
    assert event["tracking_id"] == procrastinating_store.deliveries[-1]["intervention_id"]


def test_non_critical_patterns_announced_once(client, procrastinating_store, fast_stream, monkeypatch):
    monkeypatch.setattr(realtime, "REALTIME_HEARTBEAT_SECONDS", 0)
    # One future phrase and one action phrase keeps procrastination below critical
    procrastinating_store.messages["u1"] = ["I will do it", "I shipped it"]

    lines = read_stream(client, "/api/realtime/u1?max_events=3")

    events = data_events(lines)
    assert [e["type"] for e in events] == ["pattern_detected"]
    assert [p["type"] for p in events[0]["patterns"]] == ["procrastination"]
    assert lines.count(realtime.HEARTBEAT.strip()) == 2
    assert procrastinating_store.deliveries == []


def test_idle_stream_sends_heartbeats(client, store, fast_stream, monkeypatch):
    monkeypatch.setattr(realtime, "REALTIME_HEARTBEAT_SECONDS", 0)
    lines = read_stream(client, "/api/realtime/u2?max_events=2")
    assert lines == [": heartbeat", ": heartbeat"]


def test_stream_rejects_invalid_user_id(client):
    response = client.get("/api/realtime/bad%20id")
    assert response.status_code == 400
    assert response.json()["invalid_fields"] == ["user_id"]


class DisconnectAfter:
    """Request stand-in that reports a disconnect after a number of polls."""

    def __init__(self, polls: int) -> None:
        self.polls = polls

    async def is_disconnected(self) -> bool:
        self.polls -= 1
        return self.polls < 0


def test_stream_stops_when_client_disconnects(service, store):
    async def collect() -> list[str]:
        stream = realtime.event_stream(
            DisconnectAfter(polls=2), service, "u2", poll_seconds=0, heartbeat_seconds=0
        )
        return [chunk async for chunk in stream]

    chunks = asyncio.run(collect())

    assert chunks == [realtime.HEARTBEAT, realtime.HEARTBEAT]
    assert get_counters()["realtime.connections"] == 1
