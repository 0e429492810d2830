"""Unit tests for the behavioral cache and the circuit breaker"""

from __future__ import annotations

import pytest

from celeste.infrastructure.cache import (
    BehavioralCache,
    behavioral_key,
    profile_key,
    resistance_key,
)
from celeste.infrastructure.retry import CircuitBreaker, CircuitOpenError
from celeste.observability.telemetry import get_counters


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


# ============================================================================
# Cache
# ============================================================================


def test_cache_hit_and_miss_stats():
    cache = BehavioralCache(maxsize=10, ttl=30)
    assert cache.get("behavioral:u1") is None
    cache.set("behavioral:u1", {"patterns": []})
    assert cache.get("behavioral:u1") == {"patterns": []}

    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 0.5
    assert stats["size"] == 1


def test_cache_falsy_values_are_hits():
    cache = BehavioralCache(maxsize=10, ttl=30)
    cache.set(resistance_key("u1"), 0)
    assert cache.get(resistance_key("u1"), default=-1) == 0


def test_cache_is_bounded():
    cache = BehavioralCache(maxsize=3, ttl=30)
    for n in range(10):
        cache.set(f"behavioral:u{n}", n)
    assert len(cache) <= 3


def test_invalidate_user_drops_all_keys():
    cache = BehavioralCache(maxsize=10, ttl=30)
    for key in (behavioral_key("u1"), resistance_key("u1"), profile_key("u1"), profile_key("u2")):
        cache.set(key, 1)
    cache.invalidate_user("u1")
    assert len(cache) == 1
    assert cache.get(profile_key("u2")) == 1


def test_clear_resets_stats():
    cache = BehavioralCache(maxsize=10, ttl=30)
    cache.set("k", 1)
    cache.get("k")
    cache.clear()
    assert cache.stats()["hits"] == 0
    assert len(cache) == 0


# ============================================================================
# Circuit breaker
# ============================================================================


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(stage="test", fail_max=3, reset_timeout=30.0, clock=clock)


def fail():
    raise ConnectionError("down")


def test_breaker_opens_after_fail_max(breaker):
    for _ in range(3):
        with pytest.raises(ConnectionError):
            breaker.call(fail)
    assert breaker.state == "open"
    with pytest.raises(CircuitOpenError):
        breaker.call(lambda: "ok")
    assert get_counters()["circuit.test.opened"] == 1
    assert get_counters()["circuit.test.rejected"] == 1


def test_success_resets_failure_count(breaker):
    for _ in range(2):
        with pytest.raises(ConnectionError):
            breaker.call(fail)
    assert breaker.call(lambda: "ok") == "ok"
    with pytest.raises(ConnectionError):
        breaker.call(fail)
    assert breaker.state == "closed"


def test_half_open_probe_closes_on_success(breaker, clock):
    for _ in range(3):
        with pytest.raises(ConnectionError):
            breaker.call(fail)
    clock.now += 31
    assert breaker.call(lambda: "ok") == "ok"
    assert breaker.state == "closed"


def test_half_open_probe_failure_reopens(breaker, clock):
    for _ in range(3):
        with pytest.raises(ConnectionError):
            breaker.call(fail)
    clock.now += 31
    with pytest.raises(ConnectionError):
        breaker.call(fail)
    assert breaker.state == "open"
    with pytest.raises(CircuitOpenError):
        breaker.call(lambda: "ok")
