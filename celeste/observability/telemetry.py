"""
In-process telemetry: structured log events, counters and latency samples.

Nothing is shipped externally; /metrics exposes a snapshot and tests assert
instrumentation against the in-memory state. Counters are bumped from the
datastore worker threads as well as request handlers, so every mutation
holds _LOCK.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import time
from collections import deque
from collections.abc import Iterator
from typing import Any

logger = logging.getLogger("celeste.telemetry")

# Oldest samples are dropped past this many per metric
MAX_SAMPLES = 5000

_LOCK = threading.Lock()
_COUNTERS: dict[str, int] = {}
_LATENCIES: dict[str, deque[float]] = {}


def _metric_key(metric_name: str) -> str:
    """'analyze.latency' and 'analyze.latency_ms' name the same series."""
    return metric_name.removesuffix("_ms")


def _percentile(sorted_samples: list[float], fraction: float) -> float:
    idx = min(int(len(sorted_samples) * fraction), len(sorted_samples) - 1)
    return sorted_samples[idx]


def log_event(event_name: str, **fields: Any) -> None:
    """
    Structured log event. Caller must redact user ids and message text.

    Side Effects:
        - Writes to logger (info level)
    """
    logger.info("event=%s %s", event_name, fields)


def counter(name: str, increment: int = 1) -> int:
    """Increment a named counter and return its new value."""
    with _LOCK:
        value = _COUNTERS.get(name, 0) + increment
        _COUNTERS[name] = value
    logger.debug("counter=%s value=%s", name, value)
    return value


def get_counters() -> dict[str, int]:
    with _LOCK:
        return dict(_COUNTERS)


def reset_counters() -> None:
    with _LOCK:
        _COUNTERS.clear()


def record_latency(metric_name: str, seconds: float) -> None:
    """Record a single latency sample in seconds."""
    key = _metric_key(metric_name)
    with _LOCK:
        samples = _LATENCIES.get(key)
        if samples is None:
            samples = _LATENCIES[key] = deque(maxlen=MAX_SAMPLES)
        samples.append(seconds)
    logger.debug("timing=%s seconds=%.6f", key, seconds)


@contextlib.contextmanager
def time_block(metric_name: str) -> Iterator[None]:
    """Time the enclosed block into metric_name (recorded even if it raises)."""
    start = time.perf_counter()
    try:
        yield
    finally:
        record_latency(metric_name, time.perf_counter() - start)


def _sorted_samples(metric_name: str) -> list[float]:
    with _LOCK:
        return sorted(_LATENCIES.get(_metric_key(metric_name), ()))


def get_p95(metric_name: str) -> float:
    """P95 latency in seconds, 0.0 with no samples."""
    samples = _sorted_samples(metric_name)
    return _percentile(samples, 0.95) if samples else 0.0


def get_latency_stats(metric_name: str) -> dict[str, float]:
    """count/min/max/avg/p50/p95/p99 in seconds for one metric."""
    samples = _sorted_samples(metric_name)
    if not samples:
        return {"count": 0, "min": 0.0, "max": 0.0, "avg": 0.0, "p50": 0.0, "p95": 0.0, "p99": 0.0}

    return {
        "count": len(samples),
        "min": samples[0],
        "max": samples[-1],
        "avg": sum(samples) / len(samples),
        "p50": _percentile(samples, 0.50),
        "p95": _percentile(samples, 0.95),
        "p99": _percentile(samples, 0.99),
    }


def reset_latencies() -> None:
    with _LOCK:
        _LATENCIES.clear()
