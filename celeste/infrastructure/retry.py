"""
Circuit breaker for calls to external collaborators (Supabase, inference API).

There is no retry policy: a failed call degrades to a default value upstream,
and the breaker stops hammering a collaborator that keeps failing.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from celeste.observability.telemetry import counter, log_event

T = TypeVar("T")


class AdapterError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CircuitOpenError(AdapterError):
    """Raised instead of calling through while the breaker is open."""


@dataclass
class CircuitBreaker:
    stage: str
    fail_max: int = 5
    reset_timeout: float = 60.0
    clock: Callable[[], float] = time.monotonic
    _failures: int = field(default=0, init=False)
    _state: str = field(default="closed", init=False)
    _opened_at: float = field(default=0.0, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def state(self) -> str:
        return self._state

    def allow_request(self) -> bool:
        with self._lock:
            if self._state == "open":
                if self.clock() - self._opened_at >= self.reset_timeout:
                    self._state = "half_open"
                    self._failures = 0
                    log_event("circuit.half_open", stage=self.stage)
                    return True
                counter(f"circuit.{self.stage}.rejected")
                return False
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state != "closed":
                log_event("circuit.closed", stage=self.stage)
            self._failures = 0
            self._state = "closed"

    def record_failure(self) -> None:
        """Count a failure; a failed half-open probe reopens immediately.

        Side Effects:
            - Increments circuit counter and logs when the circuit opens
        """
        with self._lock:
            self._failures += 1
            if self._state == "half_open" or self._failures >= self.fail_max:
                self._state = "open"
                self._opened_at = self.clock()
                counter(f"circuit.{self.stage}.opened")
                log_event("circuit.opened", stage=self.stage, failures=self._failures)

    def call(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Run func through the breaker.

        Raises:
            CircuitOpenError: if the circuit is open
            Exception: whatever func raised, after recording the failure
        """
        if not self.allow_request():
            raise CircuitOpenError(f"{self.stage} circuit open")
        try:
            result = func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result
