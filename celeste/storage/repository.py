"""
Behavioral datastore access.

BehavioralStore is the typed read/write contract the service depends on.
SupabaseBehavioralStore implements it over the supabase client; every call
goes through a circuit breaker and every failure surfaces as DatastoreError
so callers can degrade to "no data".
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from celeste.config import (
    COMPETITOR_LIMIT,
    MAX_RESISTANCE_LEVEL,
    STORE_BREAKER_FAIL_MAX,
    STORE_BREAKER_RESET_SECONDS,
    SUPABASE_ANON_KEY,
    SUPABASE_URL,
)
from celeste.infrastructure.retry import AdapterError, CircuitBreaker, CircuitOpenError
from celeste.observability.logging import get_logger
from celeste.observability.telemetry import counter, time_block
from celeste.utils.redaction import redact

logger = get_logger(__name__)

RESISTANCE_PATTERN = "intervention_resistance"
BLOCKER_TYPES = ["blocking", "excuse", "avoidance"]


class DatastoreError(AdapterError):
    """Any failure talking to the behavioral datastore."""


class BehavioralStore(Protocol):
    """Read/write contract for per-user behavioral data.

    Rows are plain dicts shaped like the underlying tables. Implementations
    raise DatastoreError on any backend failure.
    """

    def ping(self) -> None: ...

    def get_business_context(self, user_id: str) -> dict[str, Any] | None: ...

    def list_pending_tasks(self, user_id: str) -> list[dict[str, Any]]: ...

    def list_tasks(self, user_id: str) -> list[dict[str, Any]]: ...

    def list_revenue_history(self, user_id: str, limit: int = 12) -> list[float]: ...

    def list_recent_messages(self, user_id: str, limit: int = 50) -> list[str]: ...

    def get_top_excuse(self, user_id: str) -> dict[str, Any] | None: ...

    def list_blockers(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]: ...

    def list_competitors(
        self, user_id: str, business_type: str, limit: int = COMPETITOR_LIMIT
    ) -> list[dict[str, Any]]: ...

    def list_breakthroughs(self, pattern_type: str, limit: int = 5) -> list[dict[str, Any]]: ...

    def get_resistance_level(self, user_id: str) -> int: ...

    def save_resistance_level(
        self, user_id: str, level: int, intervention_id: str | None = None
    ) -> None: ...

    def record_delivery(self, delivery: dict[str, Any]) -> None: ...

    def record_outcome(self, outcome: dict[str, Any]) -> None: ...

    def list_user_patterns(self, user_id: str) -> list[dict[str, Any]]: ...

    def list_predictions(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]: ...

    def list_pattern_evolution(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]: ...

    def list_state_evolution(self, user_id: str, limit: int = 100) -> list[dict[str, Any]]: ...

    def record_signals(self, rows: list[dict[str, Any]]) -> int: ...


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class SupabaseBehavioralStore:
    """BehavioralStore backed by Supabase tables.

    The client is created lazily so the app can start (and report itself
    unhealthy) without credentials.
    """

    def __init__(
        self,
        url: str = SUPABASE_URL,
        key: str = SUPABASE_ANON_KEY,
        client: Any | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self._url = url
        self._key = key
        self._client = client
        self.breaker = breaker or CircuitBreaker(
            stage="supabase",
            fail_max=STORE_BREAKER_FAIL_MAX,
            reset_timeout=STORE_BREAKER_RESET_SECONDS,
        )

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self._url or not self._key:
                raise DatastoreError("Supabase is not configured (SUPABASE_URL / SUPABASE_ANON_KEY)")
            from supabase import create_client

            self._client = create_client(self._url, self._key)
        return self._client

    def _execute(self, operation: str, build: Callable[[Any], Any]) -> list[dict[str, Any]]:
        """Run a query builder through the breaker and return its rows.

        Raises:
            DatastoreError: on breaker rejection or any client/backend failure
        """
        try:
            with time_block("store.latency"):
                response = self.breaker.call(lambda: build(self.client).execute())
        except DatastoreError:
            raise
        except CircuitOpenError as e:
            counter("store.circuit_rejected")
            raise DatastoreError(str(e), status_code=503) from e
        except Exception as e:
            counter("store.errors")
            logger.warning("Supabase %s failed: %s", operation, e)
            raise DatastoreError(f"{operation} failed: {e}") from e
        return response.data or []

    def ping(self) -> None:
        self._execute("ping", lambda c: c.table("user_patterns").select("user_id").limit(1))

    # ------------------------------------------------------------------
    # Reads feeding the detectors
    # ------------------------------------------------------------------

    def get_business_context(self, user_id: str) -> dict[str, Any] | None:
        rows = self._execute(
            "get_business_context",
            lambda c: c.table("user_business_context")
            .select("*")
            .eq("user_id", user_id)
            .limit(1),
        )
        return rows[0] if rows else None

    def list_pending_tasks(self, user_id: str) -> list[dict[str, Any]]:
        return self._execute(
            "list_pending_tasks",
            lambda c: c.table("task_history")
            .select("task_requested, created_at, used_date")
            .eq("user_id", user_id)
            .is_("used_date", "null")
            .order("created_at"),
        )

    def list_tasks(self, user_id: str) -> list[dict[str, Any]]:
        return self._execute(
            "list_tasks",
            lambda c: c.table("task_history")
            .select("task_type, was_used, created_at")
            .eq("user_id", user_id),
        )

    def list_revenue_history(self, user_id: str, limit: int = 12) -> list[float]:
        rows = self._execute(
            "list_revenue_history",
            lambda c: c.table("task_history")
            .select("revenue_after_use, created_at")
            .eq("user_id", user_id)
            .not_.is_("revenue_after_use", "null")
            .order("created_at", desc=True)
            .limit(limit),
        )
        revenue: list[float] = []
        for r in rows:
            value = r.get("revenue_after_use")
            if value is None:
                continue
            try:
                revenue.append(float(value))
            except (TypeError, ValueError):
                logger.warning("Skipping malformed revenue_after_use for %s: %r", redact(user_id), value)
                counter("store.malformed_rows")
        return revenue

    def list_recent_messages(self, user_id: str, limit: int = 50) -> list[str]:
        rows = self._execute(
            "list_recent_messages",
            lambda c: c.table("user_feedback")
            .select("user_input")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit),
        )
        return [r["user_input"] for r in rows if r.get("user_input")]

    def get_top_excuse(self, user_id: str) -> dict[str, Any] | None:
        rows = self._execute(
            "get_top_excuse",
            lambda c: c.table("user_patterns")
            .select("pattern_data, occurrence_count")
            .eq("user_id", user_id)
            .eq("pattern_type", "excuse")
            .order("occurrence_count", desc=True)
            .limit(1),
        )
        return rows[0] if rows else None

    def list_blockers(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        return self._execute(
            "list_blockers",
            lambda c: c.table("pattern_occurrences")
            .select("pattern_type, detected_at, context, resolved")
            .eq("user_id", user_id)
            .in_("pattern_type", BLOCKER_TYPES)
            # Unset counts as unresolved
            .not_.is_("resolved", "true")
            .order("detected_at", desc=True)
            .limit(limit),
        )

    def list_competitors(
        self, user_id: str, business_type: str, limit: int = COMPETITOR_LIMIT
    ) -> list[dict[str, Any]]:
        return self._execute(
            "list_competitors",
            lambda c: c.table("user_business_context")
            .select("user_id, monthly_recurring_revenue, product_count, business_stage, created_at")
            .eq("business_type", business_type)
            .neq("user_id", user_id)
            .gt("monthly_recurring_revenue", 0)
            .order("monthly_recurring_revenue", desc=True)
            .limit(limit),
        )

    def list_breakthroughs(self, pattern_type: str, limit: int = 5) -> list[dict[str, Any]]:
        return self._execute(
            "list_breakthroughs",
            lambda c: c.table("user_breakthroughs")
            .select("user_id, revenue_after_breakthrough, time_to_breakthrough")
            .eq("pattern_broken", pattern_type)
            .order("revenue_after_breakthrough", desc=True)
            .limit(limit),
        )

    # ------------------------------------------------------------------
    # Resistance level
    # ------------------------------------------------------------------

    def get_resistance_level(self, user_id: str) -> int:
        rows = self._execute(
            "get_resistance_level",
            lambda c: c.table("user_patterns")
            .select("pattern_data")
            .eq("user_id", user_id)
            .eq("pattern_type", RESISTANCE_PATTERN)
            .limit(1),
        )
        if not rows:
            return 0
        level = (rows[0].get("pattern_data") or {}).get("level", 0)
        try:
            return max(0, min(int(level), MAX_RESISTANCE_LEVEL))
        except (TypeError, ValueError):
            return 0

    def save_resistance_level(
        self, user_id: str, level: int, intervention_id: str | None = None
    ) -> None:
        """Upsert the per-user resistance row.

        Side Effects:
            - Writes user_patterns (last write wins under concurrency)
        """
        now = _now_iso()
        payload = {
            "user_id": user_id,
            "pattern_type": RESISTANCE_PATTERN,
            "pattern_data": {
                "level": max(0, min(level, MAX_RESISTANCE_LEVEL)),
                "last_escalation": now,
                "intervention_id": intervention_id,
            },
            "confidence": 0.9,
            "last_observed": now,
        }
        self._execute(
            "save_resistance_level",
            lambda c: c.table("user_patterns").upsert(payload, on_conflict="user_id,pattern_type"),
        )
        logger.info("Saved resistance level %d for %s", level, redact(user_id))

    # ------------------------------------------------------------------
    # Write-backs
    # ------------------------------------------------------------------

    def record_delivery(self, delivery: dict[str, Any]) -> None:
        payload = {"delivered_at": _now_iso(), **delivery}
        self._execute(
            "record_delivery",
            lambda c: c.table("intervention_deliveries").insert(payload),
        )
        logger.info("Recorded intervention delivery %s", delivery.get("intervention_id"))

    def record_outcome(self, outcome: dict[str, Any]) -> None:
        payload = {"measured_at": _now_iso(), **outcome}
        self._execute(
            "record_outcome",
            lambda c: c.table("intervention_effectiveness").upsert(
                payload, on_conflict="intervention_id"
            ),
        )
        logger.info("Recorded outcome for intervention %s", outcome.get("intervention_id"))

    def record_signals(self, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0
        inserted = self._execute(
            "record_signals",
            lambda c: c.table("pattern_occurrences").insert(rows),
        )
        return len(inserted) or len(rows)

    # ------------------------------------------------------------------
    # Profile reads
    # ------------------------------------------------------------------

    def list_user_patterns(self, user_id: str) -> list[dict[str, Any]]:
        return self._execute(
            "list_user_patterns",
            lambda c: c.table("user_patterns")
            .select("pattern_type, confidence, last_observed, occurrence_count, pattern_data")
            .eq("user_id", user_id)
            .order("last_observed", desc=True),
        )

    def list_predictions(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        return self._execute(
            "list_predictions",
            lambda c: c.table("behavioral_predictions")
            .select("*")
            .eq("user_id", user_id)
            .eq("outcome_verified", True)
            .order("created_at", desc=True)
            .limit(limit),
        )

    def list_pattern_evolution(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        return self._execute(
            "list_pattern_evolution",
            lambda c: c.table("pattern_evolution")
            .select("*")
            .eq("user_id", user_id)
            .order("analyzed_at", desc=True)
            .limit(limit),
        )

    def list_state_evolution(self, user_id: str, limit: int = 100) -> list[dict[str, Any]]:
        return self._execute(
            "list_state_evolution",
            lambda c: c.table("user_state_evolution")
            .select("*")
            .eq("user_id", user_id)
            .order("state_timestamp", desc=True)
            .limit(limit),
        )
