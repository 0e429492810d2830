"""Analysis service layer: facade between API routes and the datastore.

Owns the per-request fan-out of datastore reads, the cache, detector scoring,
intervention generation and the write-backs (delivery, outcome, signals).
Datastore failures never escape: each read degrades to its empty default.
"""

from __future__ import annotations

import concurrent.futures
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from celeste.config import (
    RECENT_MESSAGE_LIMIT,
    SLOW_REQUEST_MS,
    STORE_CALL_TIMEOUT_SECONDS,
)
from celeste.detection.engine import detect_patterns, should_intervene
from celeste.detection.models import BehavioralMetrics, PatternResult, parse_timestamp, utc_now
from celeste.infrastructure.cache import BehavioralCache, behavioral_key, profile_key
from celeste.interventions.effectiveness import Outcome, calculate_effectiveness
from celeste.interventions.generator import (
    Intervention,
    InterventionContext,
    InterventionGenerator,
)
from celeste.interventions.resistance import ResistanceTracker, ResistanceUpdate
from celeste.ml.inference import Classification, InferenceClient, keyword_classify
from celeste.observability.logging import get_logger
from celeste.observability.telemetry import counter, log_event, record_latency
from celeste.storage.repository import RESISTANCE_PATTERN, BehavioralStore, DatastoreError
from celeste.utils.redaction import preview, redact

logger = get_logger(__name__)

_SERVICE_STARTED = time.monotonic()


@dataclass
class CachedAnalysis:
    """What is cached under behavioral:{user_id}."""

    patterns: list[PatternResult]
    context: InterventionContext


@dataclass
class AnalysisResult:
    patterns: list[PatternResult]
    intervention: Intervention | None
    should_intervene: bool
    processing_time_ms: int
    cached: bool
    resistance_level: int

    @property
    def confidence(self) -> float:
        return self.patterns[0].confidence if self.patterns else 0.0


@dataclass
class OutcomeResult:
    effectiveness: float
    stored: bool


@dataclass
class SignalResult:
    received: int
    stored: int


@dataclass
class HealthReport:
    healthy: bool
    database: str
    uptime_seconds: float
    error: str | None = None


def find_dominant_pattern(patterns: list[dict[str, Any]], now: datetime) -> str | None:
    """Pattern type with the highest occurrence x confidence x recency score."""
    scores: dict[str, float] = defaultdict(float)
    for row in patterns:
        pattern_type = row.get("pattern_type")
        if not pattern_type or pattern_type == RESISTANCE_PATTERN:
            continue
        observed = parse_timestamp(row.get("last_observed"))
        age_days = (now - observed).total_seconds() / 86400 if observed else 1.0
        recency = 1 / max(age_days, 1.0)
        occurrences = row.get("occurrence_count") or 1
        confidence = row.get("confidence")
        confidence = 0.5 if confidence is None else float(confidence)
        scores[pattern_type] += occurrences * confidence * recency
    if not scores:
        return None
    return max(scores, key=scores.__getitem__)


def prediction_accuracy(predictions: list[dict[str, Any]]) -> float:
    """Share of verified predictions that were also high-confidence."""
    if not predictions:
        return 0.0
    accurate = sum(
        1
        for p in predictions
        if p.get("outcome_verified") and float(p.get("confidence") or 0) > 0.7
    )
    return round(accurate / len(predictions), 4)


def analyze_trajectory(states: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Momentum/energy direction between the oldest and newest state (newest first)."""
    if len(states) < 2:
        return None

    def current(row: dict[str, Any], column: str) -> float:
        return float((row.get(column) or {}).get("current") or 0)

    latest, oldest = states[0], states[-1]
    momentum_delta = current(latest, "momentum_trajectory") - current(oldest, "momentum_trajectory")
    energy_delta = current(latest, "energy_trajectory") - current(oldest, "energy_trajectory")

    if momentum_delta > 0:
        direction = "ascending"
    elif momentum_delta < 0:
        direction = "descending"
    else:
        direction = "flat"

    return {
        "direction": direction,
        "velocity": abs(momentum_delta),
        "energy_trend": energy_delta,
        "breakthrough_proximity": (latest.get("breakthrough_indicators") or {}).get("proximity", 0),
        "risk_level": (latest.get("risk_factors") or {}).get("level", "unknown"),
    }


class AnalysisService:
    """Behavioral analysis facade.

    One instance is shared across requests; it holds the cache, the health
    probe executor and the intervention RNG. Datastore reads run on a pool
    created per fan-out, one thread per read, so the call timeout bounds the
    read itself and never time spent queued behind other requests.
    """

    def __init__(
        self,
        store: BehavioralStore,
        cache: BehavioralCache | None = None,
        generator: InterventionGenerator | None = None,
        inference: InferenceClient | None = None,
        call_timeout: float = STORE_CALL_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.cache = cache or BehavioralCache()
        self.generator = generator or InterventionGenerator()
        self.inference = inference or InferenceClient()
        self.resistance = ResistanceTracker(store, self.cache)
        self.call_timeout = call_timeout
        self.clock = clock
        self._probe_executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="celeste-health"
        )

    def close(self) -> None:
        self._probe_executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Datastore fan-out
    # ------------------------------------------------------------------

    def _gather(
        self, user_id: str, calls: dict[str, tuple[Callable[[], Any], Any]]
    ) -> tuple[dict[str, Any], list[str]]:
        """Run independent reads in parallel, joined before returning.

        Args:
            calls: name -> (zero-arg callable, default used on failure/timeout)

        Returns:
            (name -> result or its default, names that fell back)
        """
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=len(calls), thread_name_prefix="celeste-store"
        )
        try:
            futures = {name: executor.submit(fn) for name, (fn, _) in calls.items()}
            done, _ = concurrent.futures.wait(futures.values(), timeout=self.call_timeout)
        finally:
            # Reads still running past the timeout finish in the background
            executor.shutdown(wait=False, cancel_futures=True)

        results: dict[str, Any] = {}
        failed: list[str] = []
        for name, future in futures.items():
            default = calls[name][1]
            if future not in done:
                self._fallback(user_id, name, "timeout")
                results[name] = default
                failed.append(name)
                continue
            try:
                results[name] = future.result()
            except DatastoreError as e:
                self._fallback(user_id, name, str(e))
                results[name] = default
                failed.append(name)
        return results, failed

    def _fallback(self, user_id: str, name: str, reason: str) -> None:
        logger.warning("Datastore read %s failed for %s: %s", name, redact(user_id), reason)
        counter("store.fallback")
        log_event("store.fallback", read=name, user=redact(user_id), reason=reason)

    def _start_classification(self, message: str) -> concurrent.futures.Future[Classification]:
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="celeste-inference"
        )
        future = executor.submit(self.inference.classify, message)
        executor.shutdown(wait=False)
        return future

    def _log_classification(
        self,
        user_id: str,
        message: str,
        future: concurrent.futures.Future[Classification],
        deadline: float,
    ) -> None:
        """Log the message label; keyword-matched if the model call misses the deadline."""
        try:
            classification = future.result(timeout=max(deadline - time.monotonic(), 0))
        except concurrent.futures.TimeoutError:
            counter("inference.fallback")
            log_event("inference.fallback", call="classify", error="timeout")
            classification = keyword_classify(message)

        if classification.top_label:
            counter(f"message.label.{classification.top_label.replace(' ', '_')}")
            log_event(
                "message.classified",
                user=redact(user_id),
                label=classification.top_label,
                source=classification.source,
            )

    def _collect(self, user_id: str, message: str) -> tuple[BehavioralMetrics, bool]:
        """Metrics plus whether every read succeeded."""
        # Classified alongside the reads; the label is only logged
        deadline = time.monotonic() + self.inference.timeout
        classification = self._start_classification(message) if message.strip() else None

        store = self.store
        rows, failed = self._gather(
            user_id,
            {
                "context": (lambda: store.get_business_context(user_id), None),
                "pending_tasks": (lambda: store.list_pending_tasks(user_id), []),
                "tasks": (lambda: store.list_tasks(user_id), []),
                "revenue_history": (lambda: store.list_revenue_history(user_id), []),
                "recent_messages": (
                    lambda: store.list_recent_messages(user_id, RECENT_MESSAGE_LIMIT),
                    [],
                ),
                "top_excuse": (lambda: store.get_top_excuse(user_id), None),
                "blockers": (lambda: store.list_blockers(user_id), []),
            },
        )
        context = rows.pop("context") or {}

        # Peer group depends on the user's business type
        competitors: list[dict[str, Any]] = []
        business_type = context.get("business_type")
        if business_type:
            peer_rows, peer_failed = self._gather(
                user_id,
                {"competitors": (lambda: store.list_competitors(user_id, business_type), [])},
            )
            competitors = peer_rows["competitors"]
            failed.extend(peer_failed)

        if classification is not None:
            self._log_classification(user_id, message, classification, deadline)

        metrics = BehavioralMetrics.from_rows(
            user_id,
            message=message,
            now=self.clock(),
            context=context,
            competitors=competitors,
            **rows,
        )
        return metrics, not failed

    def collect_metrics(self, user_id: str, message: str = "") -> BehavioralMetrics:
        """Fetch everything the detectors need for one user."""
        return self._collect(user_id, message)[0]

    def _analysis(self, user_id: str, message: str) -> tuple[CachedAnalysis, bool]:
        """Detected patterns for a user and whether they came from the cache.

        Results built from fallback defaults are returned but not cached.
        """
        key = behavioral_key(user_id)
        cached: CachedAnalysis | None = self.cache.get(key)
        if cached is not None:
            return cached, True

        metrics, complete = self._collect(user_id, message)
        analysis = CachedAnalysis(
            patterns=detect_patterns(metrics),
            context=InterventionContext(
                current_mrr=metrics.current_mrr,
                months_in_business=metrics.months_in_business,
                daily_burn=metrics.daily_burn,
                competitors=metrics.competitors,
            ),
        )
        if complete:
            self.cache.set(key, analysis)
        else:
            counter("analyze.degraded")
        return analysis, False

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def analyze(self, user_id: str, message: str) -> AnalysisResult:
        """Detect patterns for a user and build an intervention when warranted.

        Side Effects:
            - Reads the datastore (parallel fan-out) unless cached
            - Writes an intervention_deliveries row when an intervention is produced
            - Records analyze.latency and pattern counters
        """
        start = time.perf_counter()
        cached, from_cache = self._analysis(user_id, message)

        patterns = cached.patterns
        intervene = should_intervene(patterns)
        level = self.resistance.current_level(user_id)
        intervention = None
        if intervene:
            intervention = self._build_intervention(user_id, patterns[0], level, cached.context)

        elapsed = time.perf_counter() - start
        record_latency("analyze.latency", elapsed)
        processing_ms = round(elapsed * 1000)
        if processing_ms > SLOW_REQUEST_MS:
            logger.warning("Slow analysis for %s: %dms", redact(user_id), processing_ms)
            counter("analyze.slow")

        counter("analyze.requests")
        log_event(
            "analyze.completed",
            user=redact(user_id),
            message=preview(message),
            patterns=[p.type for p in patterns],
            intervened=intervention is not None,
            cached=from_cache,
            ms=processing_ms,
        )
        return AnalysisResult(
            patterns=patterns,
            intervention=intervention,
            should_intervene=intervene,
            processing_time_ms=processing_ms,
            cached=from_cache,
            resistance_level=level,
        )

    def _build_intervention(
        self, user_id: str, pattern: PatternResult, level: int, context: InterventionContext
    ) -> Intervention:
        rows, _ = self._gather(
            user_id,
            {"breakthroughs": (lambda: self.store.list_breakthroughs(pattern.type), [])},
        )
        breakthroughs = rows["breakthroughs"]
        context = InterventionContext(
            current_mrr=context.current_mrr,
            months_in_business=context.months_in_business,
            daily_burn=context.daily_burn,
            competitors=context.competitors,
            breakthroughs=breakthroughs,
        )
        suggestion = self.inference.suggest(pattern.type, pattern.evidence)
        intervention = self.generator.generate(pattern, level, context, suggestion=suggestion)

        try:
            self.store.record_delivery(
                {
                    "intervention_id": intervention.tracking_id,
                    "user_id": user_id,
                    "pattern_type": pattern.type,
                    "message_sent": intervention.message,
                    "delivery_context": {
                        "severity": intervention.severity,
                        "resistance_level": intervention.level,
                        "estimated_cost": round(pattern.estimated_cost, 2),
                        "source": intervention.source,
                    },
                }
            )
        except DatastoreError as e:
            logger.warning("Failed to record delivery %s: %s", intervention.tracking_id, e)
            counter("store.fallback")
        return intervention

    def track_outcome(
        self, tracking_id: str, outcome: Outcome, user_id: str | None = None
    ) -> OutcomeResult:
        """Score an outcome and upsert it keyed by tracking id.

        Side Effects:
            - Upserts intervention_effectiveness (stored=False if the write fails)
        """
        score = calculate_effectiveness(outcome)
        record = {
            "intervention_id": tracking_id,
            "effectiveness_score": score,
            "action_taken": outcome.action_taken,
            "revenue_impact": outcome.revenue_impact,
            "pattern_broken": outcome.pattern_broken,
            "led_to_breakthrough": outcome.breakthrough,
        }
        if user_id:
            record["user_id"] = user_id

        stored = True
        try:
            self.store.record_outcome(record)
        except DatastoreError as e:
            logger.warning("Failed to record outcome %s: %s", tracking_id, e)
            counter("store.fallback")
            stored = False

        counter("outcome.tracked")
        log_event("outcome.tracked", tracking_id=tracking_id, effectiveness=score, stored=stored)
        return OutcomeResult(effectiveness=score, stored=stored)

    def track_resistance(
        self, user_id: str, reply: str, intervention_id: str | None = None
    ) -> ResistanceUpdate:
        """Advance the resistance level from a reply; see ResistanceTracker.track."""
        return self.resistance.track(user_id, reply, intervention_id)

    def get_patterns(self, user_id: str) -> dict[str, Any]:
        """Stored behavioral profile: patterns, dominant pattern, trajectory."""
        key = profile_key(user_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        store = self.store
        rows, failed = self._gather(
            user_id,
            {
                "patterns": (lambda: store.list_user_patterns(user_id), []),
                "predictions": (lambda: store.list_predictions(user_id), []),
                "evolution": (lambda: store.list_pattern_evolution(user_id), []),
                "states": (lambda: store.list_state_evolution(user_id), []),
            },
        )
        patterns = [p for p in rows["patterns"] if p.get("pattern_type") != RESISTANCE_PATTERN]
        profile = {
            "patterns": patterns,
            "dominant_pattern": find_dominant_pattern(patterns, self.clock()),
            "trajectory": analyze_trajectory(rows["states"]),
            "prediction_accuracy": prediction_accuracy(rows["predictions"]),
            "evolution": rows["evolution"],
            "total_signals": len(patterns) + len(rows["predictions"]),
        }
        if not failed:
            self.cache.set(key, profile)
        return profile

    def record_signals(
        self,
        user_id: str,
        signals: list[dict[str, Any]],
        connection_id: str | None = None,
    ) -> SignalResult:
        """Persist client-widget signals as pattern occurrences.

        Side Effects:
            - Inserts pattern_occurrences rows (stored=0 if the write fails)
        """
        rows = [
            {
                "user_id": user_id,
                "pattern_type": s["type"],
                "detected_at": s.get("detected_at") or utc_now().isoformat(),
                "context": {
                    "confidence": s["confidence"],
                    "evidence": s.get("evidence") or {},
                    "source": s.get("source") or "client",
                    "connection_id": connection_id,
                },
            }
            for s in signals
        ]
        try:
            stored = self.store.record_signals(rows)
        except DatastoreError as e:
            logger.warning("Failed to store %d signals for %s: %s", len(rows), redact(user_id), e)
            counter("store.fallback")
            stored = 0
        counter("signals.received", len(rows))
        return SignalResult(received=len(rows), stored=stored)

    def realtime_event(self, user_id: str, announced: set[str]) -> dict[str, Any] | None:
        """Next event for a user's live stream, None when there is nothing new.

        A critical pattern becomes an ``intervention`` event at the user's
        resistance level; otherwise newly seen patterns are sent as one
        ``pattern_detected`` event. ``announced`` holds what this connection
        has already been sent and is updated in place.

        Side Effects:
            - Writes an intervention_deliveries row for each intervention event
        """
        cached, _ = self._analysis(user_id, "")
        patterns = cached.patterns
        timestamp = int(self.clock().timestamp() * 1000)

        critical = next((p for p in patterns if p.is_critical), None)
        if critical is not None:
            key = f"intervention:{critical.type}"
            if key in announced:
                return None
            level = self.resistance.current_level(user_id)
            intervention = self._build_intervention(user_id, critical, level, cached.context)
            announced.add(key)
            counter("realtime.interventions")
            return {
                "type": "intervention",
                "pattern": critical.type,
                "severity": critical.severity.value,
                "confidence": round(critical.confidence, 4),
                "estimated_cost": round(critical.estimated_cost, 2),
                "intervention": intervention.message,
                "directive": intervention.directive,
                "tracking_id": intervention.tracking_id,
                "resistance_level": level,
                "timestamp": timestamp,
            }

        fresh = [p for p in patterns if f"pattern:{p.type}" not in announced]
        if not fresh:
            return None
        announced.update(f"pattern:{p.type}" for p in fresh)
        return {
            "type": "pattern_detected",
            "patterns": [p.to_dict() for p in fresh],
            "timestamp": timestamp,
        }

    def health(self) -> HealthReport:
        """Probe the datastore with a one-row read."""
        uptime = round(time.monotonic() - _SERVICE_STARTED, 1)
        future = self._probe_executor.submit(self.store.ping)
        try:
            future.result(timeout=self.call_timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            return HealthReport(False, "disconnected", uptime, error="probe timed out")
        except DatastoreError as e:
            return HealthReport(False, "disconnected", uptime, error=str(e))
        return HealthReport(True, "connected", uptime)
