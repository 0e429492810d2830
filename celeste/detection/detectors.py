"""
The five behavioral detectors.

Each detector is a pure function of a BehavioralMetrics bundle: no I/O, no
clock reads (metrics.now is the reference time), no randomness. Identical
metrics always give identical results.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Callable

from celeste.config import MIN_COMPETITORS_FOR_RANK
from celeste.detection.language import future_tense_ratio
from celeste.detection.models import (
    BehavioralMetrics,
    PatternResult,
    PatternType,
    Severity,
    days_between,
    parse_timestamp,
)

PLANNING_TASK_TYPES = ("planning", "research", "analysis", "strategy")
SHIPPING_TASK_TYPES = ("launch", "ship", "build", "create", "implement")

Detector = Callable[[BehavioralMetrics], "PatternResult | None"]


def _task_type_matches(task: dict, keywords: tuple[str, ...]) -> bool:
    task_type = (task.get("task_type") or "").lower()
    return any(keyword in task_type for keyword in keywords)


# ============================================================================
# Procrastination
# ============================================================================


def detect_procrastination(metrics: BehavioralMetrics) -> PatternResult | None:
    """Unused tasks aging in the backlog plus future-tense talk.

    confidence = mean(min(avg_delay / 30, 1), future_tense_ratio)
    """
    delays: list[tuple[str, int]] = []
    for task in metrics.pending_tasks:
        created = parse_timestamp(task.get("created_at"))
        delays.append((task.get("task_requested") or "your top task", days_between(created, metrics.now)))

    total_delay = sum(days for _, days in delays)
    avg_delay = total_delay / len(delays) if delays else 0.0
    delay_score = min(avg_delay / 30, 1.0)

    messages = [metrics.message, *metrics.recent_messages]
    ratio = future_tense_ratio(messages)

    if not delays and ratio <= 0.6:
        return None

    confidence = (delay_score + ratio) / 2
    if confidence > 0.8:
        severity = Severity.CRITICAL
    elif confidence > 0.6:
        severity = Severity.HIGH
    else:
        severity = Severity.MEDIUM

    oldest_task = max(delays, key=lambda d: d[1])[0] if delays else "your top task"
    excuse = metrics.top_excuse or {}
    excuse_data = excuse.get("pattern_data") or {}
    estimated_cost = total_delay * metrics.daily_burn

    return PatternResult(
        type=PatternType.PROCRASTINATION.value,
        confidence=confidence,
        severity=severity,
        estimated_cost=estimated_cost,
        evidence={
            "total_delay_days": total_delay,
            "avg_task_delay": round(avg_delay),
            "pending_tasks": len(delays),
            "future_tense_ratio": round(ratio, 2),
            "repeated_excuse": excuse_data.get("excuse_text") or ("unspecified blocker" if excuse else None),
            "excuse_count": int(excuse_data.get("count") or excuse.get("occurrence_count") or 0),
            "oldest_task": oldest_task,
            "daily_burn_rate": round(metrics.daily_burn, 2),
        },
        insight=f"Procrastination pattern costing ${estimated_cost:,.0f}",
    )


# ============================================================================
# Pricing
# ============================================================================


def detect_pricing(metrics: BehavioralMetrics) -> PatternResult | None:
    """Per-product price more than 20% under the peer-group average."""
    if metrics.current_mrr <= 0:
        return None

    peer_prices = [
        (c["monthly_recurring_revenue"] / c["product_count"], c["monthly_recurring_revenue"])
        for c in metrics.competitors
        if c.get("monthly_recurring_revenue") and c.get("product_count")
    ]
    if not peer_prices:
        return None

    units = metrics.product_count or 1
    your_price = metrics.current_mrr / units
    market_average = sum(price for price, _ in peer_prices) / len(peer_prices)
    gap_percent = (market_average - your_price) / market_average * 100

    if gap_percent <= 20:
        return None

    top_revenue = max(revenue for _, revenue in peer_prices)
    monthly_loss = (market_average - your_price) * units

    return PatternResult(
        type=PatternType.PRICING_COWARDICE.value,
        confidence=min(gap_percent / 100, 0.95),
        severity=Severity.CRITICAL if gap_percent > 50 else Severity.HIGH,
        estimated_cost=monthly_loss,
        evidence={
            "your_price": round(your_price),
            "market_average": round(market_average),
            "gap_percent": round(gap_percent),
            "customer_count": units,
            "monthly_loss": round(monthly_loss),
            "revenue_multiple": round(top_revenue / metrics.current_mrr),
        },
        insight=f"Underpricing by {round(gap_percent)}% costs ${monthly_loss:,.0f}/month",
    )


# ============================================================================
# Execution paralysis
# ============================================================================


def detect_execution_paralysis(metrics: BehavioralMetrics) -> PatternResult | None:
    """Plans pile up faster than anything ships, or open blockers exist."""
    planned = sum(1 for t in metrics.tasks if _task_type_matches(t, PLANNING_TASK_TYPES))
    shipped = sum(
        1
        for t in metrics.tasks
        if t.get("was_used") is True and _task_type_matches(t, SHIPPING_TASK_TYPES)
    )
    ratio = planned / (shipped or 1)
    blockers = metrics.blockers

    if ratio < 3 and not blockers:
        return None

    planning_confidence = min(planned / 10, 0.9)
    blocker_confidence = min(len(blockers) / 20, 0.9)
    confidence = (planning_confidence + blocker_confidence) / 2

    days_blocked = 0
    primary_blocker = "unspecified"
    if blockers:
        latest = max(
            (parse_timestamp(b.get("detected_at")) for b in blockers),
            key=lambda dt: dt.timestamp() if dt else float("-inf"),
        )
        days_blocked = days_between(latest, metrics.now)
        counts = Counter(
            (b.get("context") or {}).get("blocker") or b.get("pattern_type") or "unspecified"
            for b in blockers
        )
        primary_blocker = counts.most_common(1)[0][0]

    estimated_cost = days_blocked * metrics.daily_burn
    competitor_launches = sum(
        1 for c in metrics.competitors if (c.get("product_count") or 0) > metrics.product_count
    )

    return PatternResult(
        type=PatternType.EXECUTION_PARALYSIS.value,
        confidence=confidence,
        severity=Severity.CRITICAL if days_blocked > 30 else Severity.HIGH,
        estimated_cost=estimated_cost,
        evidence={
            "planning_to_execution_ratio": round(ratio, 1),
            "planned_but_not_started": planned,
            "projects_shipped": shipped,
            "days_blocked": days_blocked,
            "primary_blocker": primary_blocker,
            "blocker_count": len(blockers),
            "competitor_launches": competitor_launches,
        },
        insight=f"Analysis paralysis: {planned} plans, {shipped} executed",
    )


# ============================================================================
# Competitive rank
# ============================================================================


def competitive_rank(mrr: float, peer_revenues: list[float]) -> tuple[int, int]:
    """Rank (1 = highest revenue) and percentile among peers plus the user.

    Percentile is the share of the group at or below the user, so the top
    earner sits at 100 and the bottom at round(100 / n).
    """
    revenues = sorted([*peer_revenues, mrr], reverse=True)
    rank = revenues.index(mrr) + 1
    n = len(revenues)
    percentile = round((n - rank + 1) / n * 100)
    return rank, percentile


def detect_competitive_delusion(metrics: BehavioralMetrics) -> PatternResult | None:
    """Bottom half of revenue among at least five same-market peers."""
    peers = [c for c in metrics.competitors if c.get("monthly_recurring_revenue")]
    if len(peers) < MIN_COMPETITORS_FOR_RANK:
        return None

    revenues = [float(c["monthly_recurring_revenue"]) for c in peers]
    rank, percentile = competitive_rank(metrics.current_mrr, revenues)
    if percentile > 50:
        return None

    top_three = sorted(revenues, reverse=True)[:3]
    top_average = sum(top_three) / len(top_three)
    revenue_gap = top_average - metrics.current_mrr
    industry_average = sum(revenues) / len(revenues)

    return PatternResult(
        type=PatternType.COMPETITIVE_DELUSION.value,
        confidence=0.85,
        severity=Severity.CRITICAL if percentile < 20 else Severity.HIGH,
        estimated_cost=revenue_gap,
        evidence={
            "your_rank": rank,
            "total_competitors": len(peers) + 1,
            "percentile": percentile,
            "your_revenue": round(metrics.current_mrr),
            "revenue_gap": round(revenue_gap),
            "top_performer_revenue": round(top_average),
            "industry_average": round(industry_average),
        },
        insight=f"Bottom {percentile}% in your market. Gap: ${revenue_gap:,.0f}/month",
    )


# ============================================================================
# Revenue stagnation
# ============================================================================


def detect_revenue_stagnation(metrics: BehavioralMetrics) -> PatternResult | None:
    """Low-volatility revenue clustered around its mean (newest sample first)."""
    history = metrics.revenue_history
    if len(history) < 3:
        return None

    mean = sum(history) / len(history)
    if mean <= 0:
        return None

    variance = sum((r - mean) ** 2 for r in history) / len(history)
    volatility = math.sqrt(variance) / mean
    near_mean = sum(1 for r in history if abs(r - mean) / mean < 0.1)

    if volatility >= 0.15 or near_mean < len(history) * 0.7:
        return None

    months = near_mean
    current = history[0]
    potential = current * 1.1**months
    opportunity_cost = (potential - current) * months

    return PatternResult(
        type=PatternType.REVENUE_STAGNATION.value,
        confidence=min(months / 12, 0.9),
        severity=Severity.CRITICAL if months > 6 else Severity.HIGH,
        estimated_cost=opportunity_cost,
        evidence={
            "months_stagnant": months,
            "current_revenue": round(current),
            "peak_revenue": round(max(history)),
            "avg_revenue": round(mean),
            "volatility": round(volatility, 3),
            "expected_revenue": round(potential),
            "growth_gap": round(potential - current),
        },
        insight=f"Revenue flat for {months} months. Opportunity cost: ${opportunity_cost:,.0f}",
    )


DETECTORS: dict[str, Detector] = {
    PatternType.PROCRASTINATION.value: detect_procrastination,
    PatternType.PRICING_COWARDICE.value: detect_pricing,
    PatternType.EXECUTION_PARALYSIS.value: detect_execution_paralysis,
    PatternType.COMPETITIVE_DELUSION.value: detect_competitive_delusion,
    PatternType.REVENUE_STAGNATION.value: detect_revenue_stagnation,
}
