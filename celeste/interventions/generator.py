"""
Intervention generator: picks the template for a pattern at the user's
resistance level and fills it from the pattern evidence and comparison data.

Rendering is deterministic. The only randomness is the optional blend of an
ML suggestion into the message, drawn from an explicitly seedable RNG.
"""

from __future__ import annotations

import random
import uuid
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from celeste.config import DEFAULT_DAILY_BURN, INTERVENTION_SEED
from celeste.detection.models import PatternResult
from celeste.interventions.templates import LEVEL_NAMES, get_template
from celeste.observability.logging import get_logger
from celeste.observability.telemetry import counter

logger = get_logger(__name__)

MONEY_FACTS = frozenset(
    {
        "cost",
        "daily_burn",
        "current_mrr",
        "top_competitor_revenue",
        "breakthrough_revenue",
        "industry_average",
        "your_price",
        "market_average",
        "monthly_loss",
        "annual_loss",
        "target_price",
        "market_mrr",
        "revenue_gap",
        "top_performer_revenue",
        "current_revenue",
        "expected_revenue",
        "growth_gap",
        "peak_revenue",
    }
)

# Placeholder defaults when comparison data is missing
FALLBACK_TOP_COMPETITOR_REVENUE = 10000
FALLBACK_BREAKTHROUGH_REVENUE = 25000


class Intervention(BaseModel):
    """Generated message/directive pair for one detected pattern."""

    message: str
    directive: str
    severity: str
    level: int
    level_name: str
    pattern_type: str
    tracking_id: str
    estimated_cost: float
    source: str = "template"

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump()
        data["estimated_cost"] = round(self.estimated_cost, 2)
        return data


@dataclass
class InterventionContext:
    """Business numbers and peer data the templates compare against."""

    current_mrr: float = 0.0
    months_in_business: int = 0
    daily_burn: float = DEFAULT_DAILY_BURN
    competitors: list[dict[str, Any]] = field(default_factory=list)
    breakthroughs: list[dict[str, Any]] = field(default_factory=list)


class _Facts(dict):
    """format_map mapping that renders unknown placeholders as 'n/a'."""

    def __missing__(self, key: str) -> str:
        logger.debug("Template placeholder %s has no value", key)
        return "n/a"


def format_money(value: Any) -> str:
    try:
        return f"{round(float(value)):,}"
    except (TypeError, ValueError):
        return "0"


def build_facts(pattern: PatternResult, context: InterventionContext) -> dict[str, Any]:
    """Flatten evidence plus derived comparison numbers into template facts."""
    evidence = pattern.evidence
    competitor_revenues = sorted(
        (float(c.get("monthly_recurring_revenue") or 0) for c in context.competitors),
        reverse=True,
    )
    breakthrough_revenues = [
        float(b.get("revenue_after_breakthrough") or 0) for b in context.breakthroughs
    ]
    mrr = context.current_mrr

    facts: dict[str, Any] = {
        "pattern_type": pattern.type,
        "cost": pattern.estimated_cost,
        "daily_burn": context.daily_burn,
        "current_mrr": mrr,
        "months_in_business": context.months_in_business,
        "competitor_count": len(competitor_revenues),
        "competitors_ahead": sum(1 for r in competitor_revenues if r > mrr),
        "top_competitor_revenue": (
            competitor_revenues[0] if competitor_revenues else FALLBACK_TOP_COMPETITOR_REVENUE
        ),
        "industry_average": (
            sum(competitor_revenues) / len(competitor_revenues) if competitor_revenues else 0
        ),
        "breakthrough_count": len(breakthrough_revenues),
        "breakthrough_revenue": (
            max(breakthrough_revenues) if breakthrough_revenues else FALLBACK_BREAKTHROUGH_REVENUE
        ),
        "repeated_excuse": "I'll get to it later",
        "excuse_count": 0,
        "oldest_task": "your top task",
        "primary_blocker": "unspecified",
    }
    facts.update({k: v for k, v in evidence.items() if v is not None})

    # Derived numbers some ladders need
    monthly_loss = float(evidence.get("monthly_loss") or pattern.estimated_cost)
    market_average = float(evidence.get("market_average") or 0)
    your_price = float(evidence.get("your_price") or 0)
    facts["annual_loss"] = monthly_loss * 12
    facts["target_price"] = market_average * 1.1
    facts["market_mrr"] = mrr + monthly_loss
    facts["free_sales"] = round(monthly_loss * 12 / your_price) if your_price else 0
    facts["planning_ratio"] = evidence.get("planning_to_execution_ratio", 0)
    top_average = float(evidence.get("top_performer_revenue") or 0)
    facts["top_multiple"] = round(top_average / mrr) if mrr else round(top_average)

    for key in MONEY_FACTS & facts.keys():
        facts[key] = format_money(facts[key])
    return facts


class InterventionGenerator:
    """Template lookup plus optional ML-suggestion blending.

    Pass rng (or seed) to make the blend reproducible; by default the seed
    comes from CELESTE_INTERVENTION_SEED and is otherwise unseeded.
    """

    def __init__(self, rng: random.Random | None = None, seed: int | None = INTERVENTION_SEED):
        self.rng = rng or random.Random(seed)

    def generate(
        self,
        pattern: PatternResult,
        level: int,
        context: InterventionContext | None = None,
        suggestion: str | None = None,
    ) -> Intervention:
        """Render the intervention for pattern at the given resistance level.

        Args:
            pattern: Highest-cost detected pattern
            level: Resistance level (clamped to 0-5)
            context: Comparison data; missing pieces fall back to defaults
            suggestion: ML-generated sentence, blended in on a coin flip

        Returns:
            Intervention with a fresh tracking id
        """
        context = context or InterventionContext()
        template, level = get_template(pattern.type, level)
        facts = _Facts(build_facts(pattern, context))

        message = template.message.format_map(facts)
        directive = template.directive.format_map(facts)
        source = "template"

        if suggestion and self.rng.random() > 0.5:
            message = f"{suggestion.strip().rstrip('.')}. {message}"
            source = "ml_blend"
            counter("intervention.ml_blend")

        counter(f"intervention.generated.{pattern.type}")
        return Intervention(
            message=message,
            directive=directive,
            severity=template.severity,
            level=level,
            level_name=LEVEL_NAMES[level],
            pattern_type=pattern.type,
            tracking_id=uuid.uuid4().hex,
            estimated_cost=pattern.estimated_cost,
            source=source,
        )
