"""
Detection domain models.

BehavioralMetrics is the bundle of already-fetched rows a detector scores;
PatternResult is what a detector emits when its pattern is present.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from celeste.config import DEFAULT_DAILY_BURN


def utc_now() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a datastore timestamp (ISO string or datetime) as aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def days_between(earlier: datetime | None, later: datetime) -> int:
    """Whole days elapsed, never negative."""
    if earlier is None:
        return 0
    return max(0, (later - earlier).days)


class PatternType(str, Enum):
    """Behavioral failure modes the detectors recognize."""

    PROCRASTINATION = "procrastination"
    PRICING_COWARDICE = "pricing_cowardice"
    EXECUTION_PARALYSIS = "execution_paralysis"
    COMPETITIVE_DELUSION = "competitive_delusion"
    REVENUE_STAGNATION = "revenue_stagnation"


class Severity(str, Enum):
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PatternResult(BaseModel):
    """A detected pattern with its confidence, evidence and dollar cost."""

    model_config = ConfigDict(frozen=True)

    type: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    severity: Severity
    evidence: dict[str, Any] = Field(default_factory=dict)
    estimated_cost: float = 0.0
    insight: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: float) -> float:
        return max(0.0, min(float(v), 1.0))

    @property
    def is_critical(self) -> bool:
        return self.severity == Severity.CRITICAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "confidence": round(self.confidence, 4),
            "severity": self.severity.value,
            "evidence": self.evidence,
            "estimated_cost": round(self.estimated_cost, 2),
            "insight": self.insight,
        }


@dataclass
class BehavioralMetrics:
    """Everything the detectors read for one user, fetched up front."""

    user_id: str
    now: datetime = field(default_factory=utc_now)
    message: str = ""
    current_mrr: float = 0.0
    product_count: int = 0
    business_type: str | None = None
    business_stage: str | None = None
    business_started_at: datetime | None = None
    pending_tasks: list[dict[str, Any]] = field(default_factory=list)
    tasks: list[dict[str, Any]] = field(default_factory=list)
    revenue_history: list[float] = field(default_factory=list)
    recent_messages: list[str] = field(default_factory=list)
    top_excuse: dict[str, Any] | None = None
    blockers: list[dict[str, Any]] = field(default_factory=list)
    competitors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def daily_burn(self) -> float:
        """Revenue per day, with a floor for users with no recorded MRR."""
        if self.current_mrr and self.current_mrr > 0:
            return self.current_mrr / 30
        return DEFAULT_DAILY_BURN

    @property
    def months_in_business(self) -> int:
        return days_between(self.business_started_at, self.now) // 30

    @classmethod
    def from_rows(
        cls,
        user_id: str,
        *,
        message: str = "",
        now: datetime | None = None,
        context: dict[str, Any] | None = None,
        **rows: Any,
    ) -> BehavioralMetrics:
        """Build from raw datastore rows; business context fields are optional."""
        context = context or {}
        return cls(
            user_id=user_id,
            now=now or utc_now(),
            message=message,
            current_mrr=float(context.get("monthly_recurring_revenue") or 0),
            product_count=int(context.get("product_count") or 0),
            business_type=context.get("business_type"),
            business_stage=context.get("business_stage"),
            business_started_at=parse_timestamp(context.get("created_at")),
            **rows,
        )
