"""
Behavioral analysis endpoint.

POST /api/analyze runs the detectors for a user and, when a pattern is
critical or expensive enough, returns an escalating intervention.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator

from celeste.api.dependencies import get_analysis_service
from celeste.api.models import validate_identifier
from celeste.config import MAX_MESSAGE_CHARS
from celeste.service import AnalysisService

router = APIRouter(prefix="/api", tags=["analysis"])


# ============================================================================
# Request/Response Models
# ============================================================================


class AnalyzeRequest(BaseModel):
    """Analyze one user message in the context of the user's history."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    message: str = Field(..., max_length=MAX_MESSAGE_CHARS)

    @field_validator("user_id")
    @classmethod
    def validate_user_id(cls, v: str) -> str:
        return validate_identifier(v, "userId")

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message must not be blank")
        return v


class AnalyzeResponse(BaseModel):
    success: bool = True
    patterns: list[dict[str, Any]]
    intervention: dict[str, Any] | None
    confidence: float
    should_intervene: bool
    processing_time_ms: int
    cached: bool
    resistance_level: int


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/analyze", response_model=AnalyzeResponse)
def analyze(
    request: AnalyzeRequest,
    service: AnalysisService = Depends(get_analysis_service),
) -> AnalyzeResponse:
    """
    Detect behavioral patterns and build an intervention when warranted.

    Datastore outages degrade to an empty pattern list (still 200).
    """
    result = service.analyze(request.user_id, request.message)
    return AnalyzeResponse(
        patterns=[p.to_dict() for p in result.patterns],
        intervention=result.intervention.to_dict() if result.intervention else None,
        confidence=round(result.confidence, 4),
        should_intervene=result.should_intervene,
        processing_time_ms=result.processing_time_ms,
        cached=result.cached,
        resistance_level=result.resistance_level,
    )
