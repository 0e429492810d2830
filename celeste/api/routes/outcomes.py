"""
Outcome tracking endpoint.

POST /api/track-outcome scores what happened after an intervention and
stores it against the intervention's tracking id.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, Field, field_validator

from celeste.api.dependencies import get_analysis_service
from celeste.api.models import validate_identifier
from celeste.interventions.effectiveness import Outcome
from celeste.service import AnalysisService

router = APIRouter(prefix="/api", tags=["outcomes"])


class TrackOutcomeRequest(BaseModel):
    tracking_id: str = Field(..., validation_alias=AliasChoices("tracking_id", "trackingId"))
    outcome: Outcome
    user_id: str | None = Field(default=None, validation_alias=AliasChoices("user_id", "userId"))

    @field_validator("tracking_id")
    @classmethod
    def validate_tracking_id(cls, v: str) -> str:
        return validate_identifier(v, "tracking_id")

    @field_validator("user_id")
    @classmethod
    def validate_user_id(cls, v: str | None) -> str | None:
        return validate_identifier(v, "userId") if v is not None else None


class TrackOutcomeResponse(BaseModel):
    success: bool = True
    effectiveness_recorded: float
    stored: bool


@router.post("/track-outcome", response_model=TrackOutcomeResponse)
def track_outcome(
    request: TrackOutcomeRequest,
    service: AnalysisService = Depends(get_analysis_service),
) -> TrackOutcomeResponse:
    """Record intervention effectiveness (0-1). A failed write still returns 200 with stored=false."""
    result = service.track_outcome(request.tracking_id, request.outcome, request.user_id)
    return TrackOutcomeResponse(effectiveness_recorded=result.effectiveness, stored=result.stored)
