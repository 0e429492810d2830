"""
Resistance tracking endpoint.

POST /api/track-resistance scores a user's reply to an intervention for
pushback and escalates their resistance level (never decreases, max 5).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator

from celeste.api.dependencies import get_analysis_service
from celeste.api.models import validate_identifier
from celeste.config import MAX_MESSAGE_CHARS
from celeste.service import AnalysisService

router = APIRouter(prefix="/api", tags=["resistance"])


class TrackResistanceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    reply: str = Field(..., max_length=MAX_MESSAGE_CHARS)
    intervention_id: str | None = Field(default=None, alias="interventionId")

    @field_validator("user_id")
    @classmethod
    def validate_user_id(cls, v: str) -> str:
        return validate_identifier(v, "userId")

    @field_validator("intervention_id")
    @classmethod
    def validate_intervention_id(cls, v: str | None) -> str | None:
        return validate_identifier(v, "interventionId") if v is not None else None


class TrackResistanceResponse(BaseModel):
    success: bool = True
    previous_level: int
    resistance_level: int
    resistance_score: int
    escalated: bool
    persisted: bool


@router.post("/track-resistance", response_model=TrackResistanceResponse)
def track_resistance(
    request: TrackResistanceRequest,
    service: AnalysisService = Depends(get_analysis_service),
) -> TrackResistanceResponse:
    update = service.track_resistance(request.user_id, request.reply, request.intervention_id)
    return TrackResistanceResponse(
        previous_level=update.previous_level,
        resistance_level=update.level,
        resistance_score=update.score,
        escalated=update.escalated,
        persisted=update.persisted,
    )
