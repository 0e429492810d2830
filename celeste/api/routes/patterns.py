"""GET /api/patterns/{user_id}: the stored behavioral profile for a user."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from celeste.api.dependencies import get_analysis_service
from celeste.api.models import ErrorResponse, validate_identifier
from celeste.service import AnalysisService

router = APIRouter(prefix="/api/patterns", tags=["patterns"])


@router.get("/{user_id}", response_model=None)
def get_patterns(
    user_id: str,
    service: AnalysisService = Depends(get_analysis_service),
) -> dict[str, Any] | JSONResponse:
    """
    Patterns, dominant pattern, trajectory and prediction accuracy.

    Datastore outages degrade to empty defaults (still 200).
    """
    try:
        user_id = validate_identifier(user_id, "user_id")
    except ValueError:
        body = ErrorResponse(error="Invalid user id", invalid_fields=["user_id"])
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump())

    profile = service.get_patterns(user_id)
    return {
        "success": True,
        "patterns": profile["patterns"],
        "dominant_pattern": profile["dominant_pattern"],
        "trajectory": profile["trajectory"],
        "prediction_accuracy": profile["prediction_accuracy"],
        "evolution": profile["evolution"],
        "total_signals": profile["total_signals"],
    }
