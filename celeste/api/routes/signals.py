"""
Client widget signal ingestion.

POST /api/pattern accepts batches of UI-level signals (typing hesitation, tab
switches, low prices typed into pricing fields) detected in the browser and
stores them as pattern occurrences.
"""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator

from celeste.api.dependencies import get_analysis_service
from celeste.api.models import validate_dict_structure, validate_identifier
from celeste.service import AnalysisService

router = APIRouter(prefix="/api", tags=["signals"])

SignalType = Literal[
    "hesitation",
    "uncertainty",
    "distraction",
    "procrastination",
    "pricing_cowardice",
]


class ClientSignal(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: SignalType
    confidence: float
    evidence: dict[str, Any] = Field(default_factory=dict)
    detected_at: str | None = Field(default=None, alias="detectedAt", max_length=64)
    source: str = Field(default="client", max_length=32)

    @field_validator("confidence")
    @classmethod
    def clamp_confidence(cls, v: float) -> float:
        return max(0.0, min(v, 1.0))

    @field_validator("evidence")
    @classmethod
    def validate_evidence(cls, v: dict[str, Any]) -> dict[str, Any]:
        validate_dict_structure(v)
        return v


class SignalBatch(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    patterns: list[ClientSignal] = Field(..., min_length=1, max_length=50)
    timestamp: int | str | None = None
    connection_id: str | None = Field(default=None, alias="connectionId", max_length=128)

    @field_validator("user_id")
    @classmethod
    def validate_user_id(cls, v: str) -> str:
        return validate_identifier(v, "userId")


@router.post("/pattern")
def ingest_signals(
    batch: SignalBatch,
    service: AnalysisService = Depends(get_analysis_service),
) -> dict[str, Any]:
    result = service.record_signals(
        batch.user_id,
        [s.model_dump() for s in batch.patterns],
        connection_id=batch.connection_id,
    )
    return {"success": True, "received": result.received, "stored": result.stored}
