"""Health check and metrics endpoints for the Celeste API.

- /health - Datastore probe; 503 when the probe fails
- /metrics - In-process counters, cache stats and analysis latency (no PII)
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from celeste.api.dependencies import get_analysis_service
from celeste.config import APP_NAME, APP_VERSION
from celeste.observability.logging import get_logger
from celeste.observability.telemetry import get_counters, get_latency_stats
from celeste.service import AnalysisService

router = APIRouter(tags=["health"])
logger = get_logger(__name__)


@router.get("/health")
def health_check(service: AnalysisService = Depends(get_analysis_service)) -> JSONResponse:
    """Health check endpoint.

    Probes the datastore with a one-row read. Returns 503 when the probe
    fails so load balancers take the instance out of rotation.
    """
    report = service.health()
    body: dict[str, Any] = {
        "status": "healthy" if report.healthy else "unhealthy",
        "database": report.database,
        "uptime": report.uptime_seconds,
        "service": APP_NAME,
        "version": APP_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "cache": service.cache.stats(),
    }
    if not report.healthy:
        logger.warning("Health probe failed: %s", report.error)
        body["error"] = "datastore unavailable"
    return JSONResponse(status_code=200 if report.healthy else 503, content=body)


@router.get("/metrics")
def metrics(service: AnalysisService = Depends(get_analysis_service)) -> dict[str, Any]:
    """Aggregate in-process metrics. Contains no PII."""
    return {
        "counters": get_counters(),
        "cache": service.cache.stats(),
        "latency": {
            "analyze": get_latency_stats("analyze.latency"),
            "store": get_latency_stats("store.latency"),
        },
        "timestamp": datetime.now(UTC).isoformat(),
    }
