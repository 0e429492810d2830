"""FastAPI server for the Celeste behavioral intervention API"""

from __future__ import annotations

import os
from typing import Any

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from celeste.api.middleware.rate_limit import RateLimitMiddleware
from celeste.api.middleware.security_headers import SecurityHeadersMiddleware
from celeste.api.models import ErrorResponse
from celeste.api.routes.analyze import router as analyze_router
from celeste.api.routes.health import router as health_router
from celeste.api.routes.outcomes import router as outcomes_router
from celeste.api.routes.patterns import router as patterns_router
from celeste.api.routes.realtime import router as realtime_router
from celeste.api.routes.resistance import router as resistance_router
from celeste.api.routes.signals import router as signals_router
from celeste.config import (
    API_HOST,
    API_PORT,
    APP_NAME,
    APP_VERSION,
    RATE_LIMIT_ANALYSES_PER_USER_PM,
    RATE_LIMIT_RPH,
    RATE_LIMIT_RPM,
    is_production,
)
from celeste.observability.logging import get_logger
from celeste.observability.telemetry import counter, log_event
from celeste.utils.redaction import redact

app = FastAPI(title=APP_NAME, version=APP_VERSION)

logger = get_logger(__name__)


# Custom validation error handler to prevent information leakage
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Return a sanitized 400 that names the offending fields without echoing
    validation rules or input back to the client.
    """
    errors = exc.errors()
    logger.warning("Validation error on %s: %s", redact(str(request.url)), errors)
    counter("api.validation_errors")

    body = ErrorResponse(
        error="Invalid request format. Please check your request and try again.",
        error_count=len(errors),
        invalid_fields=[str(err["loc"][-1]) for err in errors if err.get("loc")],
    )
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump())


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, redact(str(request.url)))
    counter("api.errors")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": "Internal server error"},
    )


# CORS - Restrict to specific origins for security
ALLOWED_ORIGINS = [
    "https://celeste.app",
    "https://www.celeste.app",
]

# Allow localhost in development only
if not is_production():
    ALLOWED_ORIGINS.extend(
        [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ]
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)

# Rate limiting - prevent abuse
app.add_middleware(
    RateLimitMiddleware,
    requests_per_minute=RATE_LIMIT_RPM,
    requests_per_hour=RATE_LIMIT_RPH,
    analyses_per_user_per_minute=RATE_LIMIT_ANALYSES_PER_USER_PM,
)

# Security headers
app.add_middleware(SecurityHeadersMiddleware)

# Validate datastore configuration on startup
_missing = [key for key in ("SUPABASE_URL", "SUPABASE_ANON_KEY") if not os.getenv(key)]
if _missing:
    if is_production():
        logger.critical("Datastore not configured in production: missing %s", ", ".join(_missing))
        raise RuntimeError(
            f"Configuration error: {', '.join(_missing)} not set in production. "
            "Refusing to start without a datastore."
        )
    logger.warning(
        "Datastore not configured (missing %s); analysis will run on empty defaults",
        ", ".join(_missing),
    )

# Include routers
app.include_router(health_router)
app.include_router(analyze_router)
app.include_router(outcomes_router)
app.include_router(patterns_router)
app.include_router(realtime_router)
app.include_router(resistance_router)
app.include_router(signals_router)

log_event("api.startup", service="celeste-api", version=APP_VERSION)


@app.get("/")
def root() -> dict[str, Any]:
    return {
        "service": APP_NAME,
        "version": APP_VERSION,
        "status": "running",
        "endpoints": {
            "health": "/health",
            "metrics": "/metrics",
            "analyze": "/api/analyze",
            "track_outcome": "/api/track-outcome",
            "track_resistance": "/api/track-resistance",
            "patterns": "/api/patterns/{user_id}",
            "realtime": "/api/realtime/{user_id}",
            "signals": "/api/pattern",
        },
    }


def main() -> None:
    uvicorn.run("celeste.api.app:app", host=API_HOST, port=API_PORT)
