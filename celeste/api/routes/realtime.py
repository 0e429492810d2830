"""
Live pattern stream for the client widget.

GET /api/realtime/{user_id} is a server-sent event stream. Every poll
interval the user's patterns are re-read (through the analysis cache) and
anything new is pushed as a ``data:`` line; a comment heartbeat keeps idle
proxies from closing the connection.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, StreamingResponse

from celeste.api.dependencies import get_analysis_service
from celeste.api.models import ErrorResponse, validate_identifier
from celeste.config import REALTIME_HEARTBEAT_SECONDS, REALTIME_POLL_SECONDS
from celeste.observability.telemetry import counter, log_event
from celeste.service import AnalysisService
from celeste.utils.redaction import redact

router = APIRouter(prefix="/api/realtime", tags=["realtime"])

HEARTBEAT = ": heartbeat\n\n"

# Proxies such as nginx buffer responses unless told not to
STREAM_HEADERS = {"X-Accel-Buffering": "no"}


def format_event(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def event_stream(
    request: Request,
    service: AnalysisService,
    user_id: str,
    poll_seconds: float,
    heartbeat_seconds: float,
    max_events: int | None = None,
) -> AsyncIterator[str]:
    """
    Poll the service until the client disconnects.

    max_events counts every chunk written, heartbeats included.

    Side Effects:
        - Interventions pushed on the stream are recorded as deliveries
    """
    announced: set[str] = set()
    sent = 0
    last_heartbeat = time.monotonic()
    counter("realtime.connections")
    log_event("realtime.connected", user=redact(user_id))

    try:
        while not await request.is_disconnected():
            # Datastore reads are blocking
            event = await run_in_threadpool(service.realtime_event, user_id, announced)
            chunks = [format_event(event)] if event is not None else []

            now = time.monotonic()
            if now - last_heartbeat >= heartbeat_seconds:
                chunks.append(HEARTBEAT)
                last_heartbeat = now

            for chunk in chunks:
                yield chunk
                sent += 1
                if max_events is not None and sent >= max_events:
                    return

            await asyncio.sleep(poll_seconds)
    finally:
        log_event("realtime.closed", user=redact(user_id), sent=sent)


@router.get("/{user_id}", response_model=None)
async def realtime(
    user_id: str,
    request: Request,
    max_events: int | None = Query(default=None, ge=1),
    service: AnalysisService = Depends(get_analysis_service),
) -> StreamingResponse | JSONResponse:
    """
    Stream ``intervention`` and ``pattern_detected`` events for a user.

    Each pattern is announced once per connection; a critical pattern is
    announced as an intervention at the user's current resistance level.
    """
    try:
        user_id = validate_identifier(user_id, "user_id")
    except ValueError:
        body = ErrorResponse(error="Invalid user id", invalid_fields=["user_id"])
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump())

    return StreamingResponse(
        event_stream(
            request,
            service,
            user_id,
            poll_seconds=REALTIME_POLL_SECONDS,
            heartbeat_seconds=REALTIME_HEARTBEAT_SECONDS,
            max_events=max_events,
        ),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
    )
