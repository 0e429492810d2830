"""Rate limiting middleware for the Celeste API

Per-IP request limits plus a per-user limit on POST /api/analyze, which is
the endpoint that fans out to the datastore and the inference API.

Security features:
- IP spoofing protection (only trusts X-Forwarded-For behind a known proxy)
- Bounded memory via TTLCache buckets
"""

from __future__ import annotations

import ipaddress
import json
import os
import time
from collections.abc import Callable
from typing import Any

from cachetools import TTLCache
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from celeste.config import RATE_LIMIT_MAX_IPS
from celeste.observability.telemetry import counter, log_event
from celeste.utils.redaction import redact

EXEMPT_PATHS = frozenset({"/health", "/", "/metrics"})
ANALYZE_PATH = "/api/analyze"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window rate limiting keyed by client IP, with a per-user
    analysis budget read from the request body.

    For multi-instance deployments the buckets would need a shared store.
    """

    def __init__(
        self,
        app: Any,
        requests_per_minute: int = 60,
        requests_per_hour: int = 1000,
        analyses_per_user_per_minute: int = 20,
        trusted_proxy_header: str = "X-Vercel-Id",
    ) -> None:
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.requests_per_hour = requests_per_hour
        self.analyses_per_user_per_minute = analyses_per_user_per_minute

        # {key: [timestamp, ...]}; TTLCache evicts idle keys
        self.minute_buckets: TTLCache[str, list[float]] = TTLCache(maxsize=RATE_LIMIT_MAX_IPS, ttl=120)
        self.hour_buckets: TTLCache[str, list[float]] = TTLCache(maxsize=RATE_LIMIT_MAX_IPS, ttl=7200)
        self.user_buckets: TTLCache[str, list[float]] = TTLCache(maxsize=RATE_LIMIT_MAX_IPS, ttl=120)

        # Only trust X-Forwarded-For when the hosting proxy marks the request
        self._trusted_proxy_header = trusted_proxy_header

    def _is_valid_ip(self, ip_str: str) -> bool:
        try:
            ipaddress.ip_address(ip_str)
            return True
        except ValueError:
            return False

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP with spoofing protection.

        X-Forwarded-For is honored behind the trusted proxy, or in development
        for testing behind local proxies. Otherwise the socket IP is used.
        """
        trust_forwarded = self._trusted_proxy_header in request.headers or (
            os.getenv("CELESTE_ENV", "development") == "development"
        )
        if trust_forwarded:
            forwarded = request.headers.get("X-Forwarded-For")
            if forwarded:
                ip = forwarded.split(",")[0].strip()
                if self._is_valid_ip(ip):
                    return ip

        return request.client.host if request.client else "unknown"

    @staticmethod
    def _recent(bucket: list[float], max_age_seconds: int, now: float) -> list[float]:
        """Timestamps younger than max_age_seconds"""
        return [ts for ts in bucket if now - ts < max_age_seconds]

    @staticmethod
    def _extract_user_id(body: bytes) -> str | None:
        """userId from a JSON body, or None (fail-open on parse errors)."""
        if not body:
            return None
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        if not isinstance(data, dict):
            return None
        user_id = data.get("userId")
        return user_id if isinstance(user_id, str) and user_id else None

    def _too_many(self, detail: str, retry_after: int) -> JSONResponse:
        counter("api.rate_limited")
        return JSONResponse(
            status_code=429,
            content={"detail": detail, "retry_after": retry_after},
            headers={"Retry-After": str(retry_after)},
        )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Check rate limits before processing request."""
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        client_ip = self._get_client_ip(request)
        now = time.time()

        minute = self._recent(self.minute_buckets.get(client_ip, []), 60, now)
        hour = self._recent(self.hour_buckets.get(client_ip, []), 3600, now)

        if len(minute) >= self.requests_per_minute:
            log_event("api.rate_limit.request_exceeded", ip=redact(client_ip), limit="minute")
            return self._too_many(
                f"Rate limit exceeded. Maximum {self.requests_per_minute} requests per minute.", 60
            )
        if len(hour) >= self.requests_per_hour:
            log_event("api.rate_limit.request_exceeded", ip=redact(client_ip), limit="hour")
            return self._too_many(
                f"Rate limit exceeded. Maximum {self.requests_per_hour} requests per hour.", 3600
            )

        if request.url.path == ANALYZE_PATH and request.method == "POST":
            # Starlette caches the body, so downstream handlers can re-read it
            user_id = self._extract_user_id(await request.body())
            if user_id:
                user_bucket = self._recent(self.user_buckets.get(user_id, []), 60, now)
                if len(user_bucket) >= self.analyses_per_user_per_minute:
                    log_event("api.rate_limit.user_exceeded", user=redact(user_id))
                    return self._too_many(
                        f"Analysis limit exceeded. Maximum "
                        f"{self.analyses_per_user_per_minute} analyses per minute per user.",
                        60,
                    )
                user_bucket.append(now)
                self.user_buckets[user_id] = user_bucket

        minute.append(now)
        hour.append(now)
        self.minute_buckets[client_ip] = minute
        self.hour_buckets[client_ip] = hour

        response = await call_next(request)

        response.headers["X-RateLimit-Limit-Minute"] = str(self.requests_per_minute)
        response.headers["X-RateLimit-Remaining-Minute"] = str(
            max(0, self.requests_per_minute - len(minute))
        )
        response.headers["X-RateLimit-Limit-Hour"] = str(self.requests_per_hour)
        response.headers["X-RateLimit-Remaining-Hour"] = str(
            max(0, self.requests_per_hour - len(hour))
        )
        return response
