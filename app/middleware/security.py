"""Security middleware for API authentication and rate limiting."""

import hashlib
import hmac
import logging
import time
from collections import deque
from typing import Callable, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import get_settings

logger = logging.getLogger(__name__)

PROTECTED_PREFIXES = ("/api/",)


class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Middleware to validate the API key header on registry endpoints.

    Protected paths: /api/*
    Unprotected: /health, /docs, /openapi.json, /
    """

    def __init__(
        self,
        app,
        api_key: Optional[str] = None,
        header_name: Optional[str] = None,
    ):
        super().__init__(app)
        settings = get_settings()
        self.api_key = settings.tracker_api_key if api_key is None else api_key
        self.header_name = header_name or settings.api_key_header_name

    async def dispatch(self, request: Request, call_next: Callable):
        path = request.url.path

        # Skip auth for non-protected endpoints
        if not path.startswith(PROTECTED_PREFIXES):
            return await call_next(request)

        # Skip auth if no API key is configured (development mode)
        if not self.api_key:
            return await call_next(request)

        api_key = request.headers.get(self.header_name)

        if not api_key:
            # PRIVACY: Never log the path (contains sender identifiers)
            logger.warning("API request rejected: missing API key")
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"error": f"Missing API key. Include {self.header_name} header."},
            )

        if not _secure_compare(api_key, self.api_key):
            logger.warning("API request rejected: invalid API key")
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"error": "Invalid API key."},
            )

        return await call_next(request)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory sliding-window rate limiting on /api/*.

    Requests are bucketed per (client IP, resource, sender id). A sender
    and a receiver following it from one address land in separate
    resource buckets, and devices behind one NAT tracking different
    senders do not share a budget.
    For production with multiple workers, use Redis-based limiting.
    """

    def __init__(self, app, requests_per_minute: int = 120, burst: int = 20):
        super().__init__(app)
        self.limit = requests_per_minute + burst
        self.window_seconds = 60
        self._hits: dict[tuple[str, str, str], deque[float]] = {}
        self._last_sweep = time.monotonic()

    async def dispatch(self, request: Request, call_next: Callable):
        if not request.url.path.startswith(PROTECTED_PREFIXES):
            return await call_next(request)

        bucket = (_client_ip(request), *await _resource_and_sender(request))
        now = time.monotonic()

        if now - self._last_sweep > self.window_seconds:
            self._sweep(now)

        hits = self._hits.setdefault(bucket, deque())
        while hits and hits[0] <= now - self.window_seconds:
            hits.popleft()

        if len(hits) >= self.limit:
            # PRIVACY: no IP or sender id in logs
            logger.warning(f"Rate limit exceeded on {bucket[1]}")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "error": "Rate limit exceeded. Try again later.",
                    "retry_after_seconds": self.window_seconds,
                },
                headers={"Retry-After": str(self.window_seconds)},
            )

        hits.append(now)
        return await call_next(request)

    def _sweep(self, now: float) -> None:
        """Drop buckets with no hits inside the window."""
        cutoff = now - self.window_seconds
        for bucket in [b for b, hits in self._hits.items() if not hits or hits[-1] <= cutoff]:
            del self._hits[bucket]
        self._last_sweep = now


def _client_ip(request: Request) -> str:
    """Get client IP, handling reverse proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


async def _resource_and_sender(request: Request) -> tuple[str, str]:
    """
    Identify which registry and sender a request targets.

    GET requests carry the sender id in the path, POST requests carry it
    as senderId in the JSON body. Unparseable bodies map to an empty id
    and are rejected downstream.
    """
    parts = request.scope["path"][len("/api/"):].split("/", 1)
    resource = parts[0]

    if request.method == "GET":
        return resource, parts[1] if len(parts) > 1 else ""

    if parts[1:] == ["verify"]:
        resource = "verify"
    try:
        body = await request.json()
    except ValueError:
        return resource, ""
    sender_id = body.get("senderId") if isinstance(body, dict) else None
    return resource, sender_id if isinstance(sender_id, str) else ""


def _secure_compare(a: str, b: str) -> bool:
    """Constant-time string comparison on SHA-256 digests."""
    a_hash = hashlib.sha256(a.encode()).digest()
    b_hash = hashlib.sha256(b.encode()).digest()
    return hmac.compare_digest(a_hash, b_hash)
