"""
API Middleware

- Request logging with a request id bound into the structlog context
- In-memory rate limiting, stricter for bulk endpoints
- Security headers
"""

import asyncio
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Tuple

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

logger = structlog.get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with timing and a request id"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        request_id = request.headers.get("X-Request-ID", str(time.time_ns()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info(
            "Request started",
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
        )

        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        logger.info(
            "Request completed",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )

        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        response.headers["X-Request-ID"] = request_id
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window limiter per client.

    Requests under `strict_prefix` count against their own, smaller budget so
    a burst of bulk calls cannot starve dashboard reads and vice versa.
    """

    def __init__(
        self,
        app,
        max_requests: int = 100,
        window_seconds: int = 60,
        strict_max_requests: int = 5,
        strict_prefix: str = "/api/v1/bulk",
    ):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.strict_max_requests = strict_max_requests
        self.strict_prefix = strict_prefix
        self._requests: Dict[Tuple[str, str], Deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    def _bucket(self, request: Request) -> Tuple[str, int]:
        if request.url.path.startswith(self.strict_prefix):
            return "strict", self.strict_max_requests
        return "default", self.max_requests

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        client_id = request.client.host if request.client else "unknown"
        bucket, limit = self._bucket(request)
        key = (client_id, bucket)
        now = time.monotonic()

        async with self._lock:
            hits = self._requests[key]
            while hits and now - hits[0] >= self.window_seconds:
                hits.popleft()

            if len(hits) >= limit:
                logger.warning("Rate limit exceeded", client=client_id, bucket=bucket, requests=len(hits))
                return Response(
                    content='{"error": "RateLimitExceeded", "detail": "Rate limit exceeded"}',
                    status_code=429,
                    media_type="application/json",
                    headers={
                        "Retry-After": str(self.window_seconds),
                        "X-RateLimit-Limit": str(limit),
                        "X-RateLimit-Remaining": "0",
                    },
                )

            hits.append(now)
            remaining = limit - len(hits)

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses"""

    HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Cache-Control": "no-store",
    }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        for name, value in self.HEADERS.items():
            response.headers.setdefault(name, value)
        return response
