"""
Notesfy Backend — Rate Limiting Middleware
============================================

What:  Per-IP sliding window rate limiter.
How:   Keeps each client's recent request timestamps in memory; a request
       that would exceed the limit gets 429 with Retry-After.

Buckets:
    general   every route except /health and the API docs
              (RATE_LIMIT_REQUESTS per RATE_LIMIT_WINDOW)
    payments  /create-order, /downloadPdf, /withdraw
              (RATE_LIMIT_PAYMENT_REQUESTS per RATE_LIMIT_WINDOW), counted
              in addition to the general bucket since each of these calls
              the payment gateway or moves money

Algorithm: Sliding Window Log
    1. Drop timestamps older than the window
    2. If the remaining count >= limit, reject
    3. Otherwise record now and let the request through

State is per process; with several uvicorn workers each enforces its own
window.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from notesfy.config import settings
from notesfy.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory sliding window rate limiter with a tighter bucket for payment routes."""

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}
    PAYMENT_PATHS = {"/create-order", "/downloadPdf", "/withdraw"}

    def __init__(self, app, **kwargs):
        super().__init__(app, **kwargs)
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._payment_requests: Dict[str, List[float]] = defaultdict(list)
        self._seen = 0

    def _check(
        self,
        bucket: Dict[str, List[float]],
        client_ip: str,
        limit: int,
        now: float,
    ) -> Optional[int]:
        """Returns seconds to wait if `client_ip` is over `limit`, else records the hit."""
        window_start = now - settings.rate_limit_window
        recent = [ts for ts in bucket[client_ip] if ts > window_start]
        bucket[client_ip] = recent

        if len(recent) >= limit:
            return int(recent[0] + settings.rate_limit_window - now) + 1
        recent.append(now)
        return None

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in self.EXCLUDED_PATHS:
            return await call_next(request)

        # Behind a proxy this is the proxy's address
        client_ip = request.client.host if request.client else "unknown"
        now = time.time()

        retry_after = self._check(self._requests, client_ip, settings.rate_limit_requests, now)
        if retry_after is None and path in self.PAYMENT_PATHS:
            retry_after = self._check(
                self._payment_requests, client_ip, settings.rate_limit_payment_requests, now
            )

        if retry_after is not None:
            logger.warning(
                "Rate limit exceeded for IP %s on %s (window %ds)",
                client_ip,
                path,
                settings.rate_limit_window,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": f"Too many requests. Please wait {retry_after} seconds before retrying.",
                    "details": {"retry_after": retry_after},
                    "request_id": request_id_var.get(""),
                },
                headers={"Retry-After": str(retry_after)},
            )

        self._seen += 1
        if self._seen % 1000 == 0:
            self._cleanup_inactive_ips(now - settings.rate_limit_window)

        return await call_next(request)

    def _cleanup_inactive_ips(self, window_start: float) -> None:
        """Drops clients with no request inside the current window."""
        removed = 0
        for bucket in (self._requests, self._payment_requests):
            inactive = [ip for ip, stamps in bucket.items() if not stamps or stamps[-1] < window_start]
            for ip in inactive:
                del bucket[ip]
            removed += len(inactive)
        if removed:
            logger.debug("Cleaned up %d inactive IP entries", removed)
