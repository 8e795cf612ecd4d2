"""
Notesfy Backend — Request Logging Middleware
==============================================

What:  One access-log line per HTTP request: method, path, status,
       duration, request id and client address.
How:   Measures wall time around the downstream call and picks the level
       from the status class (5xx ERROR, 4xx WARNING, otherwise INFO).

Never logged: request bodies (passwords, bank account numbers, payment
signatures) and uploaded file contents. GET /health is skipped.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from notesfy.middleware.request_id import request_id_var

logger = logging.getLogger("notesfy.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Access logger.

    Durations for POST /downloadPdf cover verification and the ledger
    commit, not the file transfer: the body streams after this middleware
    has received the response object.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        # Why: load balancers poll /health every few seconds; logging it drowns real traffic
        if path == "/health":
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        method = request.method
        rid = request_id_var.get("")

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        # Why: 4xx are client mistakes (WARNING), 5xx are ours or the gateway's (ERROR)
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )

        return response
