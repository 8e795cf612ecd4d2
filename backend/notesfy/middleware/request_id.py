"""
Notesfy Backend — Request ID Middleware
=========================================

What:  Assigns a correlation id to each request and echoes it in the
       X-Request-ID response header.
How:   Reuses the client's X-Request-ID when one is sent, otherwise
       generates a short UUID; stores it in a ContextVar so loggers and the
       exception handlers can include it.

Support staff can ask a user for the request id shown with an error and
find every log line of that request, including the gateway calls made
during a download or a withdrawal.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one event loop each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MAX_CLIENT_ID_LENGTH = 64


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Sets `request_id_var` and `request.state.request_id` for every request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        client_rid = request.headers.get("X-Request-ID", "")
        if client_rid and len(client_rid) <= MAX_CLIENT_ID_LENGTH:
            rid = client_rid
        else:
            rid = str(uuid.uuid4())[:8]

        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = rid
        return response
