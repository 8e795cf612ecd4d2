# Middleware package init
"""
Notesfy Backend — Middleware Package
======================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain:
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    Rate limiting runs first so rejected requests cost nothing. Its 429
    body reads the request id ContextVar, which is still empty at that
    point; accepted requests get their id from RequestIDMiddleware.
"""
