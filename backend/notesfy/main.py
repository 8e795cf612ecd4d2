"""
Notesfy Backend — FastAPI Application Factory
===============================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() wires middleware, exception handlers and routers.
Who:   uvicorn notesfy.main:app

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware:  Rate Limit → Request ID → Logging → GZip   │
    │               → CORS                                     │
    │                                                          │
    │  Routes:                                                 │
    │    accounts   POST / · /login · /profileUpdate           │
    │               GET /getuser/{id}                          │
    │    posts      /uploadPdf · /pdfDetails · /likePdf ·      │
    │               /deletePdf · /getSubjects · /getChapters · │
    │               /getSubjectPdfs · /getChapterPdfs ·        │
    │               /uploads/{path}                            │
    │    payments   /create-order · /downloadPdf · /withdraw   │
    │    health     /health                                    │
    │                                                          │
    │  Exception Handlers: NotesfyError subclasses → 4xx/5xx   │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging → configuration check (raises, so the server does
              not start without gateway credentials) → storage directory
    Shutdown: dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from notesfy import __version__
from notesfy.config import settings
from notesfy.database import dispose_engine
from notesfy.exceptions import (
    AuthError,
    CircuitBreakerOpenError,
    DatabaseError,
    FileStorageError,
    ForbiddenError,
    GatewayError,
    NotesfyError,
    NotFoundError,
    ValidationError,
    WithdrawalInProgressError,
)
from notesfy.middleware.logging import RequestLoggingMiddleware
from notesfy.middleware.rate_limit import RateLimitMiddleware
from notesfy.middleware.request_id import RequestIDMiddleware, request_id_var
from notesfy.routes import accounts, health, payments, posts

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configures the root logger once at startup.

    Format: 2026-10-19T12:00:00 [INFO] notesfy.services.payout_service: ...
    Output goes to stdout for the container runtime to collect.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Third-party loggers that are chatty at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("Notesfy Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.critical("Configuration error: %s", str(e))
        logger.critical("Fix the configuration and restart the server.")
        raise

    storage = Path(settings.storage_root)
    storage.mkdir(parents=True, exist_ok=True)
    logger.info("Storage directory: %s", storage.resolve())
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("Notesfy Backend shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    content: Dict[str, Any] = {
        "error": error,
        "message": message,
        "request_id": request_id_var.get(""),
    }
    if details:
        content["details"] = jsonable_encoder(details)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Maps the exception hierarchy to HTTP responses.

    Handler hierarchy (most specific class wins):
        RequestValidationError     → 400 validation_error
        ValidationError (+ subs)   → 400 exc.error_code
        AuthError                  → 401
        ForbiddenError             → 403
        NotFoundError              → 404
        WithdrawalInProgressError  → 409
        GatewayError (+ payout)    → 502
        CircuitBreakerOpenError    → 503
        FileStorageError / DB      → 500
        NotesfyError / Exception   → 500

    Context is returned as `details` for client-correctable errors and for
    gateway failures; server-side failures only log it.
    """

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        """Malformed body, query or form; reported as 400 like our own ValidationError."""
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
            for err in exc.errors()
        ]
        logger.warning("[%s] Request validation failed: %s", request_id_var.get(""), errors)
        return _error_response(400, "validation_error", "Request validation failed", {"errors": errors})

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] %s: %s", request_id_var.get(""), exc.error_code, exc.message)
        return _error_response(400, exc.error_code, exc.message, exc.context)

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError):
        return _error_response(401, "unauthorized", exc.message)

    @app.exception_handler(ForbiddenError)
    async def handle_forbidden(request: Request, exc: ForbiddenError):
        logger.warning("[%s] Forbidden: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(403, "forbidden", exc.message)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc.message, {"resource": exc.resource})

    @app.exception_handler(WithdrawalInProgressError)
    async def handle_withdrawal_in_progress(request: Request, exc: WithdrawalInProgressError):
        return _error_response(409, "withdrawal_in_progress", exc.message)

    @app.exception_handler(GatewayError)
    async def handle_gateway_error(request: Request, exc: GatewayError):
        """Gateway failed or rejected the call; upstream diagnostics go back to the client."""
        logger.error("[%s] Gateway error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        details = {
            key: exc.context[key]
            for key in ("upstream_status", "upstream_error", "step", "withdrawal_id", "pending")
            if key in exc.context
        }
        return _error_response(502, "gateway_error", exc.message, details)

    @app.exception_handler(CircuitBreakerOpenError)
    async def handle_circuit_breaker(request: Request, exc: CircuitBreakerOpenError):
        logger.warning("[%s] Circuit breaker open: %s", request_id_var.get(""), exc.message)
        return _error_response(
            503,
            "service_unavailable",
            exc.message,
            {"recovery_time": exc.recovery_time},
            headers={"Retry-After": str(exc.recovery_time)},
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error("[%s] Database error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(500, "server_error", "An internal error occurred. Please try again later.")

    @app.exception_handler(FileStorageError)
    async def handle_file_storage_error(request: Request, exc: FileStorageError):
        logger.error("[%s] File storage error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(500, "server_error", exc.message)

    @app.exception_handler(NotesfyError)
    async def handle_application_error(request: Request, exc: NotesfyError):
        logger.error("[%s] Application error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(500, "internal_server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Stack trace is logged server-side only."""
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True)
        return _error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="Notesfy API",
        description=(
            "Notes-sharing backend: upload PDF study materials, browse them by "
            "subject and chapter, and download them behind a micro-payment that "
            "credits the author. Authors withdraw their earnings by bank payout."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware executes in reverse order of addition:
    # RateLimit → RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After", "Content-Disposition"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    register_exception_handlers(app)

    app.include_router(accounts.router)
    app.include_router(posts.router)
    app.include_router(payments.router)
    app.include_router(health.router)

    return app


# uvicorn expects `notesfy.main:app`
app = create_app()
