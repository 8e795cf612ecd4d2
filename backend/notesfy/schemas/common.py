"""
Notesfy Backend — Shared Pydantic Schemas
===========================================

What:  Base model and the error / health / message envelopes shared by every
       route module.

JSON field naming:
    The web client speaks camelCase (`userId`, `postedDate`, `payoutResponse`).
    `CamelModel` generates camelCase aliases; requests accept either form and
    responses are serialized by alias (FastAPI's default).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for API models exchanged with the web client."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class MessageResponse(BaseModel):
    message: str = Field(description="Human-readable result")


class ErrorResponse(BaseModel):
    """
    What:  Standardized error response format for all API errors.

    Fields:
        error: Machine-readable error code (e.g., "validation_error", "not_found")
        message: Human-readable description for display to users
        details: Optional extra context (e.g., which field failed validation)
        request_id: Correlation ID for tracing this error in server logs

    Example:
        {
            "error": "insufficient_balance",
            "message": "Insufficient balance",
            "details": {"requested": "10.00", "available": "4.50"},
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Returned by GET /health for monitoring and load balancer probes."""
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    gateway: str = Field(description="Payment gateway status: available, circuit_open, unconfigured")
    uptime_seconds: float = Field(description="Seconds since service started")
