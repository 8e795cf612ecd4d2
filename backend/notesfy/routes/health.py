"""
Notesfy Backend — Health Check Route
======================================

What:  GET /health for monitoring and load balancer probes.
How:   Runs SELECT 1 against the database and reads the gateway adapter's
       local status (credentials present, circuit breaker state). The
       gateway itself is not called; probes must not create orders.

    Status levels:
    - healthy:   database connected, gateway available (HTTP 200)
    - degraded:  gateway circuit open or unconfigured (HTTP 200)
    - unhealthy: database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Response
from sqlalchemy import text

from notesfy import __version__
from notesfy.database import engine
from notesfy.schemas.common import HealthResponse
from notesfy.services.razorpay_gateway import razorpay_gateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(response: Response) -> HealthResponse:
    db_status = "connected"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    # Why no gateway call: status() reads the circuit breaker, so health
    # checks never spend Razorpay API quota
    gateway_status = razorpay_gateway.status()
    if gateway_status != "available" and overall != "unhealthy":
        overall = "degraded"

    # Why 503 only for the database: without it nothing works; without the
    # gateway, browsing and uploads still do
    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        gateway=gateway_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
