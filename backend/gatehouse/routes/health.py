"""
Gatehouse — Health Check Route
===============================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Runs SELECT 1 against the telemetry database.

Status levels:
    - healthy:   database reachable (HTTP 200)
    - unhealthy: database unreachable (HTTP 503)

The lifecycle middleware still wraps this route, but the access log skips it.
"""

import logging
import time

from fastapi import APIRouter, Depends
from sqlalchemy import text
from starlette.responses import JSONResponse

from gatehouse import __version__
from gatehouse.dependencies import LifecycleServices, get_services
from gatehouse.schemas import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"description": "Database unreachable", "model": HealthResponse}},
    summary="Service health check",
)
async def health_check(services: LifecycleServices = Depends(get_services)) -> JSONResponse:
    db_status = "connected"
    overall = "healthy"

    try:
        async with services.session_factory() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    body = HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
    return JSONResponse(body.model_dump(), status_code=200 if overall == "healthy" else 503)
