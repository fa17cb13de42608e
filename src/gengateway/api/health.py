from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from opentelemetry import trace

from gengateway.api.deps import get_service
from gengateway.config import settings
from gengateway.service import GatewayService

router = APIRouter(prefix="/health", tags=["health"])
log = structlog.get_logger()
tracer = trace.get_tracer(__name__)


@router.get("")
async def health() -> JSONResponse:
    return JSONResponse(
        content={
            "status": "healthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": settings.app_version,
        }
    )


@router.get("/live")
async def liveness() -> JSONResponse:
    """Liveness probe: 200 whenever the process is serving."""
    return JSONResponse(content={"status": "alive"})


@router.get("/ready")
async def readiness(service: GatewayService = Depends(get_service)) -> JSONResponse:
    """Readiness probe: reports which channels can serve a request.

    A channel is usable when it has a credential pool or accepts anonymous
    calls.  No upstream is contacted.
    """
    checks: dict[str, str] = {}
    errors: dict[str, str] = {}

    with tracer.start_as_current_span("health.readiness"):
        for channel in service.registry:
            if channel.config.tokens or channel.config.allow_anonymous:
                checks[channel.id] = "ok"
            else:
                errors[channel.id] = "no credentials configured"
                log.debug("channel_not_ready", channel_id=channel.id)

    if not checks:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "checks": checks, "errors": errors},
        )

    return JSONResponse(content={"status": "ready", "checks": checks, "errors": errors})
