"""
Health Check Endpoints

Liveness, readiness and dispatcher status. The database is required for
readiness; Redis is not, since sessions fall back to process memory.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.config import settings
from app.core.messaging import get_dispatcher
from app.infra.database import check_db_health
from app.infra.redis import check_redis_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

# Track application start time for uptime calculation
_start_time: Optional[datetime] = None


def set_start_time() -> None:
    """Set application start time. Called once on startup."""
    global _start_time
    _start_time = datetime.now(timezone.utc)


def get_uptime_seconds() -> Optional[float]:
    """Get application uptime in seconds."""
    if _start_time is None:
        return None
    return (datetime.now(timezone.utc) - _start_time).total_seconds()


async def _probe(name: str, check: Callable[[], Awaitable[bool]]) -> str:
    """Run one dependency check: "ok", "failed" or "error"."""
    try:
        return "ok" if await check() else "failed"
    except Exception as e:
        logger.error(f"Health check {name} raised: {e}")
        return "error"


class HealthResponse(BaseModel):
    """Basic health check response."""
    status: str
    timestamp: datetime
    version: str
    institution: str


class ReadyResponse(BaseModel):
    """Readiness check response with dependency status."""
    status: str
    timestamp: datetime
    checks: dict[str, str]


class LiveResponse(BaseModel):
    """Liveness check response."""
    status: str
    timestamp: datetime
    uptime_seconds: Optional[float] = None


class DispatcherStatus(BaseModel):
    """Scheduled-message dispatcher counters."""
    enabled: bool
    in_window: bool
    in_flight: bool
    sent_today: int
    daily_limit: int
    window: str
    last_reset: Optional[str] = None


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
    description="Returns 200 if the application is running. Does not check dependencies.",
)
async def health() -> HealthResponse:
    """Always 200 while the process runs. Use /health/ready for dependencies."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version="1.0.0",
        institution=settings.institution_name,
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness probe",
    description=(
        "Checks the database (required) and Redis (optional). "
        "Returns 503 only if the database is unavailable."
    ),
    responses={
        200: {"description": "Ready, possibly with sessions kept in memory"},
        503: {"description": "Database unavailable"},
    },
)
async def ready() -> ReadyResponse:
    """
    Readiness probe.

    Without the database no booking can be looked up or recorded, so that
    check decides the status code. A Redis outage only reports "degraded".
    """
    checks = {
        "database": await _probe("database", check_db_health),
        "redis": await _probe("redis", check_redis_health),
        "calendar": "configured" if settings.calendar_configured else "missing_credentials",
    }

    if checks["database"] != "ok":
        logger.warning(f"Readiness check failed: {checks}")
        response = ReadyResponse(
            status="not_ready",
            timestamp=datetime.now(timezone.utc),
            checks=checks,
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )

    return ReadyResponse(
        status="ready" if checks["redis"] == "ok" else "degraded",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )


@router.get(
    "/live",
    response_model=LiveResponse,
    status_code=status.HTTP_200_OK,
    summary="Liveness probe",
    description="Returns 200 if the process is alive.",
)
async def live() -> LiveResponse:
    """Liveness probe."""
    return LiveResponse(
        status="alive",
        timestamp=datetime.now(timezone.utc),
        uptime_seconds=get_uptime_seconds(),
    )


@router.get(
    "/dispatcher",
    response_model=DispatcherStatus,
    summary="Dispatcher status",
    description="Send window, quota usage and whether a pass is running.",
)
async def dispatcher_status() -> DispatcherStatus:
    """Current counters of the scheduled-message dispatcher."""
    if not settings.dispatcher_enabled:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Dispatcher disabled",
        )

    dispatcher = get_dispatcher()
    policy = dispatcher.policy
    context = dispatcher.context

    return DispatcherStatus(
        enabled=True,
        in_window=policy.in_window(datetime.now(settings.tzinfo)),
        in_flight=context.in_flight,
        sent_today=context.daily_sent,
        daily_limit=policy.daily_limit,
        window=f"{policy.start_hour:02d}:00-{policy.end_hour:02d}:00",
        last_reset=context.last_reset.isoformat() if context.last_reset else None,
    )
