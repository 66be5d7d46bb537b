"""
Appointment Assistant API

FastAPI entry point: chat turns from the WhatsApp gateway, direct and
scheduled outbound messages, health probes, and the background task that
drains the scheduled-message queue.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.api.routes import chat, health, messages
from app.core.messaging import get_dispatcher
from app.core.scheduling import get_calendar_client
from app.infra.claude import close_claude_client
from app.infra.database import close_db, init_db
from app.infra.messaging import get_outbound_messenger
from app.infra.redis import RedisClient

VERSION = "1.0.0"


def setup_logging() -> None:
    """Root logging; third-party loggers only above INFO unless debugging."""
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    quiet = logging.INFO if settings.debug else logging.WARNING
    for name in ("uvicorn.access", "httpx", "anthropic", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(quiet)


logger = logging.getLogger(__name__)

_dispatcher_task: Optional[asyncio.Task] = None


def start_dispatcher() -> None:
    """Run the scheduled-message dispatcher as a background task."""
    global _dispatcher_task
    if not settings.dispatcher_enabled:
        logger.info("Scheduled-message dispatcher disabled")
        return
    _dispatcher_task = asyncio.create_task(
        get_dispatcher().run_forever(), name="scheduled-message-dispatcher"
    )


async def stop_dispatcher() -> None:
    """Cancel the dispatcher and wait for the current pass to unwind."""
    global _dispatcher_task
    if _dispatcher_task is None:
        return
    _dispatcher_task.cancel()
    with suppress(asyncio.CancelledError):
        await _dispatcher_task
    _dispatcher_task = None
    logger.info("Dispatcher stopped")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown."""
    setup_logging()
    logger.info(
        f"Starting {settings.app_name} for {settings.institution_name} "
        f"({settings.app_env}, zone {settings.timezone})"
    )
    health.set_start_time()

    # Development only; production runs scripts/bootstrap.py
    if settings.is_development:
        try:
            await init_db()
        except Exception as e:
            logger.warning(f"Database init skipped: {e}")

    if await RedisClient.get_client() is None:
        logger.warning("Redis unavailable - sessions kept in memory")

    if not settings.calendar_configured:
        logger.warning("No calendar credentials configured - bookings will not reach calendars")
    elif not (settings.google_service_account_json or settings.google_service_account_file):
        logger.warning("Calendar uses a static token - it must be rotated before it expires")

    start_dispatcher()

    yield

    logger.info("Shutting down...")
    await stop_dispatcher()

    await get_calendar_client().close()
    await get_outbound_messenger().close()
    await close_claude_client()
    await RedisClient.close()
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Appointment Assistant API",
    description=(
        "WhatsApp assistant that books, lists and cancels parent-teacher "
        "appointments, and sends scheduled messages within a daily window."
    ),
    version=VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url=None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """422 with the offending fields."""
    logger.warning(f"Invalid request to {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"error": "Validation error", "detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """500 for anything unhandled; details only in development."""
    logger.exception(f"Unhandled exception on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.is_development else None,
        },
    )


@app.middleware("http")
async def request_timing_middleware(request: Request, call_next):
    """Log slow requests; every request in debug mode."""
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    if settings.debug or duration > 5.0:
        logger.log(
            logging.WARNING if duration > 5.0 else logging.DEBUG,
            f"{request.method} {request.url.path} -> {response.status_code} in {duration:.3f}s",
        )

    return response


app.include_router(health.router)
app.include_router(chat.router)
app.include_router(messages.router)


@app.get("/", tags=["Root"])
async def root() -> dict:
    """Service identification."""
    return {
        "name": settings.app_name,
        "institution": settings.institution_name,
        "version": VERSION,
        "status": "running",
        "docs": "/docs" if settings.is_development else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
