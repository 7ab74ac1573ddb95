"""
FastAPI application for the inventory and order lifecycle engine.

Wires the v1 routers, correlation ID middleware and error translation, and
runs the periodic recovery of transitions whose status commit failed after
their attachment was stored.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.deps import get_blob_store
from src.api.errors import register_exception_handlers
from src.api.v1 import demos_router, items_router, orders_router
from src.core.config import get_settings
from src.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    log_performance,
    set_correlation_id,
)
from src.database.connection import (
    check_database_health,
    close_database_connections,
    get_session,
    initialize_database,
)
from src.services.orders.service import OrderLifecycleEngine

configure_logging()
logger = get_logger(__name__)


async def recover_pending_status_commits(interval: float) -> None:
    """Re-apply failed status commits every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            async with get_session() as session:
                engine = OrderLifecycleEngine(session, get_blob_store(), get_settings())
                await engine.recover_pending_status_commits()
        except Exception as e:
            # Keep the loop alive; the next pass retries the same sagas
            logger.error(
                "Saga recovery pass failed",
                error=str(e),
                error_type=type(e).__name__,
            )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logger.info(
        "Application starting",
        environment=settings.environment,
        version=settings.app_version,
        storage_backend=settings.attachment_storage_backend,
    )

    with log_performance(logger, "application_startup"):
        await initialize_database()

    recovery_task = None
    if settings.saga_recovery_interval_seconds > 0:
        recovery_task = asyncio.create_task(
            recover_pending_status_commits(settings.saga_recovery_interval_seconds)
        )
        logger.info(
            "Saga recovery task started",
            interval_seconds=settings.saga_recovery_interval_seconds,
        )

    yield

    logger.info("Application shutting down")
    if recovery_task is not None:
        recovery_task.cancel()
        try:
            await recovery_task
        except asyncio.CancelledError:
            pass
    await close_database_connections()


settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Equipment order and inventory state engine",
    lifespan=lifespan,
    debug=settings.debug,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID"],
)

register_exception_handlers(app)


@app.middleware("http")
async def correlation_middleware(request: Request, call_next):
    """
    Bind a correlation ID to the request and echo it in the response.

    A caller-supplied ``X-Correlation-ID`` is reused so retries of one
    transition share an ID across services.
    """
    correlation_id = set_correlation_id(request.headers.get("X-Correlation-ID"))
    try:
        with log_performance(
            logger, "request", method=request.method, path=request.url.path
        ):
            response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response
    finally:
        clear_context()


@app.get("/health", tags=["Health"], summary="Liveness check")
async def health_check() -> dict[str, str]:
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@app.get("/ready", tags=["Health"], summary="Readiness check")
async def readiness_check():
    """503 until the database answers."""
    if not await check_database_health(max_retries=1):
        logger.warning("Readiness check failed", database="unhealthy")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "database": "unhealthy"},
        )
    return {"status": "ready", "database": "healthy"}


app.include_router(items_router, prefix=settings.api_v1_prefix)
app.include_router(orders_router, prefix=settings.api_v1_prefix)
app.include_router(demos_router, prefix=settings.api_v1_prefix)
