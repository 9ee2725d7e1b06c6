"""
HookRelay - Main FastAPI Application
"""
from fastapi import FastAPI
from starlette.responses import JSONResponse

from hookrelay.core.config import settings
from hookrelay.core.logging import setup_logging, get_logger
from hookrelay.core.middleware import setup_middleware, setup_exception_handlers
from hookrelay.api.routes import router as api_router
from hookrelay.db.database import engine, Base, AsyncSessionLocal

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


_OPENAPI_TAGS = [
    {"name": "Events", "description": "Event submission and the event log."},
    {"name": "Deliveries", "description": "Delivery ledger, statistics and manual redelivery."},
    {"name": "Health", "description": "Liveness and readiness probes."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Fan-out of internal domain events to signed HTTP webhooks.",
    openapi_tags=_OPENAPI_TAGS,
)

setup_middleware(app)
setup_exception_handlers(app)

app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup() -> None:
    """Create tables and start the delivery runtime"""
    from hookrelay.workers.runtime import build_runtime

    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")

    runtime = build_runtime(AsyncSessionLocal)
    app.state.runtime = runtime
    if settings.WORKER_ENABLED:
        await runtime.start()


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    runtime = getattr(app.state, "runtime", None)
    if runtime is not None:
        await runtime.stop()
    from hookrelay.core.redis_client import close_redis
    await close_redis()
    # release pooled connections
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="Liveness probe",
    description="The process is up. External dependencies are not checked.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="Readiness probe",
    description=(
        "Checks the database, Redis and the Celery broker. "
        "Returns status=healthy when all are reachable, otherwise status=degraded with 503."
    ),
    tags=["Health"],
)
async def readiness_check():
    from hookrelay.domain.services.health_service import check_readiness

    result = await check_readiness()
    runtime = getattr(app.state, "runtime", None)
    if runtime is not None:
        result["worker"] = runtime.worker.state.value
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
