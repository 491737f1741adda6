"""
Main FastAPI application for the guild synchronizer.

Read-only presentation of the synced snapshot plus health, readiness and
Prometheus metrics. The scheduler runs inside the application lifespan.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text

from guild_sync.api.routes import errors, members, sync
from guild_sync.core import metrics
from guild_sync.core.config import settings
from guild_sync.core.database import SessionLocal, init_db
from guild_sync.core.logging import configure_logging, get_logger

# Configure structured logging with JSON formatter
configure_logging(
    level=settings.LOG_LEVEL,
    json_output=settings.LOG_JSON
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan events."""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    missing = settings.validate_required_secrets()
    if missing:
        logger.warning(f"Missing configuration: {', '.join(missing)}")

    init_db()

    from guild_sync.core.scheduler import start_scheduler
    await start_scheduler(settings=settings)
    logger.info("Sync scheduler started")

    metrics.update_scheduler_metrics()
    logger.info("Application started")

    yield

    # Shutdown
    from guild_sync.core.scheduler import stop_scheduler
    await stop_scheduler()
    logger.info("Sync scheduler stopped")
    logger.info("Shutting down application")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Guild roster and performance synchronizer",
    lifespan=lifespan
)

# Initialize Prometheus metrics BEFORE including routes
instrumentator = Instrumentator()
instrumentator.instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

app.include_router(members.router, prefix="/api")
app.include_router(errors.router, prefix="/api")
app.include_router(sync.router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "guild": f"{settings.GUILD_NAME} ({settings.GUILD_REALM}-{settings.GUILD_REGION})",
        "endpoints": {
            "members": "/api/members",
            "errors": "/api/errors",
            "error_stats": "/api/errors/stats",
            "sync_status": "/api/sync/status",
            "sync_events": "/api/sync/events",
            "health": "/health",
            "ready": "/ready",
            "metrics": "/metrics",
            "docs": "/docs"
        }
    }


@app.get("/live")
async def liveness():
    """Liveness probe: the process is serving requests."""
    return {"status": "alive"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION
    }


@app.get("/ready")
async def readiness():
    """Readiness with component-level status (database and scheduler)."""
    health_status = {
        "status": "ready",
        "version": settings.APP_VERSION,
        "components": {}
    }
    all_ready = True

    # 1. Database
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        health_status["components"]["database"] = {"status": "connected"}
    except Exception as e:
        logger.error(f"Database readiness check failed: {e}")
        health_status["components"]["database"] = {
            "status": "unhealthy",
            "error": str(e)
        }
        all_ready = False
    finally:
        db.close()

    # 2. Scheduler
    from guild_sync.core.scheduler import get_scheduler

    scheduler = get_scheduler()
    if scheduler and scheduler.running:
        jobs = scheduler.scheduler.get_jobs() if scheduler.scheduler else []
        health_status["components"]["scheduler"] = {
            "status": "running",
            "jobs_count": len(jobs),
            "jobs": [{"id": j.id, "name": j.name} for j in jobs]
        }
    else:
        health_status["components"]["scheduler"] = {"status": "stopped"}
        all_ready = False

    metrics.update_scheduler_metrics()

    if not all_ready:
        health_status["status"] = "not_ready"

    status_code = 200 if all_ready else 503
    return JSONResponse(
        status_code=status_code,
        content=health_status
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": str(exc)}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "guild_sync.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
