"""
KSRTC Concession API - Main Application Entry Point

This module initializes and configures the FastAPI application including:
- Logging
- Database and Redis connections
- Background job scheduler
- CORS middleware
- API routing
- Health check endpoints
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.api import api_router
from app.core.config import settings
from app.core.database import async_session_maker, close_db, init_db
from app.core.redis import close_redis, init_redis, redis_status
from app.core.scheduler import describe_jobs, run_job_now, start_scheduler, stop_scheduler
from app.modules.concession_applications.jobs import register_concession_application_jobs

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """
    Application lifespan manager.

    Connects Redis and the database, and runs the background scheduler.
    Outside production a failed dependency is logged and startup continues.
    """
    logger.info(f"Starting KSRTC Concession API in {settings.python_env} mode...")

    try:
        await init_redis()
        logger.info("[OK] Redis connected")
    except Exception as e:
        logger.error(f"[FAIL] Redis connection failed: {e}")
        if settings.is_production:
            raise

    try:
        await init_db()
        logger.info("[OK] Database connected")
    except Exception as e:
        logger.error(f"[FAIL] Database connection failed: {e}")
        if settings.is_production:
            raise

    try:
        register_concession_application_jobs()
        await start_scheduler()
        logger.info("[OK] Background scheduler started")
    except Exception as e:
        logger.error(f"[FAIL] Background scheduler failed to start: {e}")
        if settings.is_production:
            raise

    yield

    logger.info("Shutting down KSRTC Concession API...")

    await stop_scheduler()
    await close_redis()
    await close_db()
    logger.info("[OK] Cleanup complete")


app = FastAPI(
    title="KSRTC Concession API",
    description="Student transit-concession application workflow",
    version="0.1.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

app.include_router(api_router, prefix="/api/v1")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    return {
        "message": "Welcome to the KSRTC Concession API",
        "status": "running",
        "environment": settings.python_env,
    }


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}


@app.get("/ready", tags=["Health"])
async def readiness_check() -> dict:
    """Readiness: database and Redis reachability."""
    checks: dict[str, str] = {}
    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.warning(f"Readiness database check failed: {e}")
        checks["database"] = "error"

    checks["redis"] = await redis_status()
    ready = checks["database"] == "ok"
    return {"status": "ready" if ready else "degraded", "checks": checks}


# ============================================
# Background Job Debug Endpoints
# ============================================
# Manual job control for local development. Not mounted in production.

if settings.is_development:

    @app.get("/debug/jobs", tags=["Debug"])
    async def list_jobs():
        """List registered background jobs with their next run time."""
        return {"jobs": describe_jobs()}

    @app.post("/debug/jobs/{job_id}/trigger", tags=["Debug"])
    async def trigger_job(job_id: str):
        """
        Run a background job immediately.

        Available jobs:
            - concession_applications_payment_reminders
        """
        try:
            return await run_job_now(job_id)
        except KeyError as e:
            raise HTTPException(status_code=404, detail=f"Unknown job: {job_id}") from e
