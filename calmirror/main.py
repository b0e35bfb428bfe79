"""Main FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from calmirror import __version__
from calmirror.api import api_router
from calmirror.config import get_settings
from calmirror.database import close_database, connect_database
from calmirror.jobs.scheduler import get_scheduler, setup_scheduler, shutdown_scheduler
from calmirror.logging_config import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager; owns the database handle."""
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("Starting calendar mirror service...")
    logger.info(f"Database: {settings.database_path}")

    app.state.db = await connect_database(settings.database_path)
    logger.info("Database initialized")

    if settings.enable_scheduler:
        try:
            setup_scheduler(app.state.db)
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
    else:
        logger.info("Scheduler disabled (ENABLE_SCHEDULER=false); relying on external cron")

    yield

    logger.info("Shutting down...")

    try:
        shutdown_scheduler()
    except Exception as e:
        logger.error(f"Error stopping scheduler: {e}")

    await close_database(app.state.db)
    logger.info("Shutdown complete")


app = FastAPI(
    title="Calendar Mirror",
    description="Mirrors filtered events from shared calendars into per-user calendars",
    version=__version__,
    lifespan=lifespan,
)


@app.get("/health")
async def health_check(request: Request):
    """Liveness plus a database round trip."""
    try:
        await request.app.state.db.execute("SELECT 1")
    except Exception as e:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "error": str(e)},
        )

    return {
        "status": "healthy",
        "database": "connected",
        "scheduler": get_scheduler() is not None,
        "version": __version__,
    }


app.include_router(api_router)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "calmirror.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    run()
