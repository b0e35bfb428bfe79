"""In-process job scheduling for the long-running service."""

import logging

import aiosqlite
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from calmirror.config import get_settings

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None

SYNC_JOB_ID = "periodic_sync"
CLEANUP_JOB_ID = "retention_cleanup"


def _register_jobs(scheduler: AsyncIOScheduler, db: aiosqlite.Connection, settings) -> None:
    # Jobs are referenced by import path; both receive the service's connection.
    scheduler.add_job(
        "calmirror.jobs.sync_job:run_periodic_sync",
        trigger=IntervalTrigger(minutes=settings.sync_interval_minutes),
        args=[db],
        id=SYNC_JOB_ID,
        name="Mirror batch sync",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.add_job(
        "calmirror.jobs.cleanup:run_retention_cleanup",
        trigger=CronTrigger(hour=settings.retention_cleanup_hour, minute=0),
        args=[db],
        id=CLEANUP_JOB_ID,
        name="Audit log retention",
        replace_existing=True,
    )


def setup_scheduler(db: aiosqlite.Connection) -> AsyncIOScheduler:
    """Start the batch sync and retention jobs against an open connection."""
    global _scheduler

    settings = get_settings()
    scheduler = AsyncIOScheduler()
    _register_jobs(scheduler, db, settings)
    scheduler.start()
    _scheduler = scheduler

    logger.info(
        f"Scheduler started: sync every {settings.sync_interval_minutes} min, "
        f"cleanup daily at {settings.retention_cleanup_hour:02d}:00"
    )
    return scheduler


def shutdown_scheduler() -> None:
    global _scheduler

    if _scheduler is None:
        return
    _scheduler.shutdown(wait=False)
    _scheduler = None
    logger.info("Scheduler stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    return _scheduler
