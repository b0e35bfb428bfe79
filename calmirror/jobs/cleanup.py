"""Retention cleanup job."""

import logging
from typing import Optional

import aiosqlite

from calmirror.config import Settings, get_settings

logger = logging.getLogger(__name__)


async def run_retention_cleanup(
    db: aiosqlite.Connection,
    settings: Optional[Settings] = None,
) -> dict:
    """
    Run retention cleanup according to policy.

    Retention policy:
    - Audit/sync log entries: audit_log_retention_days
    - Job locks older than job_lock_timeout_minutes (crashed workers)

    Mappings are never expired here: they are the record of what exists
    in target calendars and only the engine removes them.
    """
    settings = settings or get_settings()

    summary = {
        "old_sync_logs": 0,
        "stale_job_locks": 0,
    }

    cursor = await db.execute(
        """DELETE FROM sync_log
           WHERE created_at < datetime('now', ?)
           RETURNING id""",
        (f"-{settings.audit_log_retention_days} days",),
    )
    summary["old_sync_logs"] = len(await cursor.fetchall())

    cursor = await db.execute(
        """DELETE FROM job_locks
           WHERE julianday(locked_at) < julianday('now', ?)
           RETURNING job_name""",
        (f"-{settings.job_lock_timeout_minutes} minutes",),
    )
    summary["stale_job_locks"] = len(await cursor.fetchall())

    await db.commit()
    logger.info(f"Retention cleanup completed: {summary}")
    return summary
