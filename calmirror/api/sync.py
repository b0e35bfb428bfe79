"""Sync status and control API endpoints."""

import logging
from typing import Optional

import aiosqlite
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from calmirror.api.deps import get_db, require_admin
from calmirror.jobs.sync_job import run_all_subscriptions
from calmirror.utils.tasks import create_background_task

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["sync"], dependencies=[Depends(require_admin)])


class SubscriptionStatus(BaseModel):
    """Run status of one subscription."""
    id: str
    profile_key: str
    source_calendar_id: str
    target_calendar_id: str
    filter_kind: str
    filter_pattern: str
    is_enabled: bool
    has_cursor: bool
    mapped_events: int
    last_status: Optional[str] = None
    last_run_at: Optional[str] = None
    last_error: Optional[str] = None
    consecutive_failures: int = 0


class SyncStatusResponse(BaseModel):
    """Overall sync status."""
    subscriptions: list[SubscriptionStatus]
    healthy: int
    failing: int


class SyncLogEntry(BaseModel):
    """Sync log entry."""
    id: int
    subscription_id: Optional[str] = None
    action: str
    status: str
    details: Optional[str] = None
    created_at: str


class SyncLogResponse(BaseModel):
    """Sync log response."""
    entries: list[SyncLogEntry]
    total: int
    page: int
    page_size: int


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(db: aiosqlite.Connection = Depends(get_db)):
    """Get run status for every subscription."""
    cursor = await db.execute(
        """SELECT s.*, ss.sync_token, ss.last_status, ss.last_run_at, ss.last_error,
                  ss.consecutive_failures,
                  (SELECT COUNT(*) FROM event_mappings em
                   WHERE em.subscription_id = s.id) AS mapped_events
           FROM subscriptions s
           LEFT JOIN subscription_state ss ON s.id = ss.subscription_id
           ORDER BY s.created_at, s.id"""
    )
    rows = await cursor.fetchall()

    subscriptions = [
        SubscriptionStatus(
            id=row["id"],
            profile_key=row["profile_key"],
            source_calendar_id=row["source_calendar_id"],
            target_calendar_id=row["target_calendar_id"],
            filter_kind=row["filter_kind"],
            filter_pattern=row["filter_pattern"],
            is_enabled=bool(row["is_enabled"]),
            has_cursor=row["sync_token"] is not None,
            mapped_events=row["mapped_events"],
            last_status=row["last_status"],
            last_run_at=row["last_run_at"],
            last_error=row["last_error"],
            consecutive_failures=row["consecutive_failures"] or 0,
        )
        for row in rows
    ]

    failing = sum(1 for s in subscriptions if s.last_status == "error")
    return SyncStatusResponse(
        subscriptions=subscriptions,
        healthy=len(subscriptions) - failing,
        failing=failing,
    )


@router.get("/log", response_model=SyncLogResponse)
async def get_sync_log(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    subscription_id: Optional[str] = None,
    db: aiosqlite.Connection = Depends(get_db),
):
    """Get paginated audit log entries, newest first."""
    where = ""
    params: tuple = ()
    if subscription_id:
        where = "WHERE subscription_id = ?"
        params = (subscription_id,)

    cursor = await db.execute(f"SELECT COUNT(*) FROM sync_log {where}", params)
    total = (await cursor.fetchone())[0]

    cursor = await db.execute(
        f"""SELECT * FROM sync_log {where}
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?""",
        params + (page_size, (page - 1) * page_size),
    )
    entries = [SyncLogEntry(**dict(row)) for row in await cursor.fetchall()]

    return SyncLogResponse(entries=entries, total=total, page=page, page_size=page_size)


@router.post("/run")
async def trigger_batch_sync(request: Request, db: aiosqlite.Connection = Depends(get_db)):
    """Start a batch run of every enabled subscription in the background."""
    provider_factory = getattr(request.app.state, "provider_factory", None)
    create_background_task(
        run_all_subscriptions(db, provider_factory=provider_factory),
        "manual_batch_sync",
    )
    logger.info("Manual batch sync triggered")
    return {"status": "started"}
