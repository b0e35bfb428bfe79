"""Batch reconciliation job."""

import asyncio
import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import aiosqlite
from pydantic import BaseModel, Field

from calmirror.config import Settings, get_settings
from calmirror.database import write_sync_log
from calmirror.models import Subscription
from calmirror.subscriptions import SubscriptionStore
from calmirror.sync.engine import ReconciliationEngine
from calmirror.sync.provider import CalendarProvider
from calmirror.sync.store import SubscriptionStateStore

logger = logging.getLogger(__name__)

BATCH_JOB_NAME = "mirror_sync"

ProviderFactory = Callable[[Subscription], CalendarProvider]


class SubscriptionResult(BaseModel):
    """Outcome of one subscription inside a batch."""
    subscription_id: str
    ok: bool
    created: int = 0
    updated: int = 0
    removed: int = 0
    cursor_reset: bool = False
    error: Optional[str] = None


class BatchSummary(BaseModel):
    """Aggregate outcome of a batch run."""
    skipped: bool = False
    results: list[SubscriptionResult] = Field(default_factory=list)

    @property
    def created(self) -> int:
        return sum(r.created for r in self.results)

    @property
    def updated(self) -> int:
        return sum(r.updated for r in self.results)

    @property
    def removed(self) -> int:
        return sum(r.removed for r in self.results)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)


def google_provider_factory(settings: Optional[Settings] = None) -> ProviderFactory:
    """Build Google Calendar clients from stored profile credentials."""
    settings = settings or get_settings()

    def _factory(subscription: Subscription) -> CalendarProvider:
        from calmirror.auth.google import load_credentials
        from calmirror.sync.google_calendar import GoogleCalendarClient

        credentials = load_credentials(subscription.profile_key, settings=settings)
        return GoogleCalendarClient(credentials, page_size=settings.page_size)

    return _factory


async def _reconcile(
    db: aiosqlite.Connection,
    subscription: Subscription,
    provider_factory: ProviderFactory,
    settings: Settings,
) -> SubscriptionResult:
    state = SubscriptionStateStore(db)

    try:
        provider = await asyncio.to_thread(provider_factory, subscription)
    except Exception as e:
        # Missing credentials and client construction failures never reach the engine.
        error = f"{type(e).__name__}: {e}"
        await state.record_failure(subscription.id, error)
        return SubscriptionResult(subscription_id=subscription.id, ok=False, error=error)

    engine = ReconciliationEngine(db, provider, settings=settings)
    try:
        summary = await asyncio.wait_for(
            engine.run(subscription),
            timeout=settings.subscription_timeout_seconds,
        )
    except asyncio.TimeoutError:
        error = f"timed out after {settings.subscription_timeout_seconds}s"
        await state.record_failure(subscription.id, error)
        return SubscriptionResult(subscription_id=subscription.id, ok=False, error=error)

    return SubscriptionResult(
        subscription_id=subscription.id,
        ok=True,
        created=summary.created,
        updated=summary.updated,
        removed=summary.removed,
        cursor_reset=summary.cursor_reset,
    )


async def run_subscription(
    db: aiosqlite.Connection,
    subscription: Subscription,
    provider_factory: ProviderFactory,
    settings: Optional[Settings] = None,
) -> SubscriptionResult:
    """
    Reconcile one subscription, bounded by the configured timeout.

    Never raises: failures, including failures to persist the outcome,
    are returned as an unsuccessful result.
    """
    settings = settings or get_settings()

    logger.info(
        f"Sync start subscription={subscription.id} "
        f"src={subscription.source_calendar_id} dst={subscription.target_calendar_id}"
    )

    try:
        result = await _reconcile(db, subscription, provider_factory, settings)
    except Exception as e:
        # Engine failures are already recorded on the subscription state.
        result = SubscriptionResult(
            subscription_id=subscription.id,
            ok=False,
            error=f"{type(e).__name__}: {e}",
        )

    try:
        await write_sync_log(
            db,
            subscription.id,
            "sync",
            "success" if result.ok else "failure",
            json.dumps(result.model_dump(exclude={"subscription_id"})),
        )
    except Exception as e:
        logger.error(f"Could not write sync log for subscription {subscription.id}: {e}")
        result = result.model_copy(
            update={"ok": False, "error": result.error or f"{type(e).__name__}: {e}"}
        )

    if result.ok:
        logger.info(
            f"Sync ok subscription={subscription.id} created={result.created} "
            f"updated={result.updated} removed={result.removed} cursor_reset={result.cursor_reset}"
        )
    else:
        logger.error(f"Sync failed subscription={subscription.id} error={result.error}")

    return result


async def run_all_subscriptions(
    db: aiosqlite.Connection,
    provider_factory: Optional[ProviderFactory] = None,
    settings: Optional[Settings] = None,
) -> BatchSummary:
    """Reconcile every enabled subscription, continuing past individual failures."""
    settings = settings or get_settings()
    provider_factory = provider_factory or google_provider_factory(settings)

    if not await acquire_job_lock(db, BATCH_JOB_NAME, settings.job_lock_timeout_minutes):
        logger.info("Batch sync already running, skipping")
        return BatchSummary(skipped=True)

    summary = BatchSummary()
    try:
        subscriptions = await SubscriptionStore(db).list_enabled()
        logger.info(f"Running batch sync for {len(subscriptions)} subscription(s)")

        for subscription in subscriptions:
            summary.results.append(
                await run_subscription(db, subscription, provider_factory, settings)
            )

        logger.info(
            f"Batch sync completed: {len(summary.results)} subscription(s), "
            f"{summary.failed} failed, {summary.created} created, "
            f"{summary.updated} updated, {summary.removed} removed"
        )
    finally:
        await release_job_lock(db, BATCH_JOB_NAME)

    return summary


async def run_periodic_sync(db: aiosqlite.Connection) -> None:
    """Scheduler entry point."""
    await run_all_subscriptions(db)


async def acquire_job_lock(
    db: aiosqlite.Connection,
    job_name: str,
    timeout_minutes: int = 30,
) -> bool:
    """
    Acquire a lock for a job.

    Returns True if lock acquired, False if job is already running.
    """
    now = datetime.now(timezone.utc)
    cutoff = (now - timedelta(minutes=timeout_minutes)).isoformat()

    # First, try to clean up stale locks
    await db.execute(
        "DELETE FROM job_locks WHERE job_name = ? AND locked_at < ?",
        (job_name, cutoff),
    )
    await db.commit()

    try:
        await db.execute(
            """INSERT INTO job_locks (job_name, locked_at, locked_by)
               VALUES (?, ?, ?)""",
            (job_name, now.isoformat(), "worker"),
        )
        await db.commit()
        return True
    except sqlite3.IntegrityError:
        # Lock already held by another process
        return False


async def release_job_lock(db: aiosqlite.Connection, job_name: str) -> None:
    """Release a job lock."""
    await db.execute("DELETE FROM job_locks WHERE job_name = ?", (job_name,))
    await db.commit()
