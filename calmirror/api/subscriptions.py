"""Subscription maintenance endpoints."""

import asyncio
import logging
from typing import Literal

import aiosqlite
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from calmirror.api.deps import get_db, require_admin
from calmirror.config import get_settings
from calmirror.jobs.sync_job import (
    BATCH_JOB_NAME,
    acquire_job_lock,
    google_provider_factory,
    release_job_lock,
)
from calmirror.subscriptions import SubscriptionNotFoundError, SubscriptionStore
from calmirror.sync.engine import ReconciliationEngine

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/subscriptions",
    tags=["subscriptions"],
    dependencies=[Depends(require_admin)],
)


class ResyncResponse(BaseModel):
    """Result of a forced resync."""
    subscription_id: str
    mode: str
    target_events_deleted: int
    mappings_cleared: int


@router.post("/{subscription_id}/resync", response_model=ResyncResponse)
async def force_resync(
    subscription_id: str,
    request: Request,
    mode: Literal["soft", "hard"] = "soft",
    db: aiosqlite.Connection = Depends(get_db),
):
    """
    Force the next run to rebuild a subscription's mirror.

    soft: forget mappings and cursor; dedup then removes the old copies.
    hard: delete every mirrored target event first.
    """
    store = SubscriptionStore(db)
    try:
        subscription = await store.require(subscription_id)
    except SubscriptionNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")

    # Mappings must not change underneath a running batch.
    if not await acquire_job_lock(db, BATCH_JOB_NAME, get_settings().job_lock_timeout_minutes):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A sync batch is running, retry later",
        )

    deleted = 0
    try:
        if mode == "hard":
            factory = getattr(request.app.state, "provider_factory", None) or google_provider_factory()
            provider = await asyncio.to_thread(factory, subscription)
            deleted = await ReconciliationEngine(db, provider).purge(subscription)

        cleared = await store.force_resync(subscription_id)
    finally:
        await release_job_lock(db, BATCH_JOB_NAME)

    logger.info(f"Forced {mode} resync of subscription {subscription_id}")

    return ResyncResponse(
        subscription_id=subscription_id,
        mode=mode,
        target_events_deleted=deleted,
        mappings_cleared=cleared,
    )
