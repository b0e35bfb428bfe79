"""Subscription records and the filter-edit / resync operations on them."""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

import aiosqlite

from calmirror.database import write_sync_log
from calmirror.models import Subscription
from calmirror.sync.matcher import compile_matcher, parse_rule
from calmirror.sync.store import MappingStore, SubscriptionStateStore

logger = logging.getLogger(__name__)


class SubscriptionNotFoundError(LookupError):
    """Raised when a subscription id does not exist."""


class SubscriptionStore:
    """Reads subscriptions for the engine and applies management edits."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db
        self.mappings = MappingStore(db)
        self.state = SubscriptionStateStore(db)

    async def get(self, subscription_id: str) -> Optional[Subscription]:
        cursor = await self.db.execute(
            "SELECT * FROM subscriptions WHERE id = ?", (subscription_id,)
        )
        row = await cursor.fetchone()
        return Subscription(**dict(row)) if row else None

    async def require(self, subscription_id: str) -> Subscription:
        subscription = await self.get(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(subscription_id)
        return subscription

    async def list_enabled(self) -> list[Subscription]:
        cursor = await self.db.execute(
            "SELECT * FROM subscriptions WHERE is_enabled = TRUE ORDER BY created_at, id"
        )
        return [Subscription(**dict(row)) for row in await cursor.fetchall()]

    async def list_all(self) -> list[Subscription]:
        cursor = await self.db.execute(
            "SELECT * FROM subscriptions ORDER BY updated_at DESC, id"
        )
        return [Subscription(**dict(row)) for row in await cursor.fetchall()]

    async def create(
        self,
        profile_key: str,
        source_calendar_id: str,
        target_calendar_id: str,
        filter_pattern: str,
        filter_kind: str = "keywords",
        subscription_id: Optional[str] = None,
    ) -> Subscription:
        """Register a subscription with an empty cursor."""
        # Reject rules the engine could never compile.
        compile_matcher(parse_rule(filter_kind, filter_pattern))

        subscription_id = subscription_id or str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            """INSERT INTO subscriptions
               (id, profile_key, source_calendar_id, target_calendar_id,
                filter_kind, filter_pattern, is_enabled, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, TRUE, ?, ?)""",
            (subscription_id, profile_key, source_calendar_id, target_calendar_id,
             filter_kind, filter_pattern, now, now),
        )
        await self.db.execute(
            "INSERT INTO subscription_state (subscription_id) VALUES (?)",
            (subscription_id,),
        )
        await self.db.commit()
        logger.info(f"Subscription {subscription_id} created: {source_calendar_id} -> {target_calendar_id}")
        return await self.require(subscription_id)

    async def set_enabled(self, subscription_id: str, enabled: bool) -> Subscription:
        await self.require(subscription_id)
        await self.db.execute(
            "UPDATE subscriptions SET is_enabled = ?, updated_at = ? WHERE id = ?",
            (enabled, datetime.now(timezone.utc).isoformat(), subscription_id),
        )
        await self.db.commit()
        return await self.require(subscription_id)

    async def update_filter(
        self,
        subscription_id: str,
        filter_pattern: str,
        filter_kind: Optional[str] = None,
        append: bool = False,
        wipe_mappings: bool = False,
    ) -> Subscription:
        """
        Replace or extend a subscription's rule.

        The cursor is always nulled so the next run re-reads the full change
        feed under the new rule. With wipe_mappings the existing mirror is
        forgotten as well: the dedup pass then removes the old copies and
        the backfill pass recreates whatever still matches.
        """
        current = await self.require(subscription_id)
        new_kind = filter_kind or current.filter_kind or "keywords"
        new_pattern = filter_pattern.strip()

        if append and current.filter_pattern:
            left = current.filter_pattern.strip()
            if new_kind == "regex":
                new_pattern = f"{left}|{new_pattern}" if left and new_pattern else left or new_pattern
            else:
                new_pattern = f"{left},{new_pattern}" if left and new_pattern else left or new_pattern

        compile_matcher(parse_rule(new_kind, new_pattern))

        await self.db.execute(
            """UPDATE subscriptions
               SET filter_kind = ?, filter_pattern = ?, updated_at = ?
               WHERE id = ?""",
            (new_kind, new_pattern, datetime.now(timezone.utc).isoformat(), subscription_id),
        )
        await self.db.commit()

        await self.state.clear(subscription_id)
        wiped = await self.mappings.delete_all(subscription_id) if wipe_mappings else 0

        await write_sync_log(
            self.db,
            subscription_id,
            "filter_update",
            "success",
            json.dumps({"filter_kind": new_kind, "filter_pattern": new_pattern, "mappings_wiped": wiped}),
        )
        logger.info(f"Subscription {subscription_id} filter updated ({new_kind}); cursor cleared")
        return await self.require(subscription_id)

    async def force_resync(self, subscription_id: str) -> int:
        """Forget all mappings and the cursor; returns the number of mappings dropped."""
        await self.require(subscription_id)
        wiped = await self.mappings.delete_all(subscription_id)
        await self.state.clear(subscription_id)
        await write_sync_log(
            self.db,
            subscription_id,
            "force_resync",
            "success",
            json.dumps({"mappings_wiped": wiped}),
        )
        logger.info(f"Subscription {subscription_id} reset: {wiped} mapping(s) cleared")
        return wiped
