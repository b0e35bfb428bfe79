"""Durable mapping and cursor persistence."""

import logging
from datetime import datetime, timezone
from typing import Optional

import aiosqlite

from calmirror.models import Mapping, SubscriptionState

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MappingStore:
    """
    (subscription_id, source_id) -> target copy of one mirrored occurrence.

    Every write is committed on its own so a crash can never leave a
    half-written mapping behind.
    """

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get(self, subscription_id: str, source_id: str) -> Optional[Mapping]:
        cursor = await self.db.execute(
            """SELECT * FROM event_mappings
               WHERE subscription_id = ? AND source_id = ?""",
            (subscription_id, source_id),
        )
        row = await cursor.fetchone()
        return Mapping(**dict(row)) if row else None

    async def upsert(
        self,
        subscription_id: str,
        source_id: str,
        target_id: str,
        etag: str,
        fingerprint: str,
        master_id: Optional[str] = None,
    ) -> None:
        """Insert or replace; replaying the same write is a no-op on content."""
        await self.db.execute(
            """INSERT INTO event_mappings
               (subscription_id, source_id, target_id, etag, fingerprint, master_id, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(subscription_id, source_id) DO UPDATE SET
               target_id = excluded.target_id,
               etag = excluded.etag,
               fingerprint = excluded.fingerprint,
               master_id = excluded.master_id,
               updated_at = excluded.updated_at""",
            (subscription_id, source_id, target_id, etag, fingerprint, master_id, _now()),
        )
        await self.db.commit()

    async def delete(self, subscription_id: str, source_id: str) -> None:
        await self.db.execute(
            "DELETE FROM event_mappings WHERE subscription_id = ? AND source_id = ?",
            (subscription_id, source_id),
        )
        await self.db.commit()

    async def list_by_subscription(self, subscription_id: str) -> list[Mapping]:
        cursor = await self.db.execute(
            """SELECT * FROM event_mappings WHERE subscription_id = ?
               ORDER BY source_id""",
            (subscription_id,),
        )
        return [Mapping(**dict(row)) for row in await cursor.fetchall()]

    async def list_by_master(self, subscription_id: str, master_id: str) -> list[Mapping]:
        cursor = await self.db.execute(
            """SELECT * FROM event_mappings
               WHERE subscription_id = ? AND master_id = ?
               ORDER BY source_id""",
            (subscription_id, master_id),
        )
        return [Mapping(**dict(row)) for row in await cursor.fetchall()]

    async def target_ids_for_calendar(
        self,
        target_calendar_id: str,
        exclude_subscription_id: Optional[str] = None,
    ) -> set[str]:
        """Target ids mirrored into a calendar by any (other) subscription."""
        cursor = await self.db.execute(
            """SELECT em.target_id FROM event_mappings em
               JOIN subscriptions s ON em.subscription_id = s.id
               WHERE s.target_calendar_id = ? AND s.id IS NOT ?""",
            (target_calendar_id, exclude_subscription_id),
        )
        return {row["target_id"] for row in await cursor.fetchall()}

    async def delete_all(self, subscription_id: str) -> int:
        cursor = await self.db.execute(
            "DELETE FROM event_mappings WHERE subscription_id = ?",
            (subscription_id,),
        )
        await self.db.commit()
        return cursor.rowcount


class SubscriptionStateStore:
    """Change feed cursor and run status, one row per subscription."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def _ensure_row(self, subscription_id: str) -> None:
        await self.db.execute(
            """INSERT INTO subscription_state (subscription_id) VALUES (?)
               ON CONFLICT(subscription_id) DO NOTHING""",
            (subscription_id,),
        )

    async def get(self, subscription_id: str) -> SubscriptionState:
        cursor = await self.db.execute(
            "SELECT * FROM subscription_state WHERE subscription_id = ?",
            (subscription_id,),
        )
        row = await cursor.fetchone()
        if not row:
            return SubscriptionState(subscription_id=subscription_id)
        data = dict(row)
        data["consecutive_failures"] = data.get("consecutive_failures") or 0
        return SubscriptionState(**data)

    async def save_sync_token(
        self,
        subscription_id: str,
        sync_token: str,
        full_sync: bool = False,
    ) -> None:
        """Advance the cursor to the feed's terminal token."""
        await self._ensure_row(subscription_id)
        if full_sync:
            await self.db.execute(
                """UPDATE subscription_state SET sync_token = ?, last_full_sync = ?
                   WHERE subscription_id = ?""",
                (sync_token, _now(), subscription_id),
            )
        else:
            await self.db.execute(
                "UPDATE subscription_state SET sync_token = ? WHERE subscription_id = ?",
                (sync_token, subscription_id),
            )
        await self.db.commit()

    async def reset_sync_token(self, subscription_id: str) -> None:
        """Null the cursor so the next delta pass reads the full feed."""
        await self._ensure_row(subscription_id)
        await self.db.execute(
            "UPDATE subscription_state SET sync_token = NULL WHERE subscription_id = ?",
            (subscription_id,),
        )
        await self.db.commit()

    async def record_success(self, subscription_id: str) -> None:
        await self._ensure_row(subscription_id)
        await self.db.execute(
            """UPDATE subscription_state SET
               last_run_at = ?, last_status = 'ok',
               consecutive_failures = 0, last_error = NULL
               WHERE subscription_id = ?""",
            (_now(), subscription_id),
        )
        await self.db.commit()

    async def record_failure(self, subscription_id: str, error: str) -> None:
        await self._ensure_row(subscription_id)
        await self.db.execute(
            """UPDATE subscription_state SET
               last_run_at = ?, last_status = 'error',
               consecutive_failures = COALESCE(consecutive_failures, 0) + 1,
               last_error = ?
               WHERE subscription_id = ?""",
            (_now(), error, subscription_id),
        )
        await self.db.commit()

    async def clear(self, subscription_id: str) -> None:
        """Forget cursor and run status, as a forced resync does."""
        await self._ensure_row(subscription_id)
        await self.db.execute(
            """UPDATE subscription_state SET
               sync_token = NULL, last_run_at = NULL, last_status = NULL
               WHERE subscription_id = ?""",
            (subscription_id,),
        )
        await self.db.commit()
