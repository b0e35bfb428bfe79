"""Database connection and schema management."""

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import aiosqlite

logger = logging.getLogger(__name__)


SCHEMA = """
-- Mirroring subscriptions (owned by the management collaborator)
CREATE TABLE IF NOT EXISTS subscriptions (
    id TEXT PRIMARY KEY,
    profile_key TEXT NOT NULL,
    source_calendar_id TEXT NOT NULL,
    target_calendar_id TEXT NOT NULL,
    filter_kind TEXT NOT NULL DEFAULT 'keywords',
    filter_pattern TEXT NOT NULL,
    is_enabled BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_subscriptions_route
    ON subscriptions(profile_key, source_calendar_id, target_calendar_id)
    WHERE is_enabled = TRUE;

-- Per-subscription change feed cursor and run status
CREATE TABLE IF NOT EXISTS subscription_state (
    subscription_id TEXT PRIMARY KEY REFERENCES subscriptions(id) ON DELETE CASCADE,
    sync_token TEXT,
    last_run_at TIMESTAMP,
    last_status TEXT,
    last_error TEXT,
    last_full_sync TIMESTAMP,
    consecutive_failures INTEGER DEFAULT 0
);

-- One row per mirrored occurrence
CREATE TABLE IF NOT EXISTS event_mappings (
    subscription_id TEXT NOT NULL REFERENCES subscriptions(id) ON DELETE CASCADE,
    source_id TEXT NOT NULL,
    target_id TEXT NOT NULL,
    etag TEXT NOT NULL,
    fingerprint TEXT NOT NULL,
    master_id TEXT,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (subscription_id, source_id)
);

CREATE INDEX IF NOT EXISTS idx_event_mappings_master
    ON event_mappings(subscription_id, master_id);
CREATE INDEX IF NOT EXISTS idx_event_mappings_target
    ON event_mappings(target_id);

-- Audit log
CREATE TABLE IF NOT EXISTS sync_log (
    id INTEGER PRIMARY KEY,
    subscription_id TEXT,
    action TEXT NOT NULL,
    status TEXT NOT NULL,
    details TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_sync_log_created ON sync_log(created_at);
CREATE INDEX IF NOT EXISTS idx_sync_log_subscription ON sync_log(subscription_id, created_at);

-- Job locking
CREATE TABLE IF NOT EXISTS job_locks (
    job_name TEXT PRIMARY KEY,
    locked_at TIMESTAMP,
    locked_by TEXT
);
"""


async def connect_database(database_path: str) -> aiosqlite.Connection:
    """Open a connection to the database and make sure the schema exists."""
    if database_path != ":memory:":
        directory = os.path.dirname(os.path.abspath(database_path))
        os.makedirs(directory, exist_ok=True)

    db = await aiosqlite.connect(database_path)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys = ON")
    await db.execute("PRAGMA journal_mode = WAL")
    await init_schema(db)
    return db


async def init_schema(db: aiosqlite.Connection) -> None:
    """Initialize database schema."""
    await db.executescript(SCHEMA)
    await db.commit()
    logger.info("Database schema initialized")


async def close_database(db: aiosqlite.Connection) -> None:
    """Close the database connection."""
    await db.close()
    logger.info("Database connection closed")


@asynccontextmanager
async def open_database(database_path: str) -> AsyncGenerator[aiosqlite.Connection, None]:
    """Context manager scoping a connection to one batch run or service lifetime."""
    db = await connect_database(database_path)
    try:
        yield db
    finally:
        await close_database(db)


async def write_sync_log(
    db: aiosqlite.Connection,
    subscription_id: str | None,
    action: str,
    status: str,
    details: str | None = None,
) -> None:
    """Append an entry to the audit log."""
    await db.execute(
        """INSERT INTO sync_log (subscription_id, action, status, details)
           VALUES (?, ?, ?, ?)""",
        (subscription_id, action, status, details),
    )
    await db.commit()
