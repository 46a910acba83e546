"""SQLite database connection manager with schema migration."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from livechat.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS chat_threads (
    client_id        TEXT PRIMARY KEY,
    client_info_json TEXT NOT NULL DEFAULT '{}',
    status           TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active','resolved')),
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chat_messages (
    seq              INTEGER PRIMARY KEY AUTOINCREMENT,
    id               TEXT NOT NULL,
    client_id        TEXT NOT NULL REFERENCES chat_threads(client_id) ON DELETE CASCADE,
    sender_role      TEXT NOT NULL CHECK(sender_role IN ('visitor','admin')),
    text             TEXT NOT NULL,
    created_at       TEXT NOT NULL,
    delivery_status  TEXT NOT NULL DEFAULT 'sent'
                     CHECK(delivery_status IN ('sent','delivered','read')),
    UNIQUE (client_id, id)
);

CREATE INDEX IF NOT EXISTS idx_messages_thread
    ON chat_messages(client_id, seq);

CREATE INDEX IF NOT EXISTS idx_threads_status
    ON chat_threads(status, updated_at);
"""


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open connection and run migrations."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()
        logger.info("database_initialized", path=self._db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Commit when the block finishes, roll back if it raises."""
        conn = self.conn
        try:
            yield conn
        except BaseException:
            await conn.rollback()
            raise
        await conn.commit()

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
