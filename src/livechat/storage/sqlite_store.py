"""SQLite-backed thread store."""

from __future__ import annotations

import json
from typing import Any, Optional

from livechat.core.types import DeliveryStatus, Role, ThreadStatus
from livechat.log import get_logger
from livechat.storage.base import ThreadStore
from livechat.storage.database import Database
from livechat.storage.memory_store import merge_client_info
from livechat.storage.models import ChatMessage, ChatThread, utcnow_iso

logger = get_logger(__name__)

_RANK_SQL = (
    "CASE delivery_status WHEN 'sent' THEN 0 WHEN 'delivered' THEN 1 ELSE 2 END"
)


class SqliteThreadStore(ThreadStore):
    """Threads and messages in two tables; message order is the insert sequence."""

    def __init__(self, db: Database, default_name: str = "Guest"):
        self._db = db
        self._default_name = default_name

    async def initialize(self) -> None:
        await self._db.initialize()

    async def close(self) -> None:
        await self._db.close()

    async def append_message(
        self,
        client_id: str,
        message: ChatMessage,
        client_info: Optional[dict[str, Any]] = None,
    ) -> bool:
        now = utcnow_iso()
        existing = await self._thread_row(client_id)
        async with self._db.transaction() as conn:
            if existing is None:
                await conn.execute(
                    """INSERT INTO chat_threads (client_id, client_info_json, status, created_at, updated_at)
                       VALUES (?, ?, 'active', ?, ?)""",
                    (client_id, json.dumps(merge_client_info({}, client_info or {})), now, now),
                )
            cursor = await conn.execute(
                """INSERT OR IGNORE INTO chat_messages
                   (id, client_id, sender_role, text, created_at, delivery_status)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    message.id,
                    client_id,
                    message.sender_role.value,
                    message.text,
                    message.created_at,
                    message.delivery_status.value,
                ),
            )
            if cursor.rowcount == 0:
                await conn.rollback()
                return False

            info_json = None
            if existing is not None and client_info:
                merged = merge_client_info(json.loads(existing["client_info_json"]), client_info)
                info_json = json.dumps(merged)
            await conn.execute(
                """UPDATE chat_threads
                   SET status = 'active', updated_at = ?,
                       client_info_json = COALESCE(?, client_info_json)
                   WHERE client_id = ?""",
                (now, info_json, client_id),
            )
        return True

    async def get_thread(self, client_id: str) -> ChatThread | None:
        row = await self._thread_row(client_id)
        if row is None:
            return None
        return await self._build_thread(row)

    async def list_threads(self, status: ThreadStatus | None = None) -> list[ChatThread]:
        if status is None:
            cursor = await self._db.conn.execute(
                "SELECT * FROM chat_threads ORDER BY updated_at DESC"
            )
        else:
            cursor = await self._db.conn.execute(
                "SELECT * FROM chat_threads WHERE status = ? ORDER BY updated_at DESC",
                (status.value,),
            )
        rows = await cursor.fetchall()
        return [await self._build_thread(row) for row in rows]

    async def set_status(self, client_id: str, status: ThreadStatus) -> bool:
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE chat_threads SET status = ?, updated_at = ? WHERE client_id = ?",
                (status.value, utcnow_iso(), client_id),
            )
        return cursor.rowcount > 0

    async def delete_thread(self, client_id: str) -> bool:
        async with self._db.transaction() as conn:
            await conn.execute("DELETE FROM chat_messages WHERE client_id = ?", (client_id,))
            cursor = await conn.execute(
                "DELETE FROM chat_threads WHERE client_id = ?", (client_id,)
            )
        return cursor.rowcount > 0

    async def update_client_info(self, client_id: str, info: dict[str, Any]) -> bool:
        row = await self._thread_row(client_id)
        now = utcnow_iso()
        if row is None:
            candidate = ChatThread(client_id=client_id, client_info=merge_client_info({}, info))
            if candidate.is_ghost(self._default_name):
                return False
        async with self._db.transaction() as conn:
            if row is None:
                await conn.execute(
                    """INSERT INTO chat_threads (client_id, client_info_json, status, created_at, updated_at)
                       VALUES (?, ?, 'active', ?, ?)""",
                    (client_id, json.dumps(candidate.client_info), now, now),
                )
            else:
                merged = merge_client_info(json.loads(row["client_info_json"]), info)
                await conn.execute(
                    "UPDATE chat_threads SET client_info_json = ?, updated_at = ? WHERE client_id = ?",
                    (json.dumps(merged), now, client_id),
                )
        return True

    async def advance_delivery(
        self,
        client_id: str,
        status: DeliveryStatus,
        message_ids: Optional[list[str]] = None,
        sender_role: Optional[Role] = None,
    ) -> int:
        if message_ids is not None and not message_ids:
            return 0
        clauses = ["client_id = ?", f"{_RANK_SQL} < ?"]
        params: list[Any] = [client_id, status.rank]
        if message_ids is not None:
            clauses.append(f"id IN ({', '.join('?' for _ in message_ids)})")
            params.extend(message_ids)
        if sender_role is not None:
            clauses.append("sender_role = ?")
            params.append(sender_role.value)
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                f"UPDATE chat_messages SET delivery_status = ? WHERE {' AND '.join(clauses)}",
                (status.value, *params),
            )
        return cursor.rowcount

    async def purge_ghosts(self, older_than: Optional[str] = None) -> int:
        cursor = await self._db.conn.execute(
            """SELECT * FROM chat_threads t
               WHERE NOT EXISTS (SELECT 1 FROM chat_messages m WHERE m.client_id = t.client_id)"""
        )
        rows = await cursor.fetchall()
        doomed = []
        for row in rows:
            thread = ChatThread(
                client_id=row["client_id"],
                client_info=json.loads(row["client_info_json"]),
                created_at=row["created_at"],
            )
            if thread.is_ghost(self._default_name) and (
                older_than is None or thread.created_at < older_than
            ):
                doomed.append(thread.client_id)
        async with self._db.transaction() as conn:
            for client_id in doomed:
                await conn.execute("DELETE FROM chat_threads WHERE client_id = ?", (client_id,))
        return len(doomed)

    async def _thread_row(self, client_id: str):
        cursor = await self._db.conn.execute(
            "SELECT * FROM chat_threads WHERE client_id = ?", (client_id,)
        )
        return await cursor.fetchone()

    async def _build_thread(self, row) -> ChatThread:
        cursor = await self._db.conn.execute(
            "SELECT * FROM chat_messages WHERE client_id = ? ORDER BY seq ASC",
            (row["client_id"],),
        )
        messages = [
            ChatMessage(
                id=m["id"],
                client_id=m["client_id"],
                sender_role=Role(m["sender_role"]),
                text=m["text"],
                created_at=m["created_at"],
                delivery_status=DeliveryStatus(m["delivery_status"]),
            )
            for m in await cursor.fetchall()
        ]
        return ChatThread(
            client_id=row["client_id"],
            client_info=json.loads(row["client_info_json"]),
            messages=messages,
            status=ThreadStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
