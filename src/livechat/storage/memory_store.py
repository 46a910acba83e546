"""In-memory thread store; also the base of the JSON file engine."""

from __future__ import annotations

import copy
from typing import Any, Optional

from livechat.core.types import DeliveryStatus, Role, ThreadStatus
from livechat.storage.base import ThreadStore
from livechat.storage.models import ChatMessage, ChatThread, utcnow_iso


def merge_client_info(current: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    merged = dict(current)
    for key, value in update.items():
        if value in (None, ""):
            continue
        merged[key] = value
    return merged


class MemoryThreadStore(ThreadStore):
    """Threads held in a dict keyed by client id."""

    def __init__(self, default_name: str = "Guest"):
        self._threads: dict[str, ChatThread] = {}
        self._default_name = default_name

    async def _persist(self) -> None:
        """Hook for durable engines; called after every successful mutation."""

    async def append_message(
        self,
        client_id: str,
        message: ChatMessage,
        client_info: Optional[dict[str, Any]] = None,
    ) -> bool:
        thread = self._threads.get(client_id)
        if thread is None:
            thread = ChatThread(client_id=client_id)
            self._threads[client_id] = thread
        elif thread.has_message(message.id):
            return False

        if client_info:
            thread.client_info = merge_client_info(thread.client_info, client_info)
        thread.messages.append(message)
        thread.status = ThreadStatus.ACTIVE
        thread.updated_at = utcnow_iso()
        await self._persist()
        return True

    async def get_thread(self, client_id: str) -> ChatThread | None:
        thread = self._threads.get(client_id)
        # Callers get a snapshot; later appends must not leak into it
        return copy.deepcopy(thread) if thread else None

    async def list_threads(self, status: ThreadStatus | None = None) -> list[ChatThread]:
        return [
            copy.deepcopy(t)
            for t in self._threads.values()
            if status is None or t.status == status
        ]

    async def set_status(self, client_id: str, status: ThreadStatus) -> bool:
        thread = self._threads.get(client_id)
        if thread is None:
            return False
        thread.status = status
        thread.updated_at = utcnow_iso()
        await self._persist()
        return True

    async def delete_thread(self, client_id: str) -> bool:
        if self._threads.pop(client_id, None) is None:
            return False
        await self._persist()
        return True

    async def update_client_info(self, client_id: str, info: dict[str, Any]) -> bool:
        thread = self._threads.get(client_id)
        candidate = thread or ChatThread(client_id=client_id)
        merged = merge_client_info(candidate.client_info, info)
        if thread is None:
            candidate.client_info = merged
            if candidate.is_ghost(self._default_name):
                return False
            self._threads[client_id] = candidate
        else:
            thread.client_info = merged
            thread.updated_at = utcnow_iso()
        await self._persist()
        return True

    async def advance_delivery(
        self,
        client_id: str,
        status: DeliveryStatus,
        message_ids: Optional[list[str]] = None,
        sender_role: Optional[Role] = None,
    ) -> int:
        thread = self._threads.get(client_id)
        if thread is None:
            return 0
        wanted = set(message_ids) if message_ids is not None else None
        changed = 0
        for i, msg in enumerate(thread.messages):
            if wanted is not None and msg.id not in wanted:
                continue
            if sender_role is not None and msg.sender_role != sender_role:
                continue
            updated = msg.with_status(status)
            if updated is not msg:
                thread.messages[i] = updated
                changed += 1
        if changed:
            await self._persist()
        return changed

    async def purge_ghosts(self, older_than: Optional[str] = None) -> int:
        doomed = [
            cid for cid, t in self._threads.items()
            if t.is_ghost(self._default_name)
            and (older_than is None or t.created_at < older_than)
        ]
        for cid in doomed:
            del self._threads[cid]
        if doomed:
            await self._persist()
        return len(doomed)
