"""File-backed thread store: the whole chat set lives in one JSON document."""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path

from livechat.log import get_logger
from livechat.storage.memory_store import MemoryThreadStore
from livechat.storage.models import ChatThread

logger = get_logger(__name__)


class JsonFileThreadStore(MemoryThreadStore):
    """Keeps threads in memory and rewrites ``{"chats": {...}}`` after each mutation."""

    def __init__(self, path: str, default_name: str = "Guest"):
        super().__init__(default_name=default_name)
        self._path = Path(path)

    async def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not self._path.exists():
            logger.info("json_store_created", path=str(self._path))
            return

        raw = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
        data = json.loads(raw) if raw.strip() else {}
        for client_id, record in (data.get("chats") or {}).items():
            record.setdefault("clientId", client_id)
            self._threads[client_id] = ChatThread.from_dict(record)
        logger.info("json_store_loaded", path=str(self._path), threads=len(self._threads))

    async def _persist(self) -> None:
        document = {"chats": {cid: t.to_dict() for cid, t in self._threads.items()}}
        payload = json.dumps(document, ensure_ascii=False, indent=2)
        await asyncio.to_thread(self._write_atomic, payload)

    def _write_atomic(self, payload: str) -> None:
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(payload, encoding="utf-8")
        os.replace(tmp, self._path)
