"""Persistence gateway: every storage operation goes through one serial writer.

Callers on the live chat path submit mutations and move on; the returned
future resolves once the operation has run. Operation N+1 never starts before
operation N has finished, whatever the engine, so concurrent submissions can't
interleave partial writes. A failing operation is logged as a
``PersistenceFailure`` and its future resolves to the operation's fallback
value (``False``/``None``/``0``/``[]``); there is no retry. Reads are queued
too, so they observe every write submitted before them.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from livechat.core.types import DeliveryStatus, Role, ThreadStatus
from livechat.errors import PersistenceFailure
from livechat.log import get_logger
from livechat.services.base import Service
from livechat.storage.base import ThreadStore
from livechat.storage.models import ChatMessage, ChatThread

logger = get_logger(__name__)


@dataclass
class _Operation:
    name: str
    run: Callable[[], Awaitable[Any]]
    fallback: Any
    future: asyncio.Future


class PersistenceGateway(Service):
    """Single-writer task queue in front of a ThreadStore."""

    def __init__(self, store: ThreadStore):
        self._store = store
        self._queue: asyncio.Queue[_Operation | None] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self.failures = 0
        self.completed = 0

    @property
    def service_name(self) -> str:
        return "persistence"

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        await self._store.initialize()
        self._worker = asyncio.create_task(self._run(), name="persistence-writer")
        logger.info("persistence_gateway_started", store=type(self._store).__name__)

    async def stop(self) -> None:
        if self._worker is None:
            return
        # Drain what was already submitted, then let the worker exit
        await self._queue.put(None)
        await self._worker
        self._worker = None
        await self._store.close()
        logger.info("persistence_gateway_stopped", completed=self.completed, failures=self.failures)

    async def health_check(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def flush(self) -> None:
        """Wait until every operation submitted so far has run."""
        await self._queue.join()

    def submit(self, name: str, run: Callable[[], Awaitable[Any]], fallback: Any = None) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(_Operation(name=name, run=run, fallback=fallback, future=future))
        return future

    async def _run(self) -> None:
        while True:
            op = await self._queue.get()
            try:
                if op is None:
                    return
                try:
                    result = await op.run()
                    self.completed += 1
                except Exception as e:
                    failure = PersistenceFailure(op.name, e)
                    self.failures += 1
                    logger.error("persistence_failure", operation=op.name, error=str(failure))
                    result = op.fallback
                if not op.future.done():
                    op.future.set_result(result)
            finally:
                self._queue.task_done()

    # Mutations: fire-and-forget from the router, awaitable when a caller needs the outcome

    def append_message(
        self,
        client_id: str,
        message: ChatMessage,
        client_info: Optional[dict[str, Any]] = None,
    ) -> asyncio.Future:
        return self.submit(
            "append_message",
            lambda: self._store.append_message(client_id, message, client_info),
            fallback=False,
        )

    def set_status(self, client_id: str, status: ThreadStatus) -> asyncio.Future:
        return self.submit(
            "set_status", lambda: self._store.set_status(client_id, status), fallback=False
        )

    def delete_thread(self, client_id: str) -> asyncio.Future:
        return self.submit(
            "delete_thread", lambda: self._store.delete_thread(client_id), fallback=False
        )

    def update_client_info(self, client_id: str, info: dict[str, Any]) -> asyncio.Future:
        return self.submit(
            "update_client_info",
            lambda: self._store.update_client_info(client_id, info),
            fallback=False,
        )

    def advance_delivery(
        self,
        client_id: str,
        status: DeliveryStatus,
        message_ids: Optional[list[str]] = None,
        sender_role: Optional[Role] = None,
    ) -> asyncio.Future:
        return self.submit(
            "advance_delivery",
            lambda: self._store.advance_delivery(client_id, status, message_ids, sender_role),
            fallback=0,
        )

    def purge_ghosts(self, older_than: Optional[str] = None) -> asyncio.Future:
        return self.submit(
            "purge_ghosts", lambda: self._store.purge_ghosts(older_than), fallback=0
        )

    # Reads

    async def get_thread(self, client_id: str) -> ChatThread | None:
        return await self.submit(
            "get_thread", lambda: self._store.get_thread(client_id), fallback=None
        )

    async def list_threads(self, status: ThreadStatus | None = None) -> list[ChatThread]:
        return await self.submit(
            "list_threads", lambda: self._store.list_threads(status), fallback=[]
        )
