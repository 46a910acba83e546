"""Self-expiring typing indicators."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Hashable

from livechat.log import get_logger

logger = get_logger(__name__)


class TypingExpiry:
    """One cancellable timer per typing key.

    ``arm`` (re)starts the timer; when it fires, *on_expire* runs as a task.
    A lost "stopped typing" frame therefore clears itself after *timeout*.
    """

    def __init__(self, timeout: float = 1.0):
        self._timeout = timeout
        self._handles: dict[Hashable, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def __contains__(self, key: object) -> bool:
        return key in self._handles

    def arm(self, key: Hashable, on_expire: Callable[[], Awaitable[None]]) -> None:
        self.cancel(key)
        loop = asyncio.get_running_loop()
        self._handles[key] = loop.call_later(self._timeout, self._fire, key, on_expire)

    def cancel(self, key: Hashable) -> bool:
        handle = self._handles.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_matching(self, predicate: Callable[[Hashable], bool]) -> int:
        keys = [k for k in self._handles if predicate(k)]
        for key in keys:
            self.cancel(key)
        return len(keys)

    def cancel_all(self) -> None:
        for key in list(self._handles):
            self.cancel(key)

    def _fire(self, key: Hashable, on_expire: Callable[[], Awaitable[None]]) -> None:
        self._handles.pop(key, None)
        task = asyncio.get_running_loop().create_task(self._run(key, on_expire))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, key: Hashable, on_expire: Callable[[], Awaitable[None]]) -> None:
        try:
            await on_expire()
        except Exception as e:
            logger.warning("typing_expiry_error", key=str(key), error=str(e))
