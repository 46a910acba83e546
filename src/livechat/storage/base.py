"""Abstract chat thread store interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from livechat.core.types import DeliveryStatus, Role, ThreadStatus
from livechat.storage.models import ChatMessage, ChatThread


class ThreadStore(ABC):
    """Base class for all storage engines backing the persistence gateway.

    Engines are never called concurrently: the gateway's single writer task
    awaits each call before starting the next. To add an engine, subclass this
    and implement all abstract methods.
    """

    async def initialize(self) -> None:
        """Open files/connections. Optional."""

    async def close(self) -> None:
        """Release files/connections. Optional."""

    @abstractmethod
    async def append_message(
        self,
        client_id: str,
        message: ChatMessage,
        client_info: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Append to the thread, creating or reopening it.

        Returns False when a message with the same id is already stored.
        """
        ...

    @abstractmethod
    async def get_thread(self, client_id: str) -> ChatThread | None:
        ...

    @abstractmethod
    async def list_threads(self, status: ThreadStatus | None = None) -> list[ChatThread]:
        ...

    @abstractmethod
    async def set_status(self, client_id: str, status: ThreadStatus) -> bool:
        ...

    @abstractmethod
    async def delete_thread(self, client_id: str) -> bool:
        ...

    @abstractmethod
    async def update_client_info(self, client_id: str, info: dict[str, Any]) -> bool:
        """Merge client metadata; a thread that would be a ghost is not created."""
        ...

    @abstractmethod
    async def advance_delivery(
        self,
        client_id: str,
        status: DeliveryStatus,
        message_ids: Optional[list[str]] = None,
        sender_role: Optional[Role] = None,
    ) -> int:
        """Move matching messages forward to *status*. Returns how many changed."""
        ...

    @abstractmethod
    async def purge_ghosts(self, older_than: Optional[str] = None) -> int:
        """Delete ghost threads created before *older_than* (ISO time)."""
        ...
