"""Abstract client connection interface."""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from livechat.core.types import Role

if TYPE_CHECKING:
    from livechat.protocol.frames import OutboundFrame


class ClientConnection(ABC):
    """One live transport handle owned by the connection registry.

    To add a transport, subclass this and implement all abstract methods.
    """

    def __init__(self, client_id: str, role: Role, display_name: str):
        self.client_id = client_id
        self.role = role
        self.display_name = display_name
        self.email: Optional[str] = None
        self.connection_id = uuid.uuid4().hex[:12]
        self.connected_at = datetime.now(timezone.utc)
        self.last_active = self.connected_at

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def touch(self) -> None:
        self.last_active = datetime.now(timezone.utc)

    @abstractmethod
    async def send(self, frame: OutboundFrame) -> None:
        """Encode and send one frame. Raises TransportFailure when the peer is gone."""
        ...

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the transport; safe to call more than once."""
        ...

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} {self.role.value}:{self.client_id} "
            f"conn={self.connection_id}>"
        )
