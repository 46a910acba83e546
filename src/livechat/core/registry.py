"""Registry of live visitor and admin connections."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from livechat.core.types import Role
from livechat.log import get_logger

if TYPE_CHECKING:
    from livechat.transport.base import ClientConnection

logger = get_logger(__name__)


class ConnectionRegistry:
    """Tracks live connections: one visitor per client id, any number of admins."""

    def __init__(self) -> None:
        self._visitors: dict[str, ClientConnection] = {}
        self._admins: dict[str, ClientConnection] = {}

    async def register(self, conn: ClientConnection) -> ClientConnection | None:
        """Add *conn*; returns the visitor connection it superseded, already closed."""
        if conn.role == Role.ADMIN:
            self._admins[conn.connection_id] = conn
            logger.info("admin_registered", connection_id=conn.connection_id, admins=len(self._admins))
            return None

        previous = self._visitors.get(conn.client_id)
        self._visitors[conn.client_id] = conn
        if previous is not None and previous is not conn:
            logger.info(
                "visitor_superseded",
                client_id=conn.client_id,
                stale=previous.connection_id,
                current=conn.connection_id,
            )
            await previous.close(4000, "Superseded by a newer connection")
            return previous
        logger.info("visitor_registered", client_id=conn.client_id, connection_id=conn.connection_id)
        return None

    def unregister(self, conn: ClientConnection) -> bool:
        """Remove *conn* if it is still the live entry; stale connections are ignored."""
        if conn.role == Role.ADMIN:
            removed = self._admins.pop(conn.connection_id, None) is not None
        elif self._visitors.get(conn.client_id) is conn:
            del self._visitors[conn.client_id]
            removed = True
        else:
            removed = False
        if removed:
            logger.info("connection_unregistered", role=conn.role.value, client_id=conn.client_id)
        return removed

    def find_visitor(self, client_id: str) -> ClientConnection | None:
        conn = self._visitors.get(client_id)
        if conn is not None and conn.is_open:
            return conn
        return None

    def all_admins(self) -> list[ClientConnection]:
        return [c for c in self._admins.values() if c.is_open]

    def visitors(self) -> list[ClientConnection]:
        return [c for c in self._visitors.values() if c.is_open]

    def get(self, connection_id: str) -> ClientConnection | None:
        if connection_id in self._admins:
            return self._admins[connection_id]
        for conn in self._visitors.values():
            if conn.connection_id == connection_id:
                return conn
        return None

    def is_online(self, client_id: str) -> bool:
        return self.find_visitor(client_id) is not None

    def stats(self) -> dict[str, Any]:
        admins = self.all_admins()
        visitors = self.visitors()
        return {
            "connectedClients": len(admins) + len(visitors),
            "adminOnline": len(admins),
            "activeChats": len(visitors),
            "admins": [
                {"name": a.display_name, "joined": a.connected_at.isoformat()} for a in admins
            ],
            "users": [
                {
                    "id": v.client_id,
                    "name": v.display_name,
                    "email": v.email or "",
                    "joined": v.connected_at.isoformat(),
                    "lastActive": v.last_active.isoformat(),
                }
                for v in visitors
            ],
        }
