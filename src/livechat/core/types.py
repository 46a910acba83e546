"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    VISITOR = "visitor"
    ADMIN = "admin"


class ThreadStatus(StrEnum):
    ACTIVE = "active"
    RESOLVED = "resolved"


class DeliveryStatus(StrEnum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _DELIVERY_RANK[self]

    def advance(self, target: DeliveryStatus) -> DeliveryStatus:
        """Return the later of the two statuses; delivery never regresses."""
        return target if target.rank > self.rank else self


_DELIVERY_RANK = {
    DeliveryStatus.SENT: 0,
    DeliveryStatus.DELIVERED: 1,
    DeliveryStatus.READ: 2,
}


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    LOST = "lost"
