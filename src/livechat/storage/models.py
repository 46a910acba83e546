"""Data models for storage layer."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional

from livechat.core.types import DeliveryStatus, Role, ThreadStatus


def to_iso(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision; these strings sort chronologically."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utcnow_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def new_message_id() -> str:
    """Generate an id of the form ``msg-<epoch ms>-<random>``."""
    return f"msg-{int(time.time() * 1000)}-{secrets.token_hex(5)[:9]}"


@dataclass(frozen=True, slots=True)
class ChatMessage:
    id: str
    client_id: str
    sender_role: Role
    text: str
    created_at: str = field(default_factory=utcnow_iso)
    delivery_status: DeliveryStatus = DeliveryStatus.SENT

    def with_status(self, status: DeliveryStatus) -> ChatMessage:
        advanced = self.delivery_status.advance(status)
        if advanced == self.delivery_status:
            return self
        return replace(self, delivery_status=advanced)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "clientId": self.client_id,
            "senderRole": self.sender_role.value,
            "text": self.text,
            "createdAt": self.created_at,
            "deliveryStatus": self.delivery_status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        return cls(
            id=data["id"],
            client_id=data["clientId"],
            sender_role=Role(data["senderRole"]),
            text=data["text"],
            created_at=data["createdAt"],
            delivery_status=DeliveryStatus(data.get("deliveryStatus", DeliveryStatus.SENT)),
        )


@dataclass
class ChatThread:
    client_id: str
    client_info: dict[str, Any] = field(default_factory=dict)
    messages: list[ChatMessage] = field(default_factory=list)
    status: ThreadStatus = ThreadStatus.ACTIVE
    created_at: str = field(default_factory=utcnow_iso)
    updated_at: str = field(default_factory=utcnow_iso)

    @property
    def name(self) -> Optional[str]:
        return self.client_info.get("name")

    @property
    def last_message(self) -> Optional[ChatMessage]:
        return self.messages[-1] if self.messages else None

    def has_message(self, message_id: str) -> bool:
        return any(m.id == message_id for m in self.messages)

    def is_ghost(self, default_name: str = "Guest") -> bool:
        """True when the thread carries neither messages nor client metadata."""
        if self.messages:
            return False
        meaningful = {
            k: v for k, v in self.client_info.items()
            if v and k not in ("firstSeen", "lastSeen")
        }
        if meaningful.get("name") == default_name:
            meaningful.pop("name")
        return not meaningful

    def to_dict(self) -> dict[str, Any]:
        return {
            "clientId": self.client_id,
            "clientInfo": dict(self.client_info),
            "messages": [m.to_dict() for m in self.messages],
            "status": self.status.value,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatThread:
        return cls(
            client_id=data["clientId"],
            client_info=dict(data.get("clientInfo") or {}),
            messages=[ChatMessage.from_dict(m) for m in data.get("messages", [])],
            status=ThreadStatus(data.get("status", ThreadStatus.ACTIVE)),
            created_at=data.get("createdAt") or utcnow_iso(),
            updated_at=data.get("updatedAt") or utcnow_iso(),
        )
