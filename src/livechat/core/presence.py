"""Active-chat view for admins: unread flags, last-message preview, recency order."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional

from livechat.core.types import DeliveryStatus, Role, ThreadStatus
from livechat.storage.models import ChatMessage, ChatThread


@dataclass
class ActiveChatSummary:
    client_id: str
    name: str
    last_message_preview: str
    last_activity_at: str
    unread: bool = False
    status: ThreadStatus = ThreadStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "clientId": self.client_id,
            "name": self.name,
            "lastMessagePreview": self.last_message_preview,
            "lastActivityAt": self.last_activity_at,
            "unread": self.unread,
            "status": self.status.value,
        }


class PresenceTracker:
    """Derived cache over thread state; never persisted.

    A *viewer* is whoever has a thread open (an admin connection on the server,
    the console itself on the client). Opening a thread does not clear its
    unread flag; ``mark_read`` does.
    """

    def __init__(self, preview_length: int = 50, default_name: str = "Guest"):
        self._summaries: dict[str, ActiveChatSummary] = {}
        self._open: dict[str, str] = {}
        self._preview_length = preview_length
        self._default_name = default_name

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._summaries

    def get(self, client_id: str) -> ActiveChatSummary | None:
        return self._summaries.get(client_id)

    def is_open(self, client_id: str) -> bool:
        return client_id in self._open.values()

    def open_thread(self, viewer: str, client_id: str) -> None:
        self._open[viewer] = client_id

    def close_thread(self, viewer: str) -> None:
        self._open.pop(viewer, None)

    def open_thread_of(self, viewer: str) -> str | None:
        return self._open.get(viewer)

    def on_message(self, message: ChatMessage, name: Optional[str] = None) -> list[ActiveChatSummary]:
        """Merge one message event and return the updated, sorted summaries."""
        preview = message.text[: self._preview_length]
        from_visitor = message.sender_role == Role.VISITOR
        summary = self._summaries.get(message.client_id)
        if summary is None:
            self._summaries[message.client_id] = ActiveChatSummary(
                client_id=message.client_id,
                name=name or self._default_name,
                last_message_preview=preview,
                last_activity_at=message.created_at,
                unread=from_visitor and not self.is_open(message.client_id),
            )
        else:
            summary.last_message_preview = preview
            # Never move activity backwards if events are merged out of order
            if message.created_at >= summary.last_activity_at:
                summary.last_activity_at = message.created_at
            if name:
                summary.name = name
            if from_visitor and not self.is_open(message.client_id):
                summary.unread = True
            # A message reopens a resolved thread
            summary.status = ThreadStatus.ACTIVE
        return self.list()

    def mark_read(self, client_id: str) -> bool:
        summary = self._summaries.get(client_id)
        if summary is None or not summary.unread:
            return False
        summary.unread = False
        return True

    def rename(self, client_id: str, name: str) -> None:
        summary = self._summaries.get(client_id)
        if summary is not None and name:
            summary.name = name

    def set_status(self, client_id: str, status: ThreadStatus) -> None:
        summary = self._summaries.get(client_id)
        if summary is not None:
            summary.status = status

    def remove(self, client_id: str) -> bool:
        for viewer, open_id in list(self._open.items()):
            if open_id == client_id:
                del self._open[viewer]
        return self._summaries.pop(client_id, None) is not None

    def replace(self, summaries: Iterable[ActiveChatSummary]) -> None:
        """Swap in a full snapshot (client side, after ``active_chats``)."""
        self._summaries = {s.client_id: s for s in summaries}
        for summary in self._summaries.values():
            if self.is_open(summary.client_id):
                summary.unread = False

    def load(self, threads: Iterable[ChatThread]) -> None:
        """Seed from persisted threads; empty threads are not listed."""
        for thread in threads:
            last = thread.last_message
            if last is None:
                continue
            self._summaries[thread.client_id] = ActiveChatSummary(
                client_id=thread.client_id,
                name=thread.name or self._default_name,
                last_message_preview=last.text[: self._preview_length],
                last_activity_at=last.created_at,
                unread=(
                    last.sender_role == Role.VISITOR
                    and last.delivery_status != DeliveryStatus.READ
                ),
                status=thread.status,
            )

    def list(self) -> list[ActiveChatSummary]:
        # Two stable sorts: client id ascending, then activity descending
        ordered = sorted(self._summaries.values(), key=lambda s: s.client_id)
        return sorted(ordered, key=lambda s: s.last_activity_at, reverse=True)

    def to_dicts(self) -> list[dict[str, Any]]:
        return [s.to_dict() for s in self.list()]
