"""Admin side of the chat channel."""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlencode

from livechat.client.reconnect import Connector
from livechat.client.session import ChatSession, message_from_event
from livechat.config import ReconnectConfig
from livechat.core.presence import ActiveChatSummary, PresenceTracker
from livechat.core.types import Role, ThreadStatus
from livechat.protocol.frames import (
    ActiveChatsFrame,
    AdminMessageFrame,
    BroadcastFrame,
    ChatDeletedFrame,
    ChatEventFrame,
    ChatStatusFrame,
    ClientIdFrame,
    DeleteChatFrame,
    GetActiveChatsFrame,
    GetHistoryFrame,
    IdentifyFrame,
    OutboundFrame,
    SetStatusFrame,
    TypingEventFrame,
    TypingFrame,
)
from livechat.storage.models import ChatMessage, new_message_id, utcnow_iso


# Viewer key for the console's own open thread in its local tracker
_SELF = "console"


class AdminConsole(ChatSession):
    """Admin dashboard state: active-chat list, open thread, replies."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        name: Optional[str] = None,
        config: Optional[ReconnectConfig] = None,
        connector: Optional[Connector] = None,
    ):
        url = f"{base_url.rstrip('/')}/ws/admin?{urlencode({'apiKey': api_key})}"
        super().__init__(url, config=config, connector=connector)
        self.name = name
        self.connection_id: Optional[str] = None
        self.open_client_id: Optional[str] = None
        self.presence = PresenceTracker()
        self.typing: dict[str, bool] = {}

    @property
    def active_chats(self) -> list[ActiveChatSummary]:
        return self.presence.list()

    async def resync(self) -> None:
        await self.controller.send(IdentifyFrame(is_admin=True, name=self.name))
        await self.controller.send(GetActiveChatsFrame())
        if self.open_client_id:
            await self.controller.send(GetHistoryFrame(client_id=self.open_client_id))

    async def open_chat(self, client_id: str) -> None:
        self.open_client_id = client_id
        self.presence.open_thread(_SELF, client_id)
        self.presence.mark_read(client_id)
        await self.controller.send(GetHistoryFrame(client_id=client_id))

    def close_chat(self) -> None:
        self.open_client_id = None
        self.presence.close_thread(_SELF)

    async def reply(self, text: str, client_id: Optional[str] = None, message_id: Optional[str] = None) -> ChatMessage | None:
        """Send to *client_id*, or to the open thread. Returns None for a repeated id or a failed send."""
        target = client_id or self.open_client_id
        text = text.strip()
        if not target or not text:
            return None
        message = ChatMessage(
            id=message_id or new_message_id(),
            client_id=target,
            sender_role=Role.ADMIN,
            text=text,
            created_at=utcnow_iso(),
        )
        frame = AdminMessageFrame(target_client_id=target, message=text, id=message.id)
        if not await self.deliver(message, frame):
            return None
        self.presence.on_message(message)
        return message

    async def set_typing(self, typing: bool, client_id: Optional[str] = None) -> None:
        target = client_id or self.open_client_id
        if target:
            await self.controller.send(TypingFrame(typing=typing, target_client_id=target))

    async def delete_chat(self, client_id: str) -> None:
        await self.controller.send(DeleteChatFrame(client_id=client_id))

    async def set_status(self, client_id: str, status: ThreadStatus) -> None:
        await self.controller.send(SetStatusFrame(client_id=client_id, status=status))

    async def broadcast(self, text: str) -> None:
        await self.controller.send(BroadcastFrame(message=text))

    async def handle_event(self, frame: OutboundFrame) -> None:
        await super().handle_event(frame)
        if isinstance(frame, ChatEventFrame):
            self.presence.on_message(message_from_event(frame), name=None if frame.is_admin else frame.name)
            if frame.client_id == self.open_client_id:
                self.presence.mark_read(frame.client_id)

    async def on_event(self, frame: OutboundFrame) -> None:
        match frame:
            case ClientIdFrame():
                self.connection_id = frame.client_id
            case ActiveChatsFrame():
                self.presence.replace(ActiveChatSummary(**c.model_dump()) for c in frame.chats)
            case ChatDeletedFrame():
                if frame.success:
                    self.presence.remove(frame.client_id)
                    self.messages.pop(frame.client_id, None)
                    self.typing.pop(frame.client_id, None)
                    if self.open_client_id == frame.client_id:
                        self.open_client_id = None
            case ChatStatusFrame():
                self.presence.set_status(frame.client_id, frame.status)
            case TypingEventFrame():
                self.typing[frame.client_id] = frame.typing
