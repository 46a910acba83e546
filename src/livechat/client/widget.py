"""Visitor side of the chat channel."""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlencode

from livechat.client.reconnect import Connector
from livechat.client.session import ChatSession
from livechat.config import ReconnectConfig
from livechat.core.types import Role
from livechat.log import get_logger
from livechat.protocol.frames import (
    ChatFrame,
    ClientIdFrame,
    GetHistoryFrame,
    IdentifyFrame,
    OutboundFrame,
    TypingEventFrame,
    TypingFrame,
)
from livechat.storage.models import ChatMessage, new_message_id, utcnow_iso

logger = get_logger(__name__)


class VisitorWidget(ChatSession):
    """Keeps one visitor identity across reconnects.

    The server-assigned ``client_id`` is written back into the dial url, so
    every later reconnect resumes the same thread.
    """

    def __init__(
        self,
        base_url: str,
        client_id: Optional[str] = None,
        name: Optional[str] = None,
        email: Optional[str] = None,
        config: Optional[ReconnectConfig] = None,
        connector: Optional[Connector] = None,
    ):
        self.client_id = client_id
        self.name = name
        self.email = email
        self.admin_typing = False
        self._base_url = base_url.rstrip("/")
        super().__init__(self._url(), config=config, connector=connector)

    def _url(self) -> str:
        if not self.client_id:
            return f"{self._base_url}/ws"
        return f"{self._base_url}/ws?{urlencode({'clientId': self.client_id})}"

    @property
    def history(self) -> list[ChatMessage]:
        return self.thread(self.client_id) if self.client_id else []

    async def resync(self) -> None:
        if self.name or self.email:
            await self.controller.send(IdentifyFrame(name=self.name, email=self.email))
        await self.controller.send(GetHistoryFrame())

    async def identify(self, name: Optional[str] = None, email: Optional[str] = None) -> None:
        self.name = name or self.name
        self.email = email or self.email
        await self.controller.send(IdentifyFrame(name=self.name, email=self.email))

    async def send_message(self, text: str, message_id: Optional[str] = None) -> ChatMessage | None:
        """Show and send a message. Returns None for a repeated id or when the send did not go out."""
        text = text.strip()
        if not text or not self.client_id:
            return None
        message = ChatMessage(
            id=message_id or new_message_id(),
            client_id=self.client_id,
            sender_role=Role.VISITOR,
            text=text,
            created_at=utcnow_iso(),
        )
        frame = ChatFrame(
            message=text,
            id=message.id,
            client_id=self.client_id,
            timestamp=message.created_at,
            name=self.name,
        )
        if not await self.deliver(message, frame):
            return None
        return message

    async def set_typing(self, typing: bool) -> None:
        await self.controller.send(TypingFrame(typing=typing))

    async def on_event(self, frame: OutboundFrame) -> None:
        match frame:
            case ClientIdFrame():
                if frame.client_id != self.client_id:
                    logger.info("client_id_assigned", client_id=frame.client_id)
                self.client_id = frame.client_id
                self.controller.url = self._url()
            case TypingEventFrame():
                self.admin_typing = frame.typing
