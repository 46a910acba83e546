"""Shared client session: message list, dedup and resync on top of the controller."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from livechat.client.reconnect import Connector, ReconnectionController
from livechat.config import ReconnectConfig
from livechat.core.dedup import DedupCache
from livechat.core.types import ConnectionState, DeliveryStatus
from livechat.errors import TransportFailure
from livechat.log import get_logger
from livechat.protocol.frames import (
    AdminNoticeFrame,
    ChatEventFrame,
    ErrorFrame,
    Frame,
    HistoryFrame,
    MessageItem,
    MessageStatusFrame,
    OutboundFrame,
    SystemFrame,
)
from livechat.storage.models import ChatMessage

logger = get_logger(__name__)


def message_from_event(event: ChatEventFrame) -> ChatMessage:
    return ChatMessage(
        id=event.id,
        client_id=event.client_id,
        sender_role=event.sender_role,
        text=event.message,
        created_at=event.timestamp,
        delivery_status=event.status,
    )


def message_from_item(item: MessageItem) -> ChatMessage:
    return ChatMessage(
        id=item.id,
        client_id=item.client_id,
        sender_role=item.sender_role,
        text=item.text,
        created_at=item.created_at,
        delivery_status=item.delivery_status,
    )


class ChatSession(ABC):
    """Base for the visitor widget and the admin console.

    Keeps every displayed message exactly once: ids are remembered both when
    this session sends a message and when one arrives, so live echoes and
    replayed history after a reconnect never show twice.
    """

    def __init__(
        self,
        url: str,
        config: Optional[ReconnectConfig] = None,
        connector: Optional[Connector] = None,
        dedup_capacity: int = 1000,
    ):
        self.dedup = DedupCache(dedup_capacity)
        self.messages: dict[str, list[ChatMessage]] = {}
        self.notices: list[str] = []
        self.errors: list[str] = []
        self.controller = ReconnectionController(
            url,
            config=config,
            connector=connector,
            on_frame=self.handle_event,
            on_state_change=self._on_state_change,
            on_connected=self.resync,
        )

    @property
    def state(self) -> ConnectionState:
        return self.controller.state

    async def start(self) -> None:
        await self.controller.start()

    async def stop(self) -> None:
        await self.controller.stop()

    @abstractmethod
    async def resync(self) -> None:
        """Re-announce identity and re-request state after every (re)connect."""
        ...

    async def handle_event(self, frame: OutboundFrame) -> None:
        match frame:
            case ChatEventFrame():
                self.display(message_from_event(frame))
            case HistoryFrame():
                for item in frame.messages:
                    self.display(message_from_item(item))
            case MessageStatusFrame():
                self.update_status(frame.client_id, frame.id, frame.status)
            case SystemFrame() | AdminNoticeFrame():
                self.notices.append(frame.message)
            case ErrorFrame():
                logger.warning("server_error", message=frame.message)
                self.errors.append(frame.message)
            case _:
                await self.on_event(frame)

    async def on_event(self, frame: OutboundFrame) -> None:
        """Frames not handled by the base session."""

    def display(self, message: ChatMessage) -> bool:
        """Add *message* to its thread unless its id was already shown."""
        if self.dedup.check_and_remember(message.id):
            self.update_status(message.client_id, message.id, message.delivery_status)
            return False
        self.messages.setdefault(message.client_id, []).append(message)
        return True

    def retract(self, message: ChatMessage) -> None:
        """Undo ``display`` for a message that never reached the server."""
        self.dedup.forget(message.id)
        thread = self.messages.get(message.client_id, [])
        thread[:] = [m for m in thread if m.id != message.id]

    async def deliver(self, message: ChatMessage, frame: Frame) -> bool:
        """Show *message* and send *frame*; False when it was a duplicate or could not be sent.

        A message is only remembered once it has left, so a retry with the
        same id after a failed send goes through.
        """
        if not self.controller.connected:
            logger.warning("send_while_disconnected", message_id=message.id, state=self.state.value)
            return False
        if not self.display(message):
            logger.info("duplicate_send_skipped", message_id=message.id)
            return False
        try:
            await self.controller.send(frame)
        except TransportFailure as e:
            logger.warning("send_failed", message_id=message.id, error=str(e))
            self.retract(message)
            return False
        return True

    def update_status(self, client_id: str, message_id: str, status: DeliveryStatus) -> None:
        thread = self.messages.get(client_id, [])
        for i, message in enumerate(thread):
            if message.id == message_id:
                thread[i] = message.with_status(status)
                return

    def thread(self, client_id: str) -> list[ChatMessage]:
        return list(self.messages.get(client_id, []))

    def _on_state_change(self, state: ConnectionState) -> None:
        logger.info("session_state", session=type(self).__name__, state=state.value)
        if state == ConnectionState.LOST:
            self.notices.append("Connection lost. Please reload.")
