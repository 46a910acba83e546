"""Chat router: interprets inbound frames, mutates threads, fans out events."""

from __future__ import annotations

import asyncio
import re
from datetime import datetime, timezone
from typing import Iterable, Optional

from livechat.config import ChatConfig
from livechat.core.dedup import DedupCache
from livechat.core.presence import PresenceTracker
from livechat.core.registry import ConnectionRegistry
from livechat.core.types import DeliveryStatus, Role, ThreadStatus
from livechat.core.typing_indicator import TypingExpiry
from livechat.errors import MalformedFrame, TransportFailure
from livechat.log import get_logger
from livechat.protocol import codec
from livechat.protocol.frames import (
    ActiveChatsFrame,
    AdminMessageFrame,
    AdminNoticeFrame,
    BroadcastFrame,
    ChatDeletedFrame,
    ChatEventFrame,
    ChatFrame,
    ChatStatusFrame,
    ClientIdFrame,
    DeleteChatFrame,
    ErrorFrame,
    GetActiveChatsFrame,
    GetHistoryFrame,
    HistoryFrame,
    IdentifyFrame,
    InboundFrame,
    MessageStatusFrame,
    OutboundFrame,
    PingFrame,
    PongFrame,
    SetStatusFrame,
    SystemFrame,
    TypingEventFrame,
    TypingFrame,
)
from livechat.storage.gateway import PersistenceGateway
from livechat.storage.models import ChatMessage, new_message_id, utcnow_iso
from livechat.transport.base import ClientConnection

logger = get_logger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_ADMIN_ONLY = (
    AdminMessageFrame,
    GetActiveChatsFrame,
    DeleteChatFrame,
    SetStatusFrame,
    BroadcastFrame,
)


class ChatRouter:
    """Protocol state machine shared by every connection.

    Frames from one connection are handled to completion in arrival order.
    Persistence is submitted to the gateway and not awaited on the live path,
    so admins may see a message before it is durable.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        gateway: PersistenceGateway,
        presence: PresenceTracker,
        dedup: DedupCache,
        config: ChatConfig,
    ):
        self._registry = registry
        self._gateway = gateway
        self._presence = presence
        self._dedup = dedup
        self._config = config
        self._typing = TypingExpiry(config.typing_timeout)
        self._auto_replied: set[str] = set()

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def presence(self) -> PresenceTracker:
        return self._presence

    async def load_presence(self) -> int:
        """Seed the active-chat view from persisted threads."""
        threads = await self._gateway.list_threads()
        self._presence.load(threads)
        logger.info("presence_loaded", threads=len(threads))
        return len(threads)

    # Connection lifecycle

    async def connect(self, conn: ClientConnection) -> None:
        await self._registry.register(conn)
        if conn.is_admin:
            await self._safe_send(conn, ClientIdFrame(client_id=conn.connection_id))
            await self._safe_send(conn, SystemFrame(message="Admin connection established"))
            return

        await self._safe_send(conn, ClientIdFrame(client_id=conn.client_id))
        thread = await self._gateway.get_thread(conn.client_id)
        if thread is not None and thread.messages:
            if thread.name:
                conn.display_name = thread.name
            await self._safe_send(
                conn,
                HistoryFrame(
                    client_id=conn.client_id,
                    messages=[m.to_dict() for m in thread.messages[-self._config.history_limit:]],
                ),
            )

    async def disconnect(self, conn: ClientConnection) -> None:
        if not self._registry.unregister(conn):
            return
        if conn.is_admin:
            self._presence.close_thread(conn.connection_id)
            self._typing.cancel_matching(lambda k: k[0] == Role.ADMIN and k[1] == conn.connection_id)
        elif self._typing.cancel((Role.VISITOR, conn.client_id)):
            await self._fanout(
                self._registry.all_admins(),
                TypingEventFrame(client_id=conn.client_id, typing=False, name=conn.display_name),
            )

    # Inbound

    async def handle_raw(self, conn: ClientConnection, raw: str | bytes) -> None:
        """Decode and dispatch one frame; malformed frames are logged and dropped."""
        try:
            frame = codec.decode(raw)
        except MalformedFrame as e:
            logger.warning("malformed_frame", client_id=conn.client_id, reason=e.reason)
            return
        conn.touch()
        await self.dispatch(conn, frame)

    async def dispatch(self, conn: ClientConnection, frame: InboundFrame) -> None:
        if isinstance(frame, _ADMIN_ONLY) and not conn.is_admin:
            logger.warning("admin_frame_from_visitor", client_id=conn.client_id, frame=frame.type)
            await self._safe_send(conn, ErrorFrame(message=f"'{frame.type}' requires an admin connection"))
            return

        match frame:
            case IdentifyFrame():
                await self._on_identify(conn, frame)
            case ChatFrame():
                if conn.is_admin:
                    await self._safe_send(conn, ErrorFrame(message="Admins reply with 'admin_message'"))
                    return
                await self._on_chat(conn, frame)
            case AdminMessageFrame():
                await self.send_admin_message(
                    frame.target_client_id, frame.message, message_id=frame.id, sender=conn
                )
            case TypingFrame():
                await self._on_typing(conn, frame)
            case GetHistoryFrame():
                await self._on_get_history(conn, frame)
            case GetActiveChatsFrame():
                await self._safe_send(conn, ActiveChatsFrame(chats=self._presence.to_dicts()))
            case DeleteChatFrame():
                await self.delete_chat(frame.client_id)
            case SetStatusFrame():
                await self.update_status(frame.client_id, frame.status)
            case BroadcastFrame():
                count = await self.broadcast_to_visitors(frame.message)
                await self._safe_send(conn, SystemFrame(message=f"Broadcast sent to {count} clients"))
            case PingFrame():
                await self._safe_send(conn, PongFrame(timestamp=utcnow_iso()))

    async def _on_identify(self, conn: ClientConnection, frame: IdentifyFrame) -> None:
        if frame.is_admin and not conn.is_admin:
            logger.warning("visitor_claimed_admin", client_id=conn.client_id)
            return

        name = (frame.name or "").strip()[: self._config.max_name_length]
        if conn.is_admin:
            if name:
                conn.display_name = name
            logger.info("admin_identified", connection_id=conn.connection_id, name=conn.display_name)
            return

        if name:
            conn.display_name = name
        if frame.email and _EMAIL_PATTERN.match(frame.email.strip()):
            conn.email = frame.email.strip()

        self._gateway.update_client_info(
            conn.client_id,
            {"name": conn.display_name, "email": conn.email, "lastSeen": utcnow_iso()},
        )
        self._presence.rename(conn.client_id, conn.display_name)
        logger.info("visitor_identified", client_id=conn.client_id, name=conn.display_name)

    async def _on_chat(self, conn: ClientConnection, frame: ChatFrame) -> None:
        text = frame.message.strip()[: self._config.max_message_length]
        if not text:
            return
        if frame.client_id and frame.client_id != conn.client_id:
            logger.warning(
                "chat_client_id_mismatch", connection=conn.client_id, claimed=frame.client_id
            )
        message_id = frame.id or new_message_id()
        if self._dedup.check_and_remember(message_id):
            logger.info("duplicate_message_dropped", client_id=conn.client_id, message_id=message_id)
            return

        name = (frame.name or "").strip()[: self._config.max_name_length]
        if name:
            conn.display_name = name
        client_id = conn.client_id
        message = ChatMessage(id=message_id, client_id=client_id, sender_role=Role.VISITOR, text=text)
        self._gateway.append_message(
            client_id, message, client_info={"name": conn.display_name, "email": conn.email}
        )

        if self._typing.cancel((Role.VISITOR, client_id)):
            await self._fanout(
                self._registry.all_admins(),
                TypingEventFrame(client_id=client_id, typing=False, name=conn.display_name),
            )

        delivered = await self._fanout(
            self._registry.all_admins(),
            self._chat_event(message, name=conn.display_name, status=DeliveryStatus.DELIVERED),
        )
        status = DeliveryStatus.DELIVERED if delivered else DeliveryStatus.SENT
        if delivered:
            self._gateway.advance_delivery(client_id, status, message_ids=[message_id])

        self._presence.on_message(message, name=conn.display_name)
        await self._safe_send(conn, MessageStatusFrame(id=message_id, client_id=client_id, status=status))
        logger.info("chat_received", client_id=client_id, message_id=message_id, admins=delivered)

        auto_reply = self._config.offline_auto_reply
        if not delivered and auto_reply and client_id not in self._auto_replied:
            self._auto_replied.add(client_id)
            await self._safe_send(conn, SystemFrame(message=auto_reply))

    async def _on_typing(self, conn: ClientConnection, frame: TypingFrame) -> None:
        if conn.is_admin:
            target_id = frame.target_client_id
            if not target_id:
                return
            key = (Role.ADMIN, conn.connection_id, target_id)
            event = TypingEventFrame(
                client_id=target_id, typing=frame.typing, name=self._config.admin_display_name
            )

            def targets() -> list[ClientConnection]:
                visitor = self._registry.find_visitor(target_id)
                return [visitor] if visitor else []
        else:
            key = (Role.VISITOR, conn.client_id)
            event = TypingEventFrame(client_id=conn.client_id, typing=frame.typing, name=conn.display_name)
            targets = self._registry.all_admins

        await self._fanout(targets(), event)

        if frame.typing:
            cleared = event.model_copy(update={"typing": False})

            async def expire() -> None:
                await self._fanout(targets(), cleared)

            self._typing.arm(key, expire)
        else:
            self._typing.cancel(key)

    async def _on_get_history(self, conn: ClientConnection, frame: GetHistoryFrame) -> None:
        if conn.is_admin:
            client_id = frame.client_id
            if not client_id:
                await self._safe_send(conn, ErrorFrame(message="get_history requires clientId"))
                return
        else:
            client_id = conn.client_id

        messages = await self.history(client_id, frame.limit)
        if conn.is_admin:
            self._presence.open_thread(conn.connection_id, client_id)
            self._presence.mark_read(client_id)
            self._gateway.advance_delivery(client_id, DeliveryStatus.READ, sender_role=Role.VISITOR)
        else:
            self._gateway.advance_delivery(client_id, DeliveryStatus.READ, sender_role=Role.ADMIN)
        await self._safe_send(
            conn, HistoryFrame(client_id=client_id, messages=[m.to_dict() for m in messages])
        )

    # Operations shared with the HTTP surface

    async def history(self, client_id: str, limit: Optional[int] = None) -> list[ChatMessage]:
        """Last *limit* messages of a thread; an unknown client has an empty history."""
        thread = await self._gateway.get_thread(client_id)
        if thread is None:
            logger.debug("history_unknown_client", client_id=client_id)
            return []
        limit = limit or self._config.history_limit
        return thread.messages[-limit:]

    async def send_admin_message(
        self,
        client_id: str,
        text: str,
        message_id: Optional[str] = None,
        sender: Optional[ClientConnection] = None,
    ) -> DeliveryStatus | None:
        """Persist an admin reply and deliver it live when the visitor is online.

        Returns the delivery status, or None when the message was empty or a
        duplicate. A visitor without a live connection is not an error: the
        message stays in the thread as an offline message.
        """
        text = text.strip()[: self._config.max_message_length]
        if not text:
            return None
        message_id = message_id or new_message_id()
        if self._dedup.check_and_remember(message_id):
            logger.info("duplicate_message_dropped", client_id=client_id, message_id=message_id)
            return None

        message = ChatMessage(id=message_id, client_id=client_id, sender_role=Role.ADMIN, text=text)
        self._gateway.append_message(client_id, message)

        status = DeliveryStatus.SENT
        visitor = self._registry.find_visitor(client_id)
        if visitor is not None:
            event = self._chat_event(message, name=self._config.admin_display_name, status=DeliveryStatus.DELIVERED)
            if await self._safe_send(visitor, event):
                status = DeliveryStatus.DELIVERED
                self._gateway.advance_delivery(client_id, status, message_ids=[message_id])

        other_admins = [a for a in self._registry.all_admins() if a is not sender]
        await self._fanout(
            other_admins, self._chat_event(message, name=self._config.admin_display_name, status=status)
        )
        self._presence.on_message(message)

        if sender is not None:
            await self._safe_send(sender, MessageStatusFrame(id=message_id, client_id=client_id, status=status))
            if status == DeliveryStatus.SENT:
                await self._safe_send(sender, SystemFrame(message="Client is offline. Message saved for delivery."))
        logger.info("admin_message_routed", client_id=client_id, message_id=message_id, status=status.value)
        return status

    async def delete_chat(self, client_id: str) -> bool:
        """Delete a thread, tell every admin, and reset the visitor if online."""
        success = bool(await self._gateway.delete_thread(client_id))
        self._presence.remove(client_id)
        self._auto_replied.discard(client_id)
        await self._fanout(self._registry.all_admins(), ChatDeletedFrame(client_id=client_id, success=success))

        visitor = self._registry.find_visitor(client_id)
        if success and visitor is not None:
            await self._safe_send(visitor, SystemFrame(message="Chat session has been reset by admin."))
            self._registry.unregister(visitor)
            await visitor.close(1000, "Chat reset by admin")
        logger.info("chat_deleted", client_id=client_id, success=success)
        return success

    async def update_status(self, client_id: str, status: ThreadStatus) -> bool:
        updated = bool(await self._gateway.set_status(client_id, status))
        if updated:
            self._presence.set_status(client_id, status)
            await self._fanout(self._registry.all_admins(), ChatStatusFrame(client_id=client_id, status=status))
        logger.info("chat_status_updated", client_id=client_id, status=status.value, updated=updated)
        return updated

    async def broadcast_to_visitors(self, text: str) -> int:
        text = text.strip()[: self._config.max_message_length]
        if not text:
            return 0
        return await self._fanout(self._registry.visitors(), AdminNoticeFrame(message=text))

    async def close_stale_visitors(self, idle_seconds: float) -> int:
        """Close visitor connections with no inbound frame for *idle_seconds*."""
        now = datetime.now(timezone.utc)
        stale = [
            v for v in self._registry.visitors()
            if (now - v.last_active).total_seconds() > idle_seconds
        ]
        for visitor in stale:
            logger.info("stale_connection_closed", client_id=visitor.client_id)
            await self.disconnect(visitor)
            await visitor.close(1000, "Connection stale")
        return len(stale)

    def shutdown(self) -> None:
        self._typing.cancel_all()

    # Outbound

    def _chat_event(
        self, message: ChatMessage, name: Optional[str], status: DeliveryStatus
    ) -> ChatEventFrame:
        return ChatEventFrame(
            id=message.id,
            client_id=message.client_id,
            message=message.text,
            timestamp=message.created_at,
            sender_role=message.sender_role,
            is_admin=message.sender_role == Role.ADMIN,
            name=name,
            status=status,
        )

    async def _safe_send(self, conn: ClientConnection, frame: OutboundFrame) -> bool:
        try:
            await conn.send(frame)
            return True
        except TransportFailure as e:
            logger.warning("send_failed", client_id=conn.client_id, frame=frame.type, error=str(e))
            await self.disconnect(conn)
            return False

    async def _fanout(self, conns: Iterable[ClientConnection], frame: OutboundFrame) -> int:
        """Send *frame* to every connection concurrently; returns how many succeeded."""
        targets = list(conns)
        if not targets:
            return 0
        results = await asyncio.gather(*(self._safe_send(c, frame) for c in targets))
        return sum(1 for ok in results if ok)
