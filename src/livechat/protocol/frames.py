"""Wire frames for the real-time chat channel.

Each direction is a tagged union discriminated by ``type``. Python field names
are snake_case; the wire uses camelCase.
"""

from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from livechat.core.types import DeliveryStatus, Role, ThreadStatus


class Frame(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# Client -> server


class IdentifyFrame(Frame):
    type: Literal["identify"] = "identify"
    is_admin: bool = False
    name: Optional[str] = None
    email: Optional[str] = None


class ChatFrame(Frame):
    type: Literal["chat"] = "chat"
    message: str
    id: Optional[str] = None
    client_id: Optional[str] = None
    timestamp: Optional[str] = None
    name: Optional[str] = None


class AdminMessageFrame(Frame):
    type: Literal["admin_message"] = "admin_message"
    target_client_id: str = Field(
        validation_alias=AliasChoices("targetClientId", "clientId", "target_client_id"),
        serialization_alias="targetClientId",
    )
    message: str
    id: Optional[str] = None
    timestamp: Optional[str] = None


class TypingFrame(Frame):
    type: Literal["typing"] = "typing"
    typing: bool = Field(
        validation_alias=AliasChoices("typing", "isTyping"),
        serialization_alias="typing",
    )
    target_client_id: Optional[str] = None


class GetHistoryFrame(Frame):
    type: Literal["get_history"] = "get_history"
    client_id: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1)


class GetActiveChatsFrame(Frame):
    type: Literal["get_active_chats"] = "get_active_chats"


class DeleteChatFrame(Frame):
    type: Literal["delete_chat"] = "delete_chat"
    client_id: str


class SetStatusFrame(Frame):
    type: Literal["set_status"] = "set_status"
    client_id: str
    status: ThreadStatus


class BroadcastFrame(Frame):
    type: Literal["broadcast"] = "broadcast"
    message: str


class PingFrame(Frame):
    type: Literal["ping"] = "ping"


InboundFrame = Annotated[
    Union[
        IdentifyFrame,
        ChatFrame,
        AdminMessageFrame,
        TypingFrame,
        GetHistoryFrame,
        GetActiveChatsFrame,
        DeleteChatFrame,
        SetStatusFrame,
        BroadcastFrame,
        PingFrame,
    ],
    Field(discriminator="type"),
]


# Server -> client


class ClientIdFrame(Frame):
    type: Literal["client_id"] = "client_id"
    client_id: str


class ChatEventFrame(Frame):
    type: Literal["chat"] = "chat"
    id: str
    client_id: str
    message: str
    timestamp: str
    sender_role: Role
    is_admin: bool = False
    name: Optional[str] = None
    status: DeliveryStatus = DeliveryStatus.SENT


class MessageItem(Frame):
    """One stored message as carried inside a history frame."""

    id: str
    client_id: str
    sender_role: Role
    text: str
    created_at: str
    delivery_status: DeliveryStatus = DeliveryStatus.SENT


class ChatSummaryItem(Frame):
    client_id: str
    name: str = ""
    last_message_preview: str = ""
    last_activity_at: str = ""
    unread: bool = False
    status: ThreadStatus = ThreadStatus.ACTIVE


class HistoryFrame(Frame):
    type: Literal["history"] = "history"
    client_id: Optional[str] = None
    messages: list[MessageItem] = Field(default_factory=list)


class ActiveChatsFrame(Frame):
    type: Literal["active_chats"] = "active_chats"
    chats: list[ChatSummaryItem] = Field(default_factory=list)


class ChatDeletedFrame(Frame):
    type: Literal["chat_deleted"] = "chat_deleted"
    client_id: str
    success: bool


class ChatStatusFrame(Frame):
    type: Literal["chat_status"] = "chat_status"
    client_id: str
    status: ThreadStatus


class TypingEventFrame(Frame):
    type: Literal["typing"] = "typing"
    client_id: str
    typing: bool
    name: Optional[str] = None


class MessageStatusFrame(Frame):
    type: Literal["message_status"] = "message_status"
    id: str
    client_id: str
    status: DeliveryStatus


class SystemFrame(Frame):
    type: Literal["system"] = "system"
    message: str


class AdminNoticeFrame(Frame):
    type: Literal["admin"] = "admin"
    message: str


class PongFrame(Frame):
    type: Literal["pong"] = "pong"
    timestamp: Optional[str] = None


class ErrorFrame(Frame):
    type: Literal["error"] = "error"
    message: str


OutboundFrame = Annotated[
    Union[
        ClientIdFrame,
        ChatEventFrame,
        HistoryFrame,
        ActiveChatsFrame,
        ChatDeletedFrame,
        ChatStatusFrame,
        TypingEventFrame,
        MessageStatusFrame,
        SystemFrame,
        AdminNoticeFrame,
        PongFrame,
        ErrorFrame,
    ],
    Field(discriminator="type"),
]
