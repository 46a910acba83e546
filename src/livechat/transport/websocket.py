"""WebSocket transport: visitor and admin endpoints on top of FastAPI/Starlette."""

from __future__ import annotations

import re
import secrets
import time
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from livechat.config import AppConfig
from livechat.core.router import ChatRouter
from livechat.core.types import Role
from livechat.errors import TransportFailure
from livechat.log import get_logger
from livechat.protocol import codec
from livechat.protocol.frames import OutboundFrame
from livechat.transport.base import ClientConnection

logger = get_logger(__name__)

CLIENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
POLICY_VIOLATION = 1008


def new_client_id() -> str:
    return f"client_{int(time.time() * 1000)}{secrets.token_hex(5)[:9]}"


class WebSocketConnection(ClientConnection):
    """ClientConnection over a Starlette WebSocket."""

    def __init__(self, websocket: WebSocket, client_id: str, role: Role, display_name: str):
        super().__init__(client_id, role, display_name)
        self._ws = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._ws.application_state == WebSocketState.CONNECTED
            and self._ws.client_state == WebSocketState.CONNECTED
        )

    def mark_closed(self) -> None:
        self._closed = True

    async def send(self, frame: OutboundFrame) -> None:
        if not self.is_open:
            raise TransportFailure(f"connection {self.connection_id} is closed")
        try:
            await self._ws.send_text(codec.encode(frame))
        except Exception as e:
            self._closed = True
            raise TransportFailure(str(e)) from e

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._closed:
            return
        self._closed = True
        if self._ws.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self._ws.close(code=code, reason=reason)
        except RuntimeError as e:
            # Peer already gone; nothing left to close
            logger.debug("websocket_close_ignored", client_id=self.client_id, error=str(e))


async def _pump(chat: ChatRouter, conn: WebSocketConnection, websocket: WebSocket) -> None:
    """Process this connection's frames one at a time until it closes."""
    try:
        while conn.is_open:
            raw = await websocket.receive_text()
            await chat.handle_raw(conn, raw)
    except WebSocketDisconnect as e:
        logger.info("websocket_disconnected", client_id=conn.client_id, code=e.code)
    finally:
        conn.mark_closed()
        await chat.disconnect(conn)


def create_ws_router(chat: ChatRouter, config: AppConfig) -> APIRouter:
    router = APIRouter()
    admin_keys = set(config.server.admin_api_keys)

    @router.websocket("/ws")
    async def visitor_socket(
        websocket: WebSocket,
        client_id: Optional[str] = Query(default=None, alias="clientId"),
    ) -> None:
        await websocket.accept()
        if not client_id or not CLIENT_ID_PATTERN.match(client_id):
            client_id = new_client_id()
        conn = WebSocketConnection(websocket, client_id, Role.VISITOR, config.chat.default_visitor_name)
        logger.info("visitor_connected", client_id=client_id, connection_id=conn.connection_id)
        await chat.connect(conn)
        await _pump(chat, conn, websocket)

    @router.websocket("/ws/admin")
    async def admin_socket(
        websocket: WebSocket,
        api_key: Optional[str] = Query(default=None, alias="apiKey"),
    ) -> None:
        key = websocket.headers.get("x-api-key") or api_key
        if not key or key not in admin_keys:
            logger.warning("admin_socket_rejected")
            await websocket.close(code=POLICY_VIOLATION)
            return
        await websocket.accept()
        conn = WebSocketConnection(websocket, f"admin_{secrets.token_hex(4)}", Role.ADMIN, "Admin")
        logger.info("admin_connected", connection_id=conn.connection_id)
        await chat.connect(conn)
        await _pump(chat, conn, websocket)

    return router
