"""HTTP fallback for admins when the real-time channel is unavailable."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, ConfigDict, Field

from livechat.config import ServerConfig
from livechat.core.router import ChatRouter
from livechat.core.types import ThreadStatus
from livechat.errors import UnknownClient
from livechat.storage.gateway import PersistenceGateway


class ReplyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(alias="clientId")
    message: str


class StatusRequest(BaseModel):
    status: ThreadStatus


api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def create_http_router(
    chat: ChatRouter, gateway: PersistenceGateway, config: ServerConfig
) -> APIRouter:
    admin_keys = set(config.admin_api_keys)

    def verify_admin(api_key: str | None = Depends(api_key_header)) -> str:
        if not api_key or api_key not in admin_keys:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid API key",
            )
        return api_key

    router = APIRouter(prefix="/api", dependencies=[Depends(verify_admin)])

    @router.get("/active-chats")
    async def active_chats() -> list[dict]:
        return chat.presence.to_dicts()

    @router.get("/chat-history/{client_id}")
    async def chat_history(client_id: str, limit: int = Query(100, ge=1, le=1000)) -> list[dict]:
        return [m.to_dict() for m in await chat.history(client_id, limit)]

    @router.get("/chats/{client_id}")
    async def get_chat(client_id: str) -> dict:
        thread = await gateway.get_thread(client_id)
        if thread is None:
            raise UnknownClient(client_id)
        return thread.to_dict()

    @router.delete("/chats/{client_id}")
    async def delete_chat(client_id: str) -> dict:
        if not await chat.delete_chat(client_id):
            raise UnknownClient(client_id)
        return {"success": True, "message": "Chat deleted successfully"}

    @router.post("/chats/reply")
    async def reply(body: ReplyRequest) -> dict:
        if not body.client_id or not body.message.strip():
            raise HTTPException(status_code=400, detail="Client ID and message are required")
        result = await chat.send_admin_message(body.client_id, body.message)
        return {"success": result is not None, "status": result.value if result else None}

    @router.post("/chats/{client_id}/status")
    async def set_status(client_id: str, body: StatusRequest) -> dict:
        if not await chat.update_status(client_id, body.status):
            raise UnknownClient(client_id)
        return {"success": True, "message": f"Chat status updated to {body.status.value}"}

    @router.get("/chat/stats")
    async def stats() -> dict:
        threads = await gateway.list_threads()
        return {
            **chat.registry.stats(),
            "totalThreads": len(threads),
            "totalMessages": sum(len(t.messages) for t in threads),
        }

    return router
