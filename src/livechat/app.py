"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from livechat.config import AppConfig
from livechat.core.dedup import DedupCache
from livechat.core.presence import PresenceTracker
from livechat.core.registry import ConnectionRegistry
from livechat.core.router import ChatRouter
from livechat.errors import UnknownClient
from livechat.log import get_logger
from livechat.services.maintenance import MaintenanceService
from livechat.services.service_manager import ServiceManager
from livechat.storage.base import ThreadStore
from livechat.storage.database import Database
from livechat.storage.gateway import PersistenceGateway
from livechat.storage.json_store import JsonFileThreadStore
from livechat.storage.memory_store import MemoryThreadStore
from livechat.storage.sqlite_store import SqliteThreadStore
from livechat.transport.http import create_http_router
from livechat.transport.websocket import create_ws_router

logger = get_logger(__name__)


class ChatServerApp:
    """Top-level application orchestrator."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.store = self._create_store()
        self.gateway = PersistenceGateway(self.store)
        self.registry = ConnectionRegistry()
        self.presence = PresenceTracker(
            preview_length=config.chat.preview_length,
            default_name=config.chat.default_visitor_name,
        )
        self.dedup = DedupCache(config.chat.dedup_capacity, config.chat.dedup_evict_batch)
        self.router = ChatRouter(self.registry, self.gateway, self.presence, self.dedup, config.chat)
        self.maintenance = MaintenanceService(config.maintenance, self.router, self.gateway)
        self.service_manager = ServiceManager(self.gateway, self.maintenance)

    async def start(self) -> None:
        """Initialize and start all components."""
        # 1. Storage writer, then scheduled jobs
        await self.service_manager.start_all()

        # 2. Active-chat view from what is already persisted
        await self.router.load_presence()

        logger.info(
            "livechat_started",
            backend=self.config.storage.backend,
            host=self.config.server.host,
            port=self.config.server.port,
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        self.router.shutdown()
        for conn in self.registry.all_admins() + self.registry.visitors():
            await conn.close(1001, "Server shutting down")
        await self.service_manager.stop_all()
        logger.info("livechat_stopped")

    def create_http_app(self) -> FastAPI:
        """Build the FastAPI application serving both websocket and HTTP surfaces."""

        @asynccontextmanager
        async def lifespan(_: FastAPI) -> AsyncIterator[None]:
            await self.start()
            try:
                yield
            finally:
                await self.stop()

        app = FastAPI(title="livechat", lifespan=lifespan)
        if self.config.server.cors_origins:
            app.add_middleware(
                CORSMiddleware,
                allow_origins=self.config.server.cors_origins,
                allow_methods=["*"],
                allow_headers=["*"],
            )

        @app.exception_handler(UnknownClient)
        async def unknown_client_handler(_: Request, exc: UnknownClient) -> JSONResponse:
            return JSONResponse(status_code=404, content={"error": "Chat not found", "clientId": exc.client_id})

        @app.get("/health")
        async def health() -> dict:
            services = await self.service_manager.health_check_all()
            return {
                "status": "ok" if all(services.values()) else "degraded",
                "services": services,
                **self.registry.stats(),
            }

        app.include_router(create_ws_router(self.router, self.config))
        app.include_router(create_http_router(self.router, self.gateway, self.config.server))
        return app

    def _create_store(self) -> ThreadStore:
        storage = self.config.storage
        default_name = self.config.chat.default_visitor_name
        match storage.backend:
            case "memory":
                return MemoryThreadStore(default_name)
            case "json":
                return JsonFileThreadStore(storage.json_path, default_name)
            case "sqlite":
                return SqliteThreadStore(Database(storage.db_path), default_name)
            case _:
                raise ValueError(f"Unknown storage backend: {storage.backend}")


def create_app(config: AppConfig) -> FastAPI:
    return ChatServerApp(config).create_http_app()
