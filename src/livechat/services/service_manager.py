"""Service lifecycle manager."""

from __future__ import annotations

from livechat.log import get_logger
from livechat.services.base import Service

logger = get_logger(__name__)


class ServiceManager:
    """Starts services in registration order and stops them in reverse."""

    def __init__(self, *services: Service):
        self._services: list[Service] = list(services)
        self._started: list[Service] = []

    def get(self, name: str) -> Service | None:
        for service in self._services:
            if service.service_name == name:
                return service
        return None

    async def start_all(self) -> None:
        """Start every service; a failure stops the ones already running and re-raises."""
        for service in self._services:
            try:
                await service.start()
            except Exception as e:
                logger.error("service_start_failed", service=service.service_name, error=str(e))
                await self.stop_all()
                raise
            self._started.append(service)
        logger.info("all_services_started", services=[s.service_name for s in self._started])

    async def stop_all(self) -> None:
        """Stop started services gracefully, newest first."""
        while self._started:
            service = self._started.pop()
            try:
                await service.stop()
            except Exception as e:
                logger.error("service_stop_error", service=service.service_name, error=str(e))
        logger.info("all_services_stopped")

    async def health_check_all(self) -> dict[str, bool]:
        """Check health of all services."""
        return {s.service_name: await s.health_check() for s in self._services}
