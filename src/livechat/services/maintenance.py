"""APScheduler-based housekeeping: ghost-thread purge and stale-visitor sweep."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from livechat.config import MaintenanceConfig
from livechat.core.router import ChatRouter
from livechat.log import get_logger
from livechat.services.base import Service
from livechat.storage.gateway import PersistenceGateway
from livechat.storage.models import to_iso

logger = get_logger(__name__)

# First ghost purge runs shortly after startup rather than a full interval later
_INITIAL_PURGE_DELAY = timedelta(seconds=5)


class MaintenanceService(Service):
    """Periodic jobs that keep the store and the registry tidy."""

    def __init__(self, config: MaintenanceConfig, chat: ChatRouter, gateway: PersistenceGateway):
        self._config = config
        self._chat = chat
        self._gateway = gateway
        self._scheduler = AsyncIOScheduler(timezone="UTC")

    @property
    def service_name(self) -> str:
        return "maintenance"

    async def start(self) -> None:
        if not self._config.enabled:
            logger.info("maintenance_disabled")
            return
        self._scheduler.add_job(
            self.purge_ghosts,
            trigger=IntervalTrigger(seconds=self._config.ghost_purge_interval_s),
            id="purge_ghosts",
            next_run_time=datetime.now(timezone.utc) + _INITIAL_PURGE_DELAY,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.add_job(
            self.sweep_stale,
            trigger=IntervalTrigger(seconds=self._config.stale_sweep_interval_s),
            id="sweep_stale",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.start()
        logger.info("maintenance_started", jobs=[j.id for j in self._scheduler.get_jobs()])

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("maintenance_stopped")

    async def health_check(self) -> bool:
        return not self._config.enabled or self._scheduler.running

    async def purge_ghosts(self) -> int:
        """Delete ghost threads older than the configured age."""
        cutoff = to_iso(datetime.now(timezone.utc) - timedelta(seconds=self._config.ghost_max_age_s))
        removed = await self._gateway.purge_ghosts(cutoff)
        if removed:
            logger.info("ghost_threads_purged", count=removed)
        return removed

    async def sweep_stale(self) -> int:
        closed = await self._chat.close_stale_visitors(self._config.stale_timeout_s)
        if closed:
            logger.info("stale_visitors_closed", count=closed)
        return closed
