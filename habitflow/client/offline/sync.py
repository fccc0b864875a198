import asyncio
import logging
import os
from typing import Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .cache import HabitCache, SyncTrigger
from .connectivity import ConnectivityMonitor

SYNC_INTERVAL = int(os.getenv("HABITFLOW_SYNC_INTERVAL", "300"))
PROBE_INTERVAL = int(os.getenv("HABITFLOW_PROBE_INTERVAL", "30"))

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Feeds timer and reconnect triggers into ``HabitCache.sync``.

    Both producers share the cache's single-flight guard, so a trigger that
    fires while a drain is running is simply dropped.
    """

    def __init__(
        self,
        cache: HabitCache,
        connectivity: ConnectivityMonitor,
        sync_interval: int = SYNC_INTERVAL,
        probe_interval: int = PROBE_INTERVAL,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.cache = cache
        self.connectivity = connectivity
        self.sync_interval = sync_interval
        self.probe_interval = probe_interval
        self.scheduler = scheduler or AsyncIOScheduler()
        self._tasks: Set[asyncio.Task] = set()

    def start(self):
        self.scheduler.add_job(
            self._on_timer,
            IntervalTrigger(seconds=self.sync_interval),
            id="habitflow_sync",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        if self.connectivity.api is not None:
            self.scheduler.add_job(
                self.connectivity.probe,
                IntervalTrigger(seconds=self.probe_interval),
                id="habitflow_probe",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
        self.connectivity.add_listener(self._on_connectivity_change)
        self.scheduler.start()
        logger.info(f"Sync scheduler started: sync every {self.sync_interval}s, probe every {self.probe_interval}s")

    def shutdown(self):
        self.connectivity.remove_listener(self._on_connectivity_change)
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Sync scheduler stopped")

    async def _on_timer(self):
        if not self.connectivity.is_online:
            return
        await self.cache.sync(SyncTrigger.TIMER)

    def _on_connectivity_change(self, online: bool):
        if online:
            self.request_sync(SyncTrigger.RECONNECT)

    def request_sync(self, reason: SyncTrigger = SyncTrigger.MANUAL) -> asyncio.Task:
        """Schedule a sync on the running loop without waiting for it."""
        task = asyncio.get_running_loop().create_task(self.cache.sync(reason))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self):
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
