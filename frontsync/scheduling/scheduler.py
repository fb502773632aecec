"""
Sync Scheduler

Decides which resource syncs are due and runs them through the orchestrator.
A periodic APScheduler tick calls `run_due()`; each tick walks the resources
in priority order and runs every (resource, sync type) pair whose interval
has elapsed since its last successful run.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from frontsync.config import Settings, get_settings
from frontsync.kernel.time import Clock, isoformat_z, utc_now
from frontsync.monitoring.health import HealthMonitor
from frontsync.storage.base import ResourceType, SyncStore
from frontsync.sync.orchestrator import SyncOrchestrator
from frontsync.sync.runs import SUCCESSFUL_STATUSES, SyncType
from frontsync.sync.stats import SyncStats

logger = structlog.get_logger()

SYNC_INTERVALS: dict[ResourceType, dict[SyncType, timedelta]] = {
    ResourceType.CONTACTS: {SyncType.FULL: timedelta(hours=1)},
    ResourceType.CONVERSATIONS: {
        SyncType.FULL: timedelta(hours=24),
        SyncType.INCREMENTAL: timedelta(minutes=15),
    },
    ResourceType.MESSAGES: {SyncType.INCREMENTAL: timedelta(hours=1)},
    ResourceType.TAGS: {SyncType.FULL: timedelta(hours=24)},
    ResourceType.INBOXES: {SyncType.FULL: timedelta(hours=24)},
    ResourceType.TEAMMATES: {SyncType.FULL: timedelta(hours=24)},
}

SYNC_PRIORITY = (
    ResourceType.TAGS,
    ResourceType.INBOXES,
    ResourceType.TEAMMATES,
    ResourceType.CONTACTS,
    ResourceType.CONVERSATIONS,
    ResourceType.MESSAGES,
)

TICK_JOB_ID = "front_sync_tick"


@dataclass
class PlannedSync:
    resource_type: ResourceType
    sync_type: SyncType
    since: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_type": self.resource_type.value,
            "sync_type": self.sync_type.value,
            "since": isoformat_z(self.since) if self.since else None,
        }


class SyncScheduler:
    """
    Interval scheduling for Front resource syncs.

    Example usage:
        scheduler = SyncScheduler(orchestrator, store, monitor)
        await scheduler.start()
        ...
        await scheduler.shutdown()
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        store: SyncStore,
        monitor: HealthMonitor,
        *,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.monitor = monitor
        self.settings = settings or get_settings()
        self.clock = clock
        self._scheduler = AsyncIOScheduler()

    async def last_sync_time(self, resource_type: ResourceType, sync_type: SyncType) -> datetime | None:
        run = await self.store.latest_sync_run(
            resource_type=resource_type.value,
            sync_type=sync_type.value,
            statuses=SUCCESSFUL_STATUSES,
        )
        return run.started_at if run is not None else None

    async def incremental_since(self, resource_type: ResourceType) -> datetime:
        run = await self.store.latest_sync_run(resource_type=resource_type.value, statuses=SUCCESSFUL_STATUSES)
        if run is not None and run.completed_at is not None:
            return run.completed_at
        return self.clock() - timedelta(hours=self.settings.incremental_lookback_hours)

    async def is_due(self, resource_type: ResourceType, sync_type: SyncType, interval: timedelta) -> bool:
        last_sync = await self.last_sync_time(resource_type, sync_type)
        if last_sync is None:
            logger.debug("Sync due, no previous run", resource=resource_type.value, sync_type=sync_type.value)
            return True
        elapsed = self.clock() - last_sync
        due = elapsed >= interval
        logger.debug(
            "Checked sync interval",
            resource=resource_type.value,
            sync_type=sync_type.value,
            elapsed_seconds=round(elapsed.total_seconds()),
            interval_seconds=interval.total_seconds(),
            due=due,
        )
        return due

    async def plan(self, force: bool = False) -> list[PlannedSync]:
        """Due syncs in priority order; nothing is planned while the circuit is open."""
        if not await self.monitor.can_execute():
            logger.info("Circuit breaker open, skipping sync scheduling")
            return []

        planned: list[PlannedSync] = []
        for resource_type in SYNC_PRIORITY:
            for sync_type, interval in SYNC_INTERVALS.get(resource_type, {}).items():
                if not force and not await self.is_due(resource_type, sync_type, interval):
                    continue
                since = await self.incremental_since(resource_type) if sync_type == SyncType.INCREMENTAL else None
                planned.append(PlannedSync(resource_type, sync_type, since))

        logger.info("Planned syncs", count=len(planned), syncs=[p.to_dict() for p in planned], force=force)
        return planned

    async def run_due(self, force: bool = False) -> dict[str, SyncStats]:
        results: dict[str, SyncStats] = {}
        for planned in await self.plan(force=force):
            key = f"{planned.resource_type.value}:{planned.sync_type.value}"
            try:
                results[key] = await self.orchestrator.sync_resource(planned.resource_type, since=planned.since)
            except Exception as exc:
                logger.error("Scheduled sync failed", sync=key, error=str(exc), exc_info=True)
        return results

    async def start(self) -> None:
        """Start the periodic tick."""
        if self._scheduler.running:
            return
        self._scheduler.add_job(
            self.run_due,
            trigger=IntervalTrigger(seconds=self.settings.scheduler_tick_seconds),
            id=TICK_JOB_ID,
            name="Front sync tick",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            next_run_time=self.clock(),
        )
        self._scheduler.start()
        logger.info("Sync scheduler started", tick_seconds=self.settings.scheduler_tick_seconds)

    async def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=True)
            logger.info("Sync scheduler shutdown")

    def list_scheduled_jobs(self) -> list[dict[str, Any]]:
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in self._scheduler.get_jobs()
        ]
