"""
Sync Orchestrator

Runs resource syncs in dependency order and records one `SyncRun` per
invocation:

    teammates -> tags -> inboxes -> contacts -> conversations -> messages

Foundation resources always sync in full. With `since`, change detection
runs once and the conversation and message phases only touch the detected
conversations. A failing phase is recorded and the remaining phases still
run.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Awaitable, Callable

import structlog

from frontsync.client.front import FrontClient
from frontsync.config import Settings, get_settings
from frontsync.kernel.time import Clock, isoformat_z, utc_now
from frontsync.monitoring.health import HealthMonitor
from frontsync.storage.base import ResourceType, SyncStore
from frontsync.sync.events import ChangeSet, EventChangeDetector
from frontsync.sync.resources import ResourceRegistry, SyncContext
from frontsync.sync.resources.conversations import ConversationSync
from frontsync.sync.resources.messages import MessageSync
from frontsync.sync.runs import SyncRun, SyncType
from frontsync.sync.stats import SyncStats

logger = structlog.get_logger()

SYNC_ORDER = (
    ResourceType.TEAMMATES,
    ResourceType.TAGS,
    ResourceType.INBOXES,
    ResourceType.CONTACTS,
    ResourceType.CONVERSATIONS,
    ResourceType.MESSAGES,
)

EVENT_DRIVEN_RESOURCES = frozenset({ResourceType.CONVERSATIONS, ResourceType.MESSAGES})

ALL_RESOURCES = "all"

RunBody = Callable[[SyncRun], Awaitable[SyncStats]]


class SyncOrchestrator:
    def __init__(
        self,
        client: FrontClient,
        store: SyncStore,
        monitor: HealthMonitor,
        *,
        settings: Settings | None = None,
        detector: EventChangeDetector | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.client = client
        self.store = store
        self.monitor = monitor
        self.settings = settings or get_settings()
        self.clock = clock
        self.detector = detector or EventChangeDetector(
            client.fetcher,
            page_limit=self.settings.front_page_limit,
            new_conversation_page_size=self.settings.new_conversation_page_size,
            new_conversation_max_pages=self.settings.new_conversation_max_pages,
        )

    def _context(self) -> SyncContext:
        return SyncContext.build(
            self.client,
            self.store,
            self.detector,
            max_events=self.settings.event_max_events,
        )

    # =========================================================================
    # Sync entry points
    # =========================================================================

    async def sync_all(self, since: datetime | None = None, max_results: int | None = None) -> SyncStats:
        """Sync every resource in dependency order."""
        sync_type = SyncType.INCREMENTAL if since else SyncType.FULL

        async def body(run: SyncRun) -> SyncStats:
            stats = SyncStats()
            failures: list[str] = []
            candidate_ids: list[str] | None = None

            if since is not None:
                try:
                    candidate_ids = await self._detect_changes(run, since)
                except Exception as exc:
                    self._phase_failed("change_detection", exc, stats, failures)
                    candidate_ids = []

            for resource_type in SYNC_ORDER:
                try:
                    stats.merge(await self._sync_phase(resource_type, since, candidate_ids, max_results))
                except Exception as exc:
                    self._phase_failed(resource_type.value, exc, stats, failures)

            run.metadata["phase_failures"] = list(failures)
            return stats

        return await self._execute(ALL_RESOURCES, sync_type, body)

    async def sync_resource(
        self,
        resource_type: ResourceType | str,
        since: datetime | None = None,
        max_results: int | None = None,
    ) -> SyncStats:
        """Sync a single resource; `since` only narrows conversations and messages."""
        resource_type = ResourceType(resource_type)
        incremental = since is not None and resource_type in EVENT_DRIVEN_RESOURCES
        sync_type = SyncType.INCREMENTAL if incremental else SyncType.FULL

        async def body(run: SyncRun) -> SyncStats:
            candidate_ids = await self._detect_changes(run, since) if incremental else None
            return await self._sync_phase(resource_type, since, candidate_ids, max_results)

        return await self._execute(resource_type.value, sync_type, body)

    async def sync_conversation_ids(self, conversation_ids: list[str]) -> SyncStats:
        async def body(run: SyncRun) -> SyncStats:
            run.metadata["conversation_count"] = len(conversation_ids)
            sync = ConversationSync(self._context())
            return await sync.sync_conversation_ids(list(conversation_ids))

        return await self._execute(ResourceType.CONVERSATIONS.value, SyncType.TARGETED, body)

    async def sync_messages_for_conversations(self, conversation_ids: list[str]) -> SyncStats:
        async def body(run: SyncRun) -> SyncStats:
            run.metadata["conversation_count"] = len(conversation_ids)
            sync = MessageSync(self._context())
            return await sync.sync_for_conversations(list(conversation_ids))

        return await self._execute(ResourceType.MESSAGES.value, SyncType.TARGETED, body)

    async def incremental_sync(
        self,
        since: datetime,
        until: datetime | None = None,
        max_events: int | None = None,
    ) -> dict[str, Any]:
        """Change detection only: which conversations changed in the window."""
        change_set = await self.detector.incremental_sync(
            since,
            until,
            max_events=max_events if max_events is not None else self.settings.event_max_events,
        )
        return change_set.to_dict()

    async def _detect_changes(self, run: SyncRun, since: datetime) -> list[str]:
        change_set = await self.detector.incremental_sync(since, max_events=self.settings.event_max_events)
        run.metadata["change_detection"] = _change_detection_metadata(change_set)
        return change_set.conversation_ids

    async def _sync_phase(
        self,
        resource_type: ResourceType,
        since: datetime | None,
        candidate_ids: list[str] | None,
        max_results: int | None,
    ) -> SyncStats:
        logger.info("Starting sync phase", resource=resource_type.value)
        sync = ResourceRegistry.create(resource_type, self._context())
        if resource_type in EVENT_DRIVEN_RESOURCES:
            return await sync.sync_all(since=since, candidate_ids=candidate_ids, max_results=max_results)
        return await sync.sync_all()

    @staticmethod
    def _phase_failed(phase: str, exc: Exception, stats: SyncStats, failures: list[str]) -> None:
        message = f"{phase} sync failed: {exc}"
        logger.error("Sync phase failed", phase=phase, error=str(exc), exc_info=True)
        stats.add_error(message)
        failures.append(message)

    # =========================================================================
    # Run bookkeeping
    # =========================================================================

    async def _execute(self, resource_type: str, sync_type: SyncType, body: RunBody) -> SyncStats:
        run = SyncRun(resource_type=resource_type, sync_type=sync_type, started_at=self.clock())
        structlog.contextvars.bind_contextvars(sync_run_id=run.id)
        try:
            if not await self.monitor.can_execute():
                breaker = await self.monitor.circuit_breaker_status()
                run.mark_skipped("circuit_breaker_open", completed_at=self.clock())
                run.metadata["next_attempt_at"] = (
                    isoformat_z(breaker["next_attempt_at"]) if breaker.get("next_attempt_at") else None
                )
                await self.store.save_sync_run(run)
                logger.warning(
                    "Circuit breaker open, skipping sync",
                    resource=resource_type,
                    next_attempt_at=run.metadata["next_attempt_at"],
                )
                return SyncStats()

            await self.store.save_sync_run(run)
            logger.info("Sync run started", resource=resource_type, sync_type=sync_type.value)

            calls_before = self.client.api_calls
            response_ms_before = self.client.total_response_time_ms
            started = time.monotonic()

            stats = SyncStats()
            error: str | None = None
            try:
                stats = await body(run)
            except Exception as exc:
                error = f"{resource_type} sync failed: {exc}"
                logger.error("Sync run failed", resource=resource_type, error=str(exc), exc_info=True)

            api_calls = self.client.api_calls - calls_before
            response_ms = self.client.total_response_time_ms - response_ms_before
            run.metadata["api_calls"] = api_calls
            run.metadata["response_time_avg"] = round(response_ms / api_calls, 2) if api_calls else 0.0
            run.metadata["wall_time_seconds"] = round(time.monotonic() - started, 3)

            phase_failures = run.metadata.get("phase_failures") or []
            if error is not None:
                run.mark_error(error, stats, completed_at=self.clock())
            elif phase_failures:
                run.mark_error(phase_failures[0], stats, completed_at=self.clock())
            else:
                run.mark_completed(stats, completed_at=self.clock())
            if stats.errors_dropped:
                run.metadata["errors_dropped"] = stats.errors_dropped

            await self.store.save_sync_run(run)
            logger.info(
                "Sync run finished",
                resource=resource_type,
                status=run.status.value,
                created=stats.created,
                updated=stats.updated,
                skipped=stats.skipped,
                failed=stats.failed,
                api_calls=api_calls,
            )
            return stats
        finally:
            structlog.contextvars.unbind_contextvars("sync_run_id")

    # =========================================================================
    # Health surface
    # =========================================================================

    async def sync_status(self) -> dict[str, Any]:
        return await self.monitor.sync_status()

    async def health_metrics(self) -> dict[str, Any]:
        return await self.monitor.health_metrics()

    async def performance_stats(self) -> dict[str, Any]:
        return await self.monitor.performance_stats()

    async def circuit_breaker_status(self) -> dict[str, Any]:
        return await self.monitor.circuit_breaker_status()

    async def reset_circuit_breaker(self) -> None:
        await self.monitor.reset_circuit_breaker()

    async def generate_health_report(self) -> dict[str, Any]:
        return await self.monitor.generate_health_report()


def _change_detection_metadata(change_set: ChangeSet) -> dict[str, Any]:
    return {
        "conversations": len(change_set.conversation_ids),
        "active_count": change_set.active_count,
        "new_count": change_set.new_count,
        "events_processed": change_set.events_processed,
        "truncated": change_set.truncated,
        "duration": round(change_set.duration, 3),
    }
