"""
Resource Sync Base

Every resource sync has the same shape: page through the collection, transform
each item, upsert it. Subclasses provide the transform plus any
resource-specific hooks, and register themselves with `ResourceRegistry`
so the orchestrator can look them up by resource type.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar

import structlog

from frontsync.client.fetcher import PaginatedFetcher
from frontsync.client.front import FrontClient
from frontsync.storage.base import ResourceType, StoredRecord, SyncStore
from frontsync.sync.events import EventChangeDetector
from frontsync.sync.relationships import RelationshipDiffEngine
from frontsync.sync.stats import SyncStats, UpsertOutcome
from frontsync.sync.upsert import UpsertEngine

logger = structlog.get_logger()


@dataclass
class SyncContext:
    """Collaborators shared by every resource sync in one run."""

    client: FrontClient
    store: SyncStore
    upserts: UpsertEngine
    relationships: RelationshipDiffEngine
    detector: EventChangeDetector
    max_events: int = 1000

    @classmethod
    def build(
        cls,
        client: FrontClient,
        store: SyncStore,
        detector: EventChangeDetector | None = None,
        max_events: int = 1000,
    ) -> "SyncContext":
        return cls(
            client=client,
            store=store,
            upserts=UpsertEngine(store),
            relationships=RelationshipDiffEngine(store),
            detector=detector or EventChangeDetector(client.fetcher, page_limit=client.page_limit),
            max_events=max_events,
        )


class ResourceSync(ABC):
    """Fetch -> transform -> upsert for one resource type."""

    resource_type: ClassVar[ResourceType]
    path: ClassVar[str]

    def __init__(self, context: SyncContext) -> None:
        self.context = context
        self.client = context.client
        self.store = context.store
        self.upserts = context.upserts
        self.relationships = context.relationships
        self.stats = SyncStats()

    @property
    def fetcher(self) -> PaginatedFetcher:
        return self.client.fetcher

    def list_params(self) -> dict[str, Any]:
        return {"limit": self.client.page_limit}

    @abstractmethod
    def transform(self, remote: dict[str, Any], existing: StoredRecord | None) -> dict[str, Any]:
        """Map a remote payload onto local attributes."""

    async def prepare(self) -> None:
        """Hook run before any item is processed (cache preloading etc.)."""

    async def finish(self) -> None:
        """Hook run after every page has been processed."""

    async def sync_all(
        self,
        *,
        since: datetime | None = None,
        candidate_ids: list[str] | None = None,
        max_results: int | None = None,
    ) -> SyncStats:
        """Full paginated sync. `since`/`candidate_ids` only matter to event-aware resources."""
        started = time.monotonic()
        logger.info("Starting resource sync", resource=self.resource_type.value, sync_type="full")

        await self.prepare()
        fetched = await self.fetcher.for_each_page(
            self.path,
            self.process_page,
            self.list_params(),
            max_items=max_results,
        )
        await self.finish()

        self.log_completion(started, fetched=fetched)
        return self.stats

    async def resolve_candidates(
        self,
        since: datetime,
        candidate_ids: list[str] | None,
        max_results: int | None,
    ) -> list[str]:
        """Conversation ids for an incremental run, detected here when not handed in."""
        if candidate_ids is None:
            change_set = await self.context.detector.incremental_sync(since, max_events=self.context.max_events)
            candidate_ids = change_set.conversation_ids
        if max_results is not None and len(candidate_ids) > max_results:
            logger.info(
                "Limiting candidate conversations",
                resource=self.resource_type.value,
                found=len(candidate_ids),
                max_results=max_results,
            )
            candidate_ids = candidate_ids[:max_results]
        return list(candidate_ids)

    async def process_page(self, items: list[dict[str, Any]]) -> None:
        for remote in items:
            await self.sync_item(remote)

    async def sync_item(self, remote: dict[str, Any]) -> UpsertOutcome | None:
        front_id = remote.get("id")
        if not front_id:
            logger.warning("Skipping remote item without id", resource=self.resource_type.value)
            return None
        outcome = await self.upserts.upsert(self.resource_type, front_id, remote, self.transform)
        self.stats.record(outcome)
        return outcome

    def log_completion(self, started: float, **extra: Any) -> None:
        logger.info(
            "Resource sync completed",
            resource=self.resource_type.value,
            duration=round(time.monotonic() - started, 2),
            created=self.stats.created,
            updated=self.stats.updated,
            skipped=self.stats.skipped,
            failed=self.stats.failed,
            **extra,
        )
        if self.stats.errors:
            logger.warning(
                "Resource sync errors",
                resource=self.resource_type.value,
                errors="; ".join(self.stats.errors[:10]),
            )


class ResourceRegistry:
    """
    Registry of resource sync strategies.

    Used as a decorator:
        @ResourceRegistry.register
        class TagSync(ResourceSync):
            resource_type = ResourceType.TAGS
    """

    _syncs: dict[ResourceType, type[ResourceSync]] = {}

    @classmethod
    def register(cls, sync_class: type[ResourceSync]) -> type[ResourceSync]:
        resource_type = sync_class.__dict__.get("resource_type")
        if resource_type is None:
            raise ValueError(f"Resource sync {sync_class.__name__} must define resource_type")
        cls._syncs[resource_type] = sync_class
        logger.debug("Registered resource sync", resource=resource_type.value)
        return sync_class

    @classmethod
    def get(cls, resource_type: ResourceType) -> type[ResourceSync] | None:
        return cls._syncs.get(resource_type)

    @classmethod
    def create(cls, resource_type: ResourceType, context: SyncContext) -> ResourceSync:
        sync_class = cls.get(resource_type)
        if sync_class is None:
            raise KeyError(f"No resource sync registered for {resource_type.value}")
        return sync_class(context)

    @classmethod
    def registered(cls) -> list[ResourceType]:
        return list(cls._syncs)
