from __future__ import annotations

import copy
from collections import defaultdict
from datetime import datetime
from typing import Any, Iterable, Sequence
from uuid import uuid4

from frontsync.kernel.errors import PersistenceError
from frontsync.storage.base import ChildCollection, Relation, ResourceType, StoredRecord
from frontsync.sync.runs import SyncRun, SyncRunStatus
from tests.support.clock import FakeClock


class FakeSyncStore:
    """
    In-memory `SyncStore`.

    Every write stamps `updated_at` from the clock, like a database
    timestamp column would. `fail_on` makes writes for chosen external ids
    raise `PersistenceError`.
    """

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock or FakeClock.fixed()
        self.records: dict[ResourceType, dict[str, StoredRecord]] = defaultdict(dict)
        self.associations: dict[Relation, set[tuple[str, str]]] = defaultdict(set)
        self.children: dict[ChildCollection, dict[str, list[dict[str, Any]]]] = defaultdict(dict)
        self.runs: dict[str, SyncRun] = {}
        self.fail_on: set[str] = set()
        self.creates = 0
        self.updates = 0

    # -- helpers ---------------------------------------------------------------

    def seed(
        self,
        resource: ResourceType,
        front_id: str,
        attributes: dict[str, Any] | None = None,
        updated_at: datetime | None = None,
    ) -> StoredRecord:
        record = StoredRecord(
            id=str(uuid4()),
            front_id=front_id,
            updated_at=updated_at or self.clock(),
            attributes=dict(attributes or {}),
        )
        self.records[resource][front_id] = record
        return copy.deepcopy(record)

    def get(self, resource: ResourceType, front_id: str) -> StoredRecord | None:
        return self.records[resource].get(front_id)

    def add_run(self, run: SyncRun) -> SyncRun:
        self.runs[run.id] = run
        return run

    # -- SyncStore -------------------------------------------------------------

    async def find(self, resource: ResourceType, front_id: str) -> StoredRecord | None:
        record = self.records[resource].get(front_id)
        return copy.deepcopy(record) if record is not None else None

    async def create(self, resource: ResourceType, front_id: str, attributes: dict[str, Any]) -> StoredRecord:
        if front_id in self.fail_on:
            raise PersistenceError(message="Validation failed: front_id is invalid")
        if front_id in self.records[resource]:
            raise PersistenceError(message="Validation failed: front_id has already been taken")
        self.creates += 1
        return self.seed(resource, front_id, copy.deepcopy(attributes))

    async def update(self, resource: ResourceType, record: StoredRecord, attributes: dict[str, Any]) -> StoredRecord:
        if record.front_id in self.fail_on:
            raise PersistenceError(message="Validation failed: record is invalid")
        stored = self.records[resource][record.front_id]
        stored.attributes.update(copy.deepcopy(attributes))
        stored.updated_at = self.clock()
        self.updates += 1
        return copy.deepcopy(stored)

    async def lookup_ids(self, resource: ResourceType) -> dict[str, str]:
        return {front_id: record.id for front_id, record in self.records[resource].items()}

    async def contact_ids_by_handle(self) -> dict[str, str]:
        return {
            record.get("handle"): record.id
            for record in self.records[ResourceType.CONTACTS].values()
            if record.get("handle")
        }

    async def find_contact_by_handle(self, handle: str) -> StoredRecord | None:
        contacts = list(self.records[ResourceType.CONTACTS].values())
        for record in contacts:
            if record.get("handle") == handle:
                return copy.deepcopy(record)
        for record in contacts:
            if {"source": "email", "handle": handle} in (record.get("handles") or []):
                return copy.deepcopy(record)
        return None

    async def list_front_ids(self, resource: ResourceType) -> list[str]:
        return list(self.records[resource])

    async def fetch_associations(self, relation: Relation, parent_ids: Sequence[str]) -> dict[str, set[str]]:
        wanted = set(parent_ids)
        grouped: dict[str, set[str]] = {}
        for parent_id, related_id in self.associations[relation]:
            if parent_id in wanted:
                grouped.setdefault(parent_id, set()).add(related_id)
        return grouped

    async def insert_associations(self, relation: Relation, pairs: Iterable[tuple[str, str]]) -> int:
        before = len(self.associations[relation])
        self.associations[relation].update(pairs)
        return len(self.associations[relation]) - before

    async def delete_associations(self, relation: Relation, pairs: Iterable[tuple[str, str]]) -> int:
        removed = 0
        for pair in pairs:
            if pair in self.associations[relation]:
                self.associations[relation].discard(pair)
                removed += 1
        return removed

    async def replace_children(self, collection: ChildCollection, parent_id: str, rows: list[dict[str, Any]]) -> int:
        self.children[collection][parent_id] = copy.deepcopy(rows)
        return len(rows)

    async def save_sync_run(self, run: SyncRun) -> None:
        self.runs[run.id] = run.model_copy(deep=True)

    async def list_sync_runs(
        self,
        since: datetime | None = None,
        statuses: Sequence[SyncRunStatus] | None = None,
    ) -> list[SyncRun]:
        runs = [
            run for run in self.runs.values()
            if (since is None or run.started_at >= since) and (not statuses or run.status in statuses)
        ]
        return sorted(runs, key=lambda run: run.started_at)

    async def latest_sync_run(
        self,
        resource_type: str | None = None,
        sync_type: str | None = None,
        statuses: Sequence[SyncRunStatus] | None = None,
    ) -> SyncRun | None:
        runs = [
            run for run in await self.list_sync_runs(statuses=statuses)
            if (resource_type is None or run.resource_type == resource_type)
            and (sync_type is None or run.sync_type == sync_type)
        ]
        return runs[-1] if runs else None

