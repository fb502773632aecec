"""
Upsert Engine

Create-or-update keyed on the Front external id, gated by last-writer-wins on
the remote `updated_at`: a local record modified at or after the remote
timestamp is left alone. Failures become `failed` outcomes; they never
propagate to the caller.
"""

from __future__ import annotations

from typing import Any, Callable

import structlog

from frontsync.kernel.errors import PersistenceError
from frontsync.kernel.time import coerce_utc, parse_remote_timestamp
from frontsync.storage.base import ResourceType, StoredRecord, SyncStore
from frontsync.sync.stats import UpsertOutcome, UpsertStatus

logger = structlog.get_logger()

Transform = Callable[[dict[str, Any], StoredRecord | None], dict[str, Any]]


def default_transform(remote: dict[str, Any], existing: StoredRecord | None = None) -> dict[str, Any]:
    """Copy every remote field except the id and hypermedia links."""
    return {key: value for key, value in remote.items() if key not in ("id", "_links")}


def is_unchanged(existing: StoredRecord, attributes: dict[str, Any]) -> bool:
    return all(existing.attributes.get(key) == value for key, value in attributes.items())


class UpsertEngine:
    def __init__(self, store: SyncStore) -> None:
        self._store = store

    async def upsert(
        self,
        resource: ResourceType,
        front_id: str,
        remote: dict[str, Any],
        transform: Transform = default_transform,
    ) -> UpsertOutcome:
        existing: StoredRecord | None = None
        try:
            existing = await self._store.find(resource, front_id)

            if existing is None:
                attributes = transform(remote, None)
                record = await self._store.create(resource, front_id, attributes)
                return UpsertOutcome(status=UpsertStatus.CREATED, record=record)

            remote_updated_at = parse_remote_timestamp(remote.get("updated_at"))
            if (
                existing.updated_at is not None
                and remote_updated_at is not None
                and coerce_utc(existing.updated_at) >= remote_updated_at
            ):
                logger.debug(
                    "Skipping upsert, local data is newer",
                    resource=resource.value,
                    front_id=front_id,
                )
                return UpsertOutcome(status=UpsertStatus.SKIPPED, record=existing)

            return await self._write_update(resource, existing, transform(remote, existing))

        except PersistenceError as exc:
            action = "Update" if existing is not None else "Creation"
            message = f"{action} failed for {resource.value} {front_id}: {exc.message}"
        except Exception as exc:
            message = f"Exception upserting {resource.value} {front_id}: {exc}"

        logger.error("Upsert failed", resource=resource.value, front_id=front_id, error=message)
        return UpsertOutcome.failed(message)

    async def merge_into(
        self,
        resource: ResourceType,
        existing: StoredRecord,
        attributes: dict[str, Any],
    ) -> UpsertOutcome:
        """Update a record found by something other than its own external id."""
        try:
            return await self._write_update(resource, existing, attributes)
        except PersistenceError as exc:
            message = f"Update failed for {resource.value} {existing.front_id}: {exc.message}"
        except Exception as exc:
            message = f"Exception upserting {resource.value} {existing.front_id}: {exc}"

        logger.error("Merge failed", resource=resource.value, front_id=existing.front_id, error=message)
        return UpsertOutcome.failed(message)

    async def _write_update(
        self,
        resource: ResourceType,
        existing: StoredRecord,
        attributes: dict[str, Any],
    ) -> UpsertOutcome:
        if is_unchanged(existing, attributes):
            return UpsertOutcome(status=UpsertStatus.SKIPPED, record=existing)
        record = await self._store.update(resource, existing, attributes)
        return UpsertOutcome(status=UpsertStatus.UPDATED, record=record)
