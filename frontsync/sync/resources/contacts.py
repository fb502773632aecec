"""
Contact sync with email deduplication.

Front can hand out a fresh contact id for a person we already store under
another id. Before creating a contact, its email handles are matched
against stored contacts; a hit merges the handles into the existing row and
records the new external id on it instead of creating a duplicate.
"""

from __future__ import annotations

from typing import Any, Iterable

import structlog

from frontsync.storage.base import ResourceType, StoredRecord
from frontsync.sync.resources.base import ResourceRegistry, ResourceSync
from frontsync.sync.stats import UpsertOutcome

logger = structlog.get_logger()


def email_handles(remote: dict[str, Any]) -> list[str]:
    """Email handles of a contact payload, including the legacy `handle` field."""
    emails: list[str] = []
    for entry in remote.get("handles") or []:
        if isinstance(entry, dict) and entry.get("source") == "email" and entry.get("handle"):
            emails.append(entry["handle"])
    legacy = remote.get("handle")
    if isinstance(legacy, str) and "@" in legacy:
        emails.append(legacy)
    return list(dict.fromkeys(emails))


def merge_handles(*collections: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Concatenate handle lists, dropping repeats of the same (source, handle)."""
    merged: list[dict[str, Any]] = []
    seen: set[tuple[Any, Any]] = set()
    for collection in collections:
        for entry in collection or []:
            if not isinstance(entry, dict):
                continue
            key = (entry.get("source"), entry.get("handle"))
            if key in seen:
                continue
            seen.add(key)
            merged.append(entry)
    return merged


def primary_handle(remote: dict[str, Any]) -> str | None:
    if remote.get("handle"):
        return remote["handle"]
    emails = email_handles(remote)
    if emails:
        return emails[0]
    for entry in remote.get("handles") or []:
        if isinstance(entry, dict) and entry.get("handle"):
            return entry["handle"]
    return None


@ResourceRegistry.register
class ContactSync(ResourceSync):
    resource_type = ResourceType.CONTACTS
    path = "/contacts"

    def transform(self, remote: dict[str, Any], existing: StoredRecord | None) -> dict[str, Any]:
        attributes = {
            "name": remote.get("name"),
            "handle": primary_handle(remote),
            "role": remote.get("role"),
            "handles": merge_handles(remote.get("handles") or []),
            "api_links": remote.get("_links") or {},
        }
        if existing is not None and existing.get("merged_front_ids"):
            # keep handles collected from merged duplicates
            attributes["handles"] = merge_handles(attributes["handles"], existing.get("handles") or [])
        return attributes

    async def sync_item(self, remote: dict[str, Any]) -> UpsertOutcome | None:
        front_id = remote.get("id")
        duplicate: StoredRecord | None = None
        try:
            if front_id and await self.store.find(ResourceType.CONTACTS, front_id) is None:
                duplicate = await self.find_duplicate(remote)
        except Exception as exc:
            logger.error("Contact lookup failed", front_id=front_id, error=str(exc))
            outcome = UpsertOutcome.failed(f"Exception looking up contact {front_id}: {exc}")
            self.stats.record(outcome)
            return outcome

        if duplicate is not None and duplicate.front_id != front_id:
            outcome = await self.merge_duplicate(duplicate, front_id, remote)
            self.stats.record(outcome)
            return outcome
        return await super().sync_item(remote)

    async def find_duplicate(self, remote: dict[str, Any]) -> StoredRecord | None:
        for email in email_handles(remote):
            match = await self.store.find_contact_by_handle(email)
            if match is not None:
                return match
        return None

    async def merge_duplicate(self, existing: StoredRecord, front_id: str, remote: dict[str, Any]) -> UpsertOutcome:
        merged_ids = list(existing.get("merged_front_ids") or [])
        if front_id not in merged_ids:
            merged_ids.append(front_id)

        attributes = {
            "handles": merge_handles(existing.get("handles") or [], remote.get("handles") or []),
            "merged_front_ids": merged_ids,
        }
        if not existing.get("name") and remote.get("name"):
            attributes["name"] = remote["name"]

        logger.info(
            "Merging duplicate contact",
            front_id=front_id,
            into=existing.front_id,
        )
        return await self.upserts.merge_into(ResourceType.CONTACTS, existing, attributes)
