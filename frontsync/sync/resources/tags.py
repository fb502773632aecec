"""
Tag sync.

Runs in two passes because a child tag can arrive before its parent: the
first pass upserts every tag with the parent link deferred, the second pass
resolves `parent_tag_id` once all tags exist locally.
"""

from __future__ import annotations

import re
from typing import Any

import structlog

from frontsync.kernel.errors import PersistenceError
from frontsync.storage.base import ResourceType, StoredRecord
from frontsync.sync.resources.base import ResourceRegistry, ResourceSync
from frontsync.sync.stats import UpsertOutcome

logger = structlog.get_logger()

_PARENT_TAG_RE = re.compile(r"/tags/(tag_\w+)")


def extract_parent_tag_id(remote: dict[str, Any]) -> str | None:
    parent = remote.get("parent_tag_id")
    if parent:
        return parent
    related = (remote.get("_links") or {}).get("related") or {}
    match = _PARENT_TAG_RE.search(related.get("parent_tag") or "")
    return match.group(1) if match else None


@ResourceRegistry.register
class TagSync(ResourceSync):
    resource_type = ResourceType.TAGS
    path = "/tags"

    def __init__(self, context) -> None:
        super().__init__(context)
        # child local id -> parent external id, filled by the first pass
        self._pending_parents: dict[str, str | None] = {}

    def transform(self, remote: dict[str, Any], existing: StoredRecord | None) -> dict[str, Any]:
        # parent_tag_id is left out on purpose; the second pass owns it.
        return {
            "name": remote.get("name"),
            "highlight": remote.get("highlight"),
            "description": remote.get("description"),
            "is_private": bool(remote.get("is_private", False)),
            "is_visible_in_conversation_lists": bool(remote.get("is_visible_in_conversation_lists", False)),
            "created_at_timestamp": remote.get("created_at"),
            "updated_at_timestamp": remote.get("updated_at"),
            "api_links": remote.get("_links") or {},
        }

    async def sync_item(self, remote: dict[str, Any]) -> UpsertOutcome | None:
        outcome = await super().sync_item(remote)
        if outcome is not None and outcome.record is not None:
            self._pending_parents[outcome.record.id] = extract_parent_tag_id(remote)
        return outcome

    async def finish(self) -> None:
        await self.link_parents()

    async def link_parents(self) -> int:
        """Second pass: point each tag at its parent's local id."""
        if not self._pending_parents:
            return 0

        tag_ids = await self.store.lookup_ids(ResourceType.TAGS)
        linked = 0
        for front_id, local_id in tag_ids.items():
            if local_id not in self._pending_parents:
                continue
            parent_front_id = self._pending_parents[local_id]
            parent_local_id = tag_ids.get(parent_front_id) if parent_front_id else None
            if parent_front_id and parent_local_id is None:
                logger.warning("Parent tag not found locally", tag=front_id, parent=parent_front_id)

            record = await self.store.find(ResourceType.TAGS, front_id)
            if record is None or record.get("parent_tag_id") == parent_local_id:
                continue
            try:
                await self.store.update(ResourceType.TAGS, record, {"parent_tag_id": parent_local_id})
                linked += 1
            except PersistenceError as exc:
                self.stats.record_failure(f"Parent link failed for tag {front_id}: {exc.message}")

        logger.info("Linked tag parents", linked=linked)
        return linked
