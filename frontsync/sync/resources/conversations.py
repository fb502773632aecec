"""
Conversation Sync

Upserts conversations and reconciles their tag and inbox associations.
Assignee, recipient, tag and inbox references are resolved against lookup
caches loaded once per run, so a batch costs one association read and one
bulk write per relation.

Full syncs walk `/conversations`; incremental syncs re-fetch only the
conversation ids produced by change detection.
"""

from __future__ import annotations

import re
import time
from datetime import datetime
from typing import Any

import structlog

from frontsync.kernel.errors import FrontSyncError
from frontsync.storage.base import Relation, ResourceType, StoredRecord
from frontsync.sync.resources.base import ResourceRegistry, ResourceSync
from frontsync.sync.stats import SyncStats

logger = structlog.get_logger()

BATCH_SIZE = 100

_LAST_MESSAGE_RE = re.compile(r"/messages/(msg_\w+)")

CLOSED_STATUSES = frozenset({"archived", "deleted"})


def status_category(status: str | None) -> str:
    if status and status.lower() in CLOSED_STATUSES:
        return "closed"
    return "open"


def extract_last_message_id(links: dict[str, Any] | None) -> str | None:
    related = (links or {}).get("related") or {}
    match = _LAST_MESSAGE_RE.search(related.get("last_message") or "")
    return match.group(1) if match else None


def _related_ids(items: list[dict[str, Any]] | None) -> list[str]:
    return [item["id"] for item in items or [] if isinstance(item, dict) and item.get("id")]


@ResourceRegistry.register
class ConversationSync(ResourceSync):
    resource_type = ResourceType.CONVERSATIONS
    path = "/conversations"

    def __init__(self, context) -> None:
        super().__init__(context)
        self.teammate_ids: dict[str, str] = {}
        self.contact_ids: dict[str, str] = {}
        self.tag_ids: dict[str, str] = {}
        self.inbox_ids: dict[str, str] = {}
        self._caches_loaded = False

    async def prepare(self) -> None:
        await self.preload_caches()

    async def preload_caches(self) -> None:
        if self._caches_loaded:
            return
        self.teammate_ids = await self.store.lookup_ids(ResourceType.TEAMMATES)
        self.contact_ids = await self.store.contact_ids_by_handle()
        self.tag_ids = await self.store.lookup_ids(ResourceType.TAGS)
        self.inbox_ids = await self.store.lookup_ids(ResourceType.INBOXES)
        self._caches_loaded = True
        logger.info(
            "Preloaded lookup caches",
            teammates=len(self.teammate_ids),
            contacts=len(self.contact_ids),
            tags=len(self.tag_ids),
            inboxes=len(self.inbox_ids),
        )

    def transform(self, remote: dict[str, Any], existing: StoredRecord | None) -> dict[str, Any]:
        assignee = remote.get("assignee") or {}
        recipient = remote.get("recipient") or {}
        recipient_handle = recipient.get("handle")

        metadata: dict[str, Any] = {}
        for key in ("links", "scheduled_reminders", "last_message"):
            if remote.get(key):
                metadata[key] = remote[key]

        return {
            "subject": remote.get("subject"),
            "status": remote.get("status"),
            "status_category": status_category(remote.get("status")),
            "status_id": remote.get("status_id"),
            "is_private": bool(remote.get("is_private", False)),
            "created_at_timestamp": remote.get("created_at"),
            "waiting_since_timestamp": remote.get("waiting_since"),
            "custom_fields": remote.get("custom_fields") or {},
            "assignee_id": self.teammate_ids.get(assignee.get("id")) if assignee.get("id") else None,
            "recipient_contact_id": self.contact_ids.get(recipient_handle) if recipient_handle else None,
            "recipient_handle": recipient_handle,
            "recipient_role": recipient.get("role"),
            "last_message_front_id": extract_last_message_id(remote.get("_links")),
            "links": remote.get("links") or [],
            "scheduled_reminders": remote.get("scheduled_reminders") or [],
            "metadata": metadata,
            "api_links": remote.get("_links") or {},
        }

    async def sync_all(
        self,
        *,
        since: datetime | None = None,
        candidate_ids: list[str] | None = None,
        max_results: int | None = None,
    ) -> SyncStats:
        if since is None and candidate_ids is None:
            return await super().sync_all(max_results=max_results)

        started = time.monotonic()
        logger.info("Starting resource sync", resource=self.resource_type.value, sync_type="incremental")
        if since is not None:
            candidate_ids = await self.resolve_candidates(since, candidate_ids, max_results)
        elif max_results is not None:
            candidate_ids = candidate_ids[:max_results]

        if not candidate_ids:
            logger.info("No conversations with activity", since=since)
            return self.stats

        await self.sync_conversation_ids(candidate_ids)
        self.log_completion(started, candidates=len(candidate_ids))
        return self.stats

    async def sync_conversation_ids(self, conversation_ids: list[str]) -> SyncStats:
        """Fetch and sync specific conversations; fetch failures count as failed."""
        await self.preload_caches()

        batch: list[dict[str, Any]] = []
        for index, conversation_id in enumerate(conversation_ids, start=1):
            try:
                batch.append(await self.client.get_conversation(conversation_id))
            except Exception as exc:
                logger.error("Failed to fetch conversation", conversation_id=conversation_id, error=str(exc))
                self.stats.record_failure(f"Failed to fetch conversation {conversation_id}: {exc}")

            if len(batch) >= BATCH_SIZE:
                await self.process_batch(batch)
                batch = []
            if index % 100 == 0:
                logger.info("Synced conversations", processed=index, total=len(conversation_ids))

        if batch:
            await self.process_batch(batch)
        return self.stats

    async def process_page(self, items: list[dict[str, Any]]) -> None:
        for start in range(0, len(items), BATCH_SIZE):
            await self.process_batch(items[start : start + BATCH_SIZE])

    async def process_batch(self, conversations: list[dict[str, Any]]) -> None:
        desired_tags: dict[str, list[str]] = {}
        desired_inboxes: dict[str, list[str]] = {}

        for remote in conversations:
            outcome = await self.sync_item(remote)
            # skipped records still get their associations reconciled
            if outcome is None or outcome.record is None:
                continue
            desired_tags[outcome.record.id] = _related_ids(remote.get("tags"))
            desired_inboxes[outcome.record.id] = _related_ids(remote.get("inboxes"))

        if not desired_tags:
            return
        await self._reconcile(Relation.CONVERSATION_TAGS, desired_tags, self.tag_ids)
        await self._reconcile(Relation.CONVERSATION_INBOXES, desired_inboxes, self.inbox_ids)

    async def _reconcile(
        self,
        relation: Relation,
        desired: dict[str, list[str]],
        lookup: dict[str, str],
    ) -> None:
        try:
            await self.relationships.reconcile_many(relation, desired, lookup)
        except FrontSyncError as exc:
            logger.error("Failed to reconcile associations", relation=relation.value, error=exc.message)
            self.stats.add_error(f"Failed to reconcile {relation.value}: {exc.message}")
