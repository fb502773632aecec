"""
Message Sync

Messages are fetched per conversation. Each message is upserted, then its
recipients and attachment metadata are replaced wholesale. Attachment
payloads are never downloaded.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Union

import structlog

from frontsync.storage.base import ChildCollection, ResourceType, StoredRecord
from frontsync.sync.resources.base import ResourceRegistry, ResourceSync
from frontsync.sync.stats import SyncStats, UpsertOutcome

logger = structlog.get_logger()

CONVERSATION_SLICE = 100

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")


def sanitize_text(value: Any) -> Any:
    """Strip control characters (tab, newline and carriage return survive)."""
    if not isinstance(value, str):
        return value
    return _CONTROL_CHARS_RE.sub("", value)


@dataclass(frozen=True)
class ContactAuthor:
    id: str
    author_type = "contact"


@dataclass(frozen=True)
class TeammateAuthor:
    id: str
    author_type = "teammate"


@dataclass(frozen=True)
class UnknownAuthor:
    id = None
    author_type = None


Author = Union[ContactAuthor, TeammateAuthor, UnknownAuthor]


def resolve_author(
    author: dict[str, Any] | None,
    contact_ids: dict[str, str],
    teammate_ids: dict[str, str],
) -> Author:
    if not author:
        return UnknownAuthor()
    self_link = (author.get("_links") or {}).get("self") or ""
    front_id = author.get("id")
    if "contacts/" in self_link and front_id in contact_ids:
        return ContactAuthor(contact_ids[front_id])
    if "teammates/" in self_link and front_id in teammate_ids:
        return TeammateAuthor(teammate_ids[front_id])
    return UnknownAuthor()


def attachment_row(attachment: dict[str, Any]) -> dict[str, Any]:
    metadata = {
        "front_id": attachment.get("id"),
        "is_inline": attachment.get("is_inline"),
        "content_id": attachment.get("content_id"),
        "disposition": attachment.get("disposition"),
    }
    return {
        "filename": attachment.get("filename"),
        "url": attachment.get("url"),
        "content_type": attachment.get("content_type"),
        "size": attachment.get("size"),
        "metadata": {key: value for key, value in metadata.items() if value is not None},
    }


@ResourceRegistry.register
class MessageSync(ResourceSync):
    resource_type = ResourceType.MESSAGES
    path = "/messages"

    def __init__(self, context) -> None:
        super().__init__(context)
        self.contact_ids: dict[str, str] = {}
        self.teammate_ids: dict[str, str] = {}
        self._recipient_contacts: dict[str, str | None] = {}
        self._conversation: StoredRecord | None = None
        self._caches_loaded = False

    async def prepare(self) -> None:
        if self._caches_loaded:
            return
        self.contact_ids = await self.store.lookup_ids(ResourceType.CONTACTS)
        self.teammate_ids = await self.store.lookup_ids(ResourceType.TEAMMATES)
        self._caches_loaded = True

    def transform(self, remote: dict[str, Any], existing: StoredRecord | None) -> dict[str, Any]:
        author_data = remote.get("author") or {}
        author = resolve_author(author_data, self.contact_ids, self.teammate_ids)

        metadata: dict[str, Any] = {}
        for key in ("version", "thread_ref", "delivery_status"):
            if remote.get(key):
                metadata[key] = remote[key]
        if "is_system" in remote:
            metadata["is_system"] = remote["is_system"]

        return {
            "front_conversation_id": self._conversation.id if self._conversation else None,
            "message_uid": remote.get("message_uid"),
            "message_type": remote.get("type"),
            "is_inbound": bool(remote.get("is_inbound", False)),
            "is_draft": bool(remote.get("is_draft", False)),
            "subject": sanitize_text(remote.get("subject")),
            "blurb": sanitize_text(remote.get("blurb")),
            "body_html": sanitize_text(remote.get("body")),
            "body_plain": sanitize_text(remote.get("text")),
            "error_type": remote.get("error_type"),
            "draft_mode": remote.get("draft_mode"),
            "created_at_timestamp": remote.get("created_at"),
            "author_type": author.author_type,
            "author_id": author.id,
            "author_handle": sanitize_text(author_data.get("email") or author_data.get("handle")),
            "author_name": sanitize_text(author_data.get("name")),
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
        started = time.monotonic()
        if since is not None or candidate_ids is not None:
            logger.info("Starting resource sync", resource=self.resource_type.value, sync_type="incremental")
            if since is not None:
                conversation_ids = await self.resolve_candidates(since, candidate_ids, max_results)
            else:
                conversation_ids = candidate_ids[:max_results] if max_results is not None else candidate_ids
            if not conversation_ids:
                logger.info("No conversations with activity, skipping message sync", since=since)
                return self.stats
            await self.sync_for_conversations(conversation_ids)
        else:
            logger.info("Starting resource sync", resource=self.resource_type.value, sync_type="full")
            conversation_ids = await self.store.list_front_ids(ResourceType.CONVERSATIONS)
            if max_results is not None:
                conversation_ids = conversation_ids[:max_results]
            logger.info("Syncing messages for stored conversations", conversations=len(conversation_ids))
            for start in range(0, len(conversation_ids), CONVERSATION_SLICE):
                await self.sync_for_conversations(conversation_ids[start : start + CONVERSATION_SLICE])

        self.log_completion(started, conversations=len(conversation_ids))
        return self.stats

    async def sync_for_conversations(self, conversation_ids: list[str]) -> SyncStats:
        await self.prepare()
        for conversation_id in conversation_ids:
            await self.sync_conversation_messages(conversation_id)
        return self.stats

    async def sync_conversation_messages(self, conversation_id: str) -> None:
        conversation = await self.store.find(ResourceType.CONVERSATIONS, conversation_id)
        if conversation is None:
            logger.warning("Conversation not found locally", conversation_id=conversation_id)
            return

        try:
            messages = await self.client.list_conversation_messages(conversation_id)
        except Exception as exc:
            logger.error("Failed to fetch messages", conversation_id=conversation_id, error=str(exc))
            self.stats.record_failure(f"Conversation messages sync error: {exc}")
            return

        logger.debug("Fetched messages", conversation_id=conversation_id, count=len(messages))
        for remote in messages:
            await self.sync_message(remote, conversation)

    async def sync_message(self, remote: dict[str, Any], conversation: StoredRecord) -> UpsertOutcome | None:
        self._conversation = conversation
        outcome = await self.sync_item(remote)
        if outcome is None or outcome.record is None:
            return outcome

        message_id = outcome.record.id
        try:
            recipients = [await self.recipient_row(recipient) for recipient in remote.get("recipients") or []]
            await self.store.replace_children(ChildCollection.MESSAGE_RECIPIENTS, message_id, recipients)
            attachments = [attachment_row(attachment) for attachment in remote.get("attachments") or []]
            await self.store.replace_children(ChildCollection.MESSAGE_ATTACHMENTS, message_id, attachments)
        except Exception as exc:
            logger.error("Failed to replace message children", message=remote.get("id"), error=str(exc))
            self.stats.add_error(f"Failed to replace children for message {remote.get('id')}: {exc}")
        return outcome

    async def recipient_row(self, recipient: dict[str, Any]) -> dict[str, Any]:
        handle = recipient.get("handle")
        return {
            "front_contact_id": await self.contact_for_handle(handle),
            "handle": handle,
            "role": recipient.get("role") or "to",
            "name": sanitize_text(recipient.get("name")),
            "api_links": recipient.get("_links") or {},
        }

    async def contact_for_handle(self, handle: str | None) -> str | None:
        if not handle:
            return None
        if handle not in self._recipient_contacts:
            contact = await self.store.find_contact_by_handle(handle)
            if contact is None:
                logger.debug("No contact for recipient handle", handle=handle)
            self._recipient_contacts[handle] = contact.id if contact else None
        return self._recipient_contacts[handle]
