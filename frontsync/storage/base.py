"""
Storage port for the sync engine.

The engine only talks to storage through `SyncStore`. Records are addressed
by their Front external id (`front_id`); everything else uses local ids.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Protocol, Sequence

from frontsync.sync.runs import SyncRun, SyncRunStatus


class ResourceType(str, Enum):
    TEAMMATES = "teammates"
    TAGS = "tags"
    INBOXES = "inboxes"
    CONTACTS = "contacts"
    CONVERSATIONS = "conversations"
    MESSAGES = "messages"


class Relation(str, Enum):
    """Many-to-many associations owned by a conversation."""

    CONVERSATION_TAGS = "conversation_tags"
    CONVERSATION_INBOXES = "conversation_inboxes"


class ChildCollection(str, Enum):
    """Child rows of a message that are replaced wholesale on every sync."""

    MESSAGE_RECIPIENTS = "message_recipients"
    MESSAGE_ATTACHMENTS = "message_attachments"


@dataclass
class StoredRecord:
    id: str
    front_id: str
    updated_at: datetime | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)


class SyncStore(Protocol):
    """Persistence collaborator. Validation failures raise `PersistenceError`."""

    async def find(self, resource: ResourceType, front_id: str) -> StoredRecord | None:
        ...

    async def create(self, resource: ResourceType, front_id: str, attributes: dict[str, Any]) -> StoredRecord:
        ...

    async def update(self, resource: ResourceType, record: StoredRecord, attributes: dict[str, Any]) -> StoredRecord:
        ...

    async def lookup_ids(self, resource: ResourceType) -> dict[str, str]:
        """front_id -> local id for every stored record of a resource."""
        ...

    async def contact_ids_by_handle(self) -> dict[str, str]:
        """Primary handle -> local contact id."""
        ...

    async def find_contact_by_handle(self, handle: str) -> StoredRecord | None:
        """Match the primary handle, then the stored email handle collection."""
        ...

    async def list_front_ids(self, resource: ResourceType) -> list[str]:
        ...

    async def fetch_associations(self, relation: Relation, parent_ids: Sequence[str]) -> dict[str, set[str]]:
        ...

    async def insert_associations(self, relation: Relation, pairs: Iterable[tuple[str, str]]) -> int:
        ...

    async def delete_associations(self, relation: Relation, pairs: Iterable[tuple[str, str]]) -> int:
        ...

    async def replace_children(self, collection: ChildCollection, parent_id: str, rows: list[dict[str, Any]]) -> int:
        ...

    async def save_sync_run(self, run: SyncRun) -> None:
        ...

    async def list_sync_runs(
        self,
        since: datetime | None = None,
        statuses: Sequence[SyncRunStatus] | None = None,
    ) -> list[SyncRun]:
        ...

    async def latest_sync_run(
        self,
        resource_type: str | None = None,
        sync_type: str | None = None,
        statuses: Sequence[SyncRunStatus] | None = None,
    ) -> SyncRun | None:
        """Most recently started run matching the filters."""
        ...
