"""
SQL Sync Store

`SyncStore` over the front_* tables. Every call opens its own session via
`get_db_session()`, which commits on success and rolls back on error.
Constraint and data errors surface as `PersistenceError` so the upsert engine
can turn them into failed outcomes.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Sequence

import structlog
from sqlalchemy import delete, inspect, select, tuple_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DataError, IntegrityError

from frontsync.kernel.errors import PersistenceError
from frontsync.kernel.time import utc_now
from frontsync.storage.base import ChildCollection, Relation, ResourceType, StoredRecord
from frontsync.storage.db import get_db_session
from frontsync.storage.models import (
    FrontAttachment,
    FrontContact,
    FrontConversation,
    FrontConversationInbox,
    FrontConversationTag,
    FrontInbox,
    FrontMessage,
    FrontMessageRecipient,
    FrontSyncRun,
    FrontTag,
    FrontTeammate,
)
from frontsync.sync.runs import SyncRun, SyncRunStatus

logger = structlog.get_logger()

RESOURCE_MODELS = {
    ResourceType.TEAMMATES: FrontTeammate,
    ResourceType.TAGS: FrontTag,
    ResourceType.INBOXES: FrontInbox,
    ResourceType.CONTACTS: FrontContact,
    ResourceType.CONVERSATIONS: FrontConversation,
    ResourceType.MESSAGES: FrontMessage,
}

# relation -> (model, parent column, related column)
RELATION_TABLES = {
    Relation.CONVERSATION_TAGS: (FrontConversationTag, "front_conversation_id", "front_tag_id"),
    Relation.CONVERSATION_INBOXES: (FrontConversationInbox, "front_conversation_id", "front_inbox_id"),
}

CHILD_TABLES = {
    ChildCollection.MESSAGE_RECIPIENTS: FrontMessageRecipient,
    ChildCollection.MESSAGE_ATTACHMENTS: FrontAttachment,
}

_BOOKKEEPING_COLUMNS = frozenset({"id", "front_id", "created_at", "updated_at"})


def column_keys(model) -> dict[str, str]:
    """Column name -> mapped attribute key (`metadata` is mapped as `metadata_`)."""
    return {prop.columns[0].name: prop.key for prop in inspect(model).column_attrs}


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


def to_record(row: Any) -> StoredRecord:
    attributes = {
        name: _plain(getattr(row, key))
        for name, key in column_keys(type(row)).items()
        if name not in _BOOKKEEPING_COLUMNS
    }
    return StoredRecord(id=str(row.id), front_id=row.front_id, updated_at=row.updated_at, attributes=attributes)


def _mapped_values(model, attributes: dict[str, Any]) -> dict[str, Any]:
    keys = column_keys(model)
    values: dict[str, Any] = {}
    for name, value in attributes.items():
        if name in _BOOKKEEPING_COLUMNS:
            continue
        if name not in keys:
            logger.debug("Dropping unmapped attribute", table=model.__tablename__, attribute=name)
            continue
        values[keys[name]] = value
    return values


def _persistence_error(action: str, table: str, exc: Exception) -> PersistenceError:
    detail = str(getattr(exc, "orig", None) or exc)
    return PersistenceError(message=f"{action} {table} failed: {detail}", meta={"table": table})


class SqlSyncStore:
    """PostgreSQL-backed `SyncStore`."""

    # =========================================================================
    # Mirrored records
    # =========================================================================

    async def find(self, resource: ResourceType, front_id: str) -> StoredRecord | None:
        model = RESOURCE_MODELS[resource]
        async with get_db_session() as session:
            result = await session.execute(select(model).where(model.front_id == front_id))
            row = result.scalar_one_or_none()
            return to_record(row) if row is not None else None

    async def create(self, resource: ResourceType, front_id: str, attributes: dict[str, Any]) -> StoredRecord:
        model = RESOURCE_MODELS[resource]
        try:
            async with get_db_session() as session:
                row = model(front_id=front_id, **_mapped_values(model, attributes))
                session.add(row)
                await session.flush()
                return to_record(row)
        except (IntegrityError, DataError) as exc:
            raise _persistence_error("Insert into", model.__tablename__, exc) from exc

    async def update(self, resource: ResourceType, record: StoredRecord, attributes: dict[str, Any]) -> StoredRecord:
        model = RESOURCE_MODELS[resource]
        try:
            async with get_db_session() as session:
                row = await session.get(model, record.id)
                if row is None:
                    raise PersistenceError(
                        message=f"{model.__tablename__} row {record.id} disappeared",
                        code="storage.not_found",
                    )
                for key, value in _mapped_values(model, attributes).items():
                    setattr(row, key, value)
                row.updated_at = utc_now()
                await session.flush()
                return to_record(row)
        except (IntegrityError, DataError) as exc:
            raise _persistence_error("Update of", model.__tablename__, exc) from exc

    async def lookup_ids(self, resource: ResourceType) -> dict[str, str]:
        model = RESOURCE_MODELS[resource]
        async with get_db_session() as session:
            result = await session.execute(select(model.front_id, model.id))
            return {front_id: str(local_id) for front_id, local_id in result.all()}

    async def list_front_ids(self, resource: ResourceType) -> list[str]:
        model = RESOURCE_MODELS[resource]
        async with get_db_session() as session:
            result = await session.execute(select(model.front_id).order_by(model.created_at))
            return list(result.scalars().all())

    # =========================================================================
    # Contacts
    # =========================================================================

    async def contact_ids_by_handle(self) -> dict[str, str]:
        async with get_db_session() as session:
            result = await session.execute(
                select(FrontContact.handle, FrontContact.id).where(FrontContact.handle.is_not(None))
            )
            return {handle: str(local_id) for handle, local_id in result.all()}

    async def find_contact_by_handle(self, handle: str) -> StoredRecord | None:
        async with get_db_session() as session:
            result = await session.execute(select(FrontContact).where(FrontContact.handle == handle).limit(1))
            row = result.scalar_one_or_none()
            if row is None:
                result = await session.execute(
                    select(FrontContact)
                    .where(FrontContact.handles.contains([{"source": "email", "handle": handle}]))
                    .limit(1)
                )
                row = result.scalar_one_or_none()
            return to_record(row) if row is not None else None

    # =========================================================================
    # Associations and child collections
    # =========================================================================

    async def fetch_associations(self, relation: Relation, parent_ids: Sequence[str]) -> dict[str, set[str]]:
        model, parent_col, related_col = RELATION_TABLES[relation]
        parent, related = getattr(model, parent_col), getattr(model, related_col)
        grouped: dict[str, set[str]] = {}
        if not parent_ids:
            return grouped
        async with get_db_session() as session:
            result = await session.execute(select(parent, related).where(parent.in_(list(parent_ids))))
            for parent_id, related_id in result.all():
                grouped.setdefault(str(parent_id), set()).add(str(related_id))
        return grouped

    async def insert_associations(self, relation: Relation, pairs: Iterable[tuple[str, str]]) -> int:
        model, parent_col, related_col = RELATION_TABLES[relation]
        rows = [{parent_col: parent_id, related_col: related_id} for parent_id, related_id in pairs]
        if not rows:
            return 0
        statement = (
            pg_insert(model)
            .values(rows)
            .on_conflict_do_nothing(index_elements=[parent_col, related_col])
        )
        try:
            async with get_db_session() as session:
                result = await session.execute(statement)
                return result.rowcount or 0
        except (IntegrityError, DataError) as exc:
            raise _persistence_error("Insert into", model.__tablename__, exc) from exc

    async def delete_associations(self, relation: Relation, pairs: Iterable[tuple[str, str]]) -> int:
        model, parent_col, related_col = RELATION_TABLES[relation]
        pairs = list(pairs)
        if not pairs:
            return 0
        parent, related = getattr(model, parent_col), getattr(model, related_col)
        async with get_db_session() as session:
            result = await session.execute(delete(model).where(tuple_(parent, related).in_(pairs)))
            return result.rowcount or 0

    async def replace_children(self, collection: ChildCollection, parent_id: str, rows: list[dict[str, Any]]) -> int:
        model = CHILD_TABLES[collection]
        try:
            async with get_db_session() as session:
                await session.execute(delete(model).where(model.front_message_id == parent_id))
                for row in rows:
                    session.add(model(front_message_id=parent_id, **_mapped_values(model, row)))
                await session.flush()
                return len(rows)
        except (IntegrityError, DataError) as exc:
            raise _persistence_error("Replace of", model.__tablename__, exc) from exc

    # =========================================================================
    # Sync runs
    # =========================================================================

    async def save_sync_run(self, run: SyncRun) -> None:
        async with get_db_session() as session:
            await session.merge(
                FrontSyncRun(
                    id=run.id,
                    resource_type=run.resource_type,
                    sync_type=run.sync_type.value,
                    status=run.status.value,
                    started_at=run.started_at,
                    completed_at=run.completed_at,
                    duration_seconds=run.duration_seconds,
                    records_created=run.records_created,
                    records_updated=run.records_updated,
                    records_skipped=run.records_skipped,
                    records_failed=run.records_failed,
                    error_messages=list(run.error_messages),
                    metadata_=dict(run.metadata),
                )
            )

    async def list_sync_runs(
        self,
        since: datetime | None = None,
        statuses: Sequence[SyncRunStatus] | None = None,
    ) -> list[SyncRun]:
        query = select(FrontSyncRun).order_by(FrontSyncRun.started_at)
        if since is not None:
            query = query.where(FrontSyncRun.started_at >= since)
        if statuses:
            query = query.where(FrontSyncRun.status.in_([SyncRunStatus(s).value for s in statuses]))
        async with get_db_session() as session:
            result = await session.execute(query)
            return [_to_sync_run(row) for row in result.scalars().all()]

    async def latest_sync_run(
        self,
        resource_type: str | None = None,
        sync_type: str | None = None,
        statuses: Sequence[SyncRunStatus] | None = None,
    ) -> SyncRun | None:
        query = select(FrontSyncRun).order_by(FrontSyncRun.started_at.desc()).limit(1)
        if resource_type is not None:
            query = query.where(FrontSyncRun.resource_type == resource_type)
        if sync_type is not None:
            query = query.where(FrontSyncRun.sync_type == sync_type)
        if statuses:
            query = query.where(FrontSyncRun.status.in_([SyncRunStatus(s).value for s in statuses]))
        async with get_db_session() as session:
            result = await session.execute(query)
            row = result.scalar_one_or_none()
            return _to_sync_run(row) if row is not None else None


def _to_sync_run(row: FrontSyncRun) -> SyncRun:
    return SyncRun(
        id=str(row.id),
        resource_type=row.resource_type,
        sync_type=row.sync_type,
        status=row.status,
        started_at=row.started_at,
        completed_at=row.completed_at,
        records_created=row.records_created or 0,
        records_updated=row.records_updated or 0,
        records_skipped=row.records_skipped or 0,
        records_failed=row.records_failed or 0,
        error_messages=list(row.error_messages or []),
        metadata=dict(row.metadata_ or {}),
    )


_sync_store: SqlSyncStore | None = None


def get_sync_store() -> SqlSyncStore:
    global _sync_store
    if _sync_store is None:
        _sync_store = SqlSyncStore()
    return _sync_store
