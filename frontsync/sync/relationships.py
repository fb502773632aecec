"""
Relationship Diff Engine

Reconciles many-to-many associations (conversation tags/inboxes) against the
set the remote payload asks for. Works on a batch of parents: one read of the
current rows, then one bulk insert and one bulk delete. Related external ids
missing from the lookup cache are skipped with a warning.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping

import structlog

from frontsync.storage.base import Relation, SyncStore

logger = structlog.get_logger()

Pair = tuple[str, str]


@dataclass
class ReconcileResult:
    added: list[Pair] = field(default_factory=list)
    removed: list[Pair] = field(default_factory=list)
    unresolved: list[Pair] = field(default_factory=list)

    def for_parent(self, parent_id: str) -> dict[str, list[str]]:
        return {
            "added": [related for parent, related in self.added if parent == parent_id],
            "removed": [related for parent, related in self.removed if parent == parent_id],
        }


class RelationshipDiffEngine:
    def __init__(self, store: SyncStore) -> None:
        self._store = store

    async def reconcile_many(
        self,
        relation: Relation,
        desired: Mapping[str, Iterable[str]],
        lookup: Mapping[str, str],
    ) -> ReconcileResult:
        """
        Args:
            relation: association to reconcile
            desired: parent local id -> related *external* ids from the payload
            lookup: related external id -> related local id
        """
        result = ReconcileResult()
        parent_ids = list(desired)
        if not parent_ids:
            return result

        current = await self._store.fetch_associations(relation, parent_ids)

        for parent_id in parent_ids:
            wanted: set[str] = set()
            for external_id in desired[parent_id]:
                local_id = lookup.get(external_id)
                if local_id is None:
                    result.unresolved.append((parent_id, external_id))
                    logger.warning(
                        "Related record not found locally",
                        relation=relation.value,
                        parent_id=parent_id,
                        front_id=external_id,
                    )
                    continue
                wanted.add(local_id)

            have = current.get(parent_id, set())
            result.added.extend((parent_id, related) for related in sorted(wanted - have))
            result.removed.extend((parent_id, related) for related in sorted(have - wanted))

        if result.added:
            await self._store.insert_associations(relation, result.added)
        if result.removed:
            await self._store.delete_associations(relation, result.removed)

        logger.debug(
            "Reconciled associations",
            relation=relation.value,
            parents=len(parent_ids),
            added=len(result.added),
            removed=len(result.removed),
        )
        return result

    async def reconcile(
        self,
        parent_id: str,
        relation: Relation,
        desired_related_ids: Iterable[str],
        lookup: Mapping[str, str],
    ) -> dict[str, list[str]]:
        result = await self.reconcile_many(relation, {parent_id: list(desired_related_ids)}, lookup)
        return result.for_parent(parent_id)
