"""
Sync outcome types.

`UpsertOutcome` is the per-item result; `SyncStats` aggregates outcomes for a
resource sync or a whole orchestration run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from frontsync.storage.base import StoredRecord

MAX_ERROR_MESSAGES = 100


class UpsertStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class UpsertOutcome:
    status: UpsertStatus
    record: "StoredRecord | None" = None
    error: str | None = None

    @classmethod
    def failed(cls, error: str) -> "UpsertOutcome":
        return cls(status=UpsertStatus.FAILED, error=error)


@dataclass
class SyncStats:
    """Created/updated/skipped/failed counters plus a bounded error list."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    errors_dropped: int = 0

    @property
    def total(self) -> int:
        return self.created + self.updated + self.skipped + self.failed

    def add_error(self, message: str) -> None:
        if len(self.errors) < MAX_ERROR_MESSAGES:
            self.errors.append(message)
        else:
            self.errors_dropped += 1

    def record_failure(self, message: str | None = None) -> None:
        self.failed += 1
        if message:
            self.add_error(message)

    def record(self, outcome: UpsertOutcome) -> None:
        if outcome.status == UpsertStatus.CREATED:
            self.created += 1
        elif outcome.status == UpsertStatus.UPDATED:
            self.updated += 1
        elif outcome.status == UpsertStatus.SKIPPED:
            self.skipped += 1
        else:
            self.record_failure(outcome.error)

    def merge(self, other: "SyncStats") -> "SyncStats":
        self.created += other.created
        self.updated += other.updated
        self.skipped += other.skipped
        self.failed += other.failed
        for message in other.errors:
            self.add_error(message)
        self.errors_dropped += other.errors_dropped
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": list(self.errors),
            "errors_dropped": self.errors_dropped,
        }
