"""
Sync Run Records

One record per orchestration (or single-resource) invocation. The health
monitor aggregates these for success rates, error patterns and throughput.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from frontsync.kernel.time import utc_now
from frontsync.sync.stats import SyncStats


class SyncRunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    ERROR = "error"
    SKIPPED = "skipped"


SUCCESSFUL_STATUSES = (SyncRunStatus.COMPLETED, SyncRunStatus.COMPLETED_WITH_ERRORS)


class SyncType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    TARGETED = "targeted"


class SyncRun(BaseModel):
    """Lifecycle: running -> completed | completed_with_errors | error | skipped."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=lambda: str(uuid4()))
    resource_type: str
    sync_type: SyncType = SyncType.FULL
    status: SyncRunStatus = SyncRunStatus.RUNNING

    started_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None

    records_created: int = 0
    records_updated: int = 0
    records_skipped: int = 0
    records_failed: int = 0
    error_messages: list[str] = Field(default_factory=list)

    # api_calls, response_time_avg, change detection counts, ...
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    @property
    def is_finished(self) -> bool:
        return self.status != SyncRunStatus.RUNNING

    def is_stuck(self, now: datetime, threshold: timedelta) -> bool:
        return self.status == SyncRunStatus.RUNNING and now - self.started_at > threshold

    def _apply_stats(self, stats: SyncStats) -> None:
        self.records_created = stats.created
        self.records_updated = stats.updated
        self.records_skipped = stats.skipped
        self.records_failed = stats.failed
        self.error_messages = list(stats.errors)

    def mark_completed(self, stats: SyncStats, completed_at: datetime | None = None) -> None:
        """Finish the run; item-level failures downgrade it to completed_with_errors."""
        self._apply_stats(stats)
        self.status = (
            SyncRunStatus.COMPLETED_WITH_ERRORS if stats.failed else SyncRunStatus.COMPLETED
        )
        self.completed_at = completed_at or utc_now()

    def mark_error(self, error: str, stats: SyncStats | None = None, completed_at: datetime | None = None) -> None:
        if stats is not None:
            self._apply_stats(stats)
        if error not in self.error_messages:
            self.error_messages.append(error)
        self.status = SyncRunStatus.ERROR
        self.completed_at = completed_at or utc_now()

    def mark_skipped(self, reason: str, completed_at: datetime | None = None) -> None:
        self.status = SyncRunStatus.SKIPPED
        self.metadata["skip_reason"] = reason
        self.completed_at = completed_at or utc_now()

    def to_dict(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json")
        payload["duration_seconds"] = self.duration_seconds
        return payload
