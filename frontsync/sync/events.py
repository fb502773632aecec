"""
Event Change Detector

Front cannot list conversations changed since a point in time, so candidate
conversations are inferred from two sources:

- the events feed, filtered to message/comment activity, and
- the newest-first conversation listing, for conversations that were created
  but have no qualifying event yet.

This is a heuristic: event retention and non-message edits (e.g. tag-only
changes) are not covered. The scheduled full conversation sync bounds the
drift.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from frontsync.client.fetcher import PaginatedFetcher
from frontsync.kernel.time import coerce_utc, isoformat_z, parse_remote_timestamp, to_epoch

logger = structlog.get_logger()

CONVERSATION_EVENT_TYPES = ("inbound", "outbound", "out_reply", "comment")


@dataclass
class ActiveConversationScan:
    conversation_ids: list[str] = field(default_factory=list)
    events_processed: int = 0
    truncated: bool = False


@dataclass
class ChangeSet:
    conversation_ids: list[str]
    active_count: int
    new_count: int
    since: datetime
    until: datetime | None
    duration: float
    events_processed: int = 0
    truncated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversation_ids": list(self.conversation_ids),
            "active_count": self.active_count,
            "new_count": self.new_count,
            "since": self.since,
            "until": self.until,
            "duration": self.duration,
            "events_processed": self.events_processed,
            "truncated": self.truncated,
        }


def extract_conversation_id(event: dict[str, Any]) -> str | None:
    conversation = event.get("conversation")
    if isinstance(conversation, dict):
        return conversation.get("id")
    return None


class EventChangeDetector:
    def __init__(
        self,
        fetcher: PaginatedFetcher,
        *,
        page_limit: int = 100,
        new_conversation_page_size: int = 50,
        new_conversation_max_pages: int = 10,
    ) -> None:
        self._fetcher = fetcher
        self.page_limit = page_limit
        self.new_conversation_page_size = new_conversation_page_size
        self.new_conversation_max_pages = new_conversation_max_pages

    async def get_active_conversation_ids(
        self,
        since: datetime,
        until: datetime | None = None,
        max_events: int = 1000,
    ) -> ActiveConversationScan:
        since = coerce_utc(since)
        until = coerce_utc(until) if until else None
        params: dict[str, Any] = {
            "q[after]": to_epoch(since),
            "q[types]": list(CONVERSATION_EVENT_TYPES),
            "limit": self.page_limit,
        }
        if until is not None:
            params["q[before]"] = to_epoch(until)

        # dict keeps first-seen order and dedups
        seen: dict[str, None] = {}
        scan = ActiveConversationScan()

        async for page in self._fetcher.iter_pages("/events", params):
            for event in page.items:
                if scan.events_processed >= max_events:
                    scan.truncated = True
                    break
                scan.events_processed += 1
                conversation_id = extract_conversation_id(event)
                if conversation_id:
                    seen.setdefault(conversation_id, None)
                if scan.events_processed % 100 == 0:
                    logger.info(
                        "Processed events",
                        events=scan.events_processed,
                        conversations=len(seen),
                    )
            else:
                if scan.events_processed >= max_events and page.has_more:
                    scan.truncated = True
            if scan.truncated:
                break

        scan.conversation_ids = list(seen)
        if scan.truncated:
            logger.warning(
                "Event scan truncated at max_events; widen the budget or narrow the window",
                max_events=max_events,
                since=isoformat_z(since),
            )
        logger.info(
            "Active conversation scan finished",
            events=scan.events_processed,
            max_events=max_events,
            conversations=len(scan.conversation_ids),
        )
        return scan

    async def get_new_conversation_ids(
        self,
        since: datetime,
        until: datetime | None = None,
    ) -> list[str]:
        """Scan newest-first conversations until one predates `since`."""
        since = coerce_utc(since)
        until = coerce_utc(until) if until else None
        conversation_ids: list[str] = []
        pages_checked = 0

        async for page in self._fetcher.iter_pages(
            "/conversations",
            {"limit": self.new_conversation_page_size},
            max_pages=self.new_conversation_max_pages,
        ):
            pages_checked = page.number
            found_older = False
            for conversation in page.items:
                created_at = parse_remote_timestamp(conversation.get("created_at"))
                if created_at is None:
                    continue
                if created_at < since:
                    found_older = True
                    break
                if until is None or created_at <= until:
                    conversation_ids.append(conversation["id"])
            if found_older:
                break

        logger.info("New conversation scan finished", found=len(conversation_ids), pages_checked=pages_checked)
        return conversation_ids

    async def incremental_sync(
        self,
        since: datetime,
        until: datetime | None = None,
        max_events: int = 1000,
    ) -> ChangeSet:
        since = coerce_utc(since)
        until = coerce_utc(until) if until else None
        started = time.monotonic()

        active = await self.get_active_conversation_ids(since, until, max_events)
        new_ids = await self.get_new_conversation_ids(since, until)

        combined = list(dict.fromkeys(active.conversation_ids + new_ids))
        change_set = ChangeSet(
            conversation_ids=combined,
            active_count=len(active.conversation_ids),
            new_count=len(new_ids),
            since=since,
            until=until,
            duration=time.monotonic() - started,
            events_processed=active.events_processed,
            truncated=active.truncated,
        )
        logger.info(
            "Conversations to sync",
            total=len(combined),
            active=change_set.active_count,
            new=change_set.new_count,
            truncated=change_set.truncated,
        )
        return change_set
