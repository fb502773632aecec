"""
Inbox sync.

Front reports the channel type on `/channels`, not on the inbox itself.
Channels are fetched once per sync and joined to inboxes through each
channel's related-inbox link.
"""

from __future__ import annotations

import re
from typing import Any

import structlog

from frontsync.storage.base import ResourceType, StoredRecord
from frontsync.sync.resources.base import ResourceRegistry, ResourceSync

logger = structlog.get_logger()

_INBOX_LINK_RE = re.compile(r"/inboxes/(inb_\w+)")

UNKNOWN_INBOX_TYPE = "unknown"

CHANNEL_TYPE_MAP: dict[str, str] = {
    "smtp": "email",
    "imap": "email",
    "gmail": "email",
    "office365": "email",
    "email": "email",
    "twilio": "sms",
    "twilio_whatsapp": "sms",
    "sms": "sms",
    "front_chat": "chat",
    "intercom": "chat",
    "smooch": "chat",
    "chat": "chat",
    "facebook": "social",
    "twitter": "social",
    "twitter_dm": "social",
    "instagram": "social",
    "whatsapp": "social",
    "custom": "custom",
}


def map_channel_type(channel_type: str | None) -> str:
    if not channel_type:
        return UNKNOWN_INBOX_TYPE
    return CHANNEL_TYPE_MAP.get(channel_type, channel_type)


def channel_inbox_id(channel: dict[str, Any]) -> str | None:
    related = (channel.get("_links") or {}).get("related") or {}
    match = _INBOX_LINK_RE.search(related.get("inbox") or "")
    return match.group(1) if match else None


@ResourceRegistry.register
class InboxSync(ResourceSync):
    resource_type = ResourceType.INBOXES
    path = "/inboxes"

    def __init__(self, context) -> None:
        super().__init__(context)
        self.channel_types: dict[str, str] = {}

    async def prepare(self) -> None:
        channels = await self.fetcher.fetch_all("/channels", self.list_params())
        for channel in channels:
            inbox_id = channel_inbox_id(channel)
            if inbox_id and inbox_id not in self.channel_types and channel.get("type"):
                self.channel_types[inbox_id] = channel["type"]
        logger.debug("Loaded channel types", channels=len(channels), inboxes=len(self.channel_types))

    def transform(self, remote: dict[str, Any], existing: StoredRecord | None) -> dict[str, Any]:
        channel_type = remote.get("type") or self.channel_types.get(remote.get("id", ""))
        return {
            "name": remote.get("name"),
            "handle": remote.get("address") or remote.get("send_as"),
            "inbox_type": map_channel_type(channel_type),
            "settings": {
                "is_private": bool(remote.get("is_private", False)),
                "custom_fields": remote.get("custom_fields") or {},
            },
            "api_links": remote.get("_links") or {},
        }
