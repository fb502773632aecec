"""Teammate sync (foundation resource: conversation assignees, message authors)."""

from __future__ import annotations

from typing import Any

from frontsync.storage.base import ResourceType, StoredRecord
from frontsync.sync.resources.base import ResourceRegistry, ResourceSync


@ResourceRegistry.register
class TeammateSync(ResourceSync):
    resource_type = ResourceType.TEAMMATES
    path = "/teammates"

    def transform(self, remote: dict[str, Any], existing: StoredRecord | None) -> dict[str, Any]:
        return {
            "email": remote.get("email"),
            "username": remote.get("username"),
            "first_name": remote.get("first_name"),
            "last_name": remote.get("last_name"),
            "is_admin": bool(remote.get("is_admin", False)),
            "is_available": bool(remote.get("is_available", True)),
            "is_blocked": bool(remote.get("is_blocked", False)),
            "teammate_type": remote.get("type"),
            "custom_fields": remote.get("custom_fields") or {},
            "api_links": remote.get("_links") or {},
        }
