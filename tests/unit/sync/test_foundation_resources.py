"""
Unit tests for teammate, tag and inbox syncs.
"""

import pytest

from frontsync.storage.base import ResourceType
from frontsync.sync.resources import ResourceRegistry
from frontsync.sync.resources.inboxes import InboxSync, channel_inbox_id, map_channel_type
from frontsync.sync.resources.tags import TagSync, extract_parent_tag_id
from frontsync.sync.resources.teammates import TeammateSync

pytestmark = pytest.mark.unit

API = "https://api2.frontapp.com"


def _tag(tag_id: str, name: str, parent: str | None = None) -> dict:
    tag = {"id": tag_id, "name": name, "highlight": "red", "is_private": False, "_links": {"self": f"{API}/tags/{tag_id}"}}
    if parent:
        tag["_links"]["related"] = {"parent_tag": f"{API}/tags/{parent}"}
    return tag


def test_every_resource_is_registered():
    assert set(ResourceRegistry.registered()) == set(ResourceType)
    assert ResourceRegistry.get(ResourceType.TAGS) is TagSync


class TestTeammateSync:
    @pytest.mark.asyncio
    async def test_sync_maps_teammate_fields(self, front_api, sync_context, store):
        front_api.add_collection(
            "/teammates",
            [
                {
                    "id": "tea_1",
                    "email": "ada@example.com",
                    "username": "ada",
                    "first_name": "Ada",
                    "last_name": "Lovelace",
                    "is_admin": True,
                    "type": "user",
                },
            ],
        )

        stats = await TeammateSync(sync_context).sync_all()

        assert stats.created == 1
        attributes = store.get(ResourceType.TEAMMATES, "tea_1").attributes
        assert attributes["email"] == "ada@example.com"
        assert attributes["is_admin"] is True
        assert attributes["is_available"] is True
        assert attributes["is_blocked"] is False
        assert attributes["teammate_type"] == "user"

    @pytest.mark.asyncio
    async def test_items_without_id_are_ignored(self, front_api, sync_context, store):
        front_api.add_collection("/teammates", [{"email": "ghost@example.com"}])

        stats = await TeammateSync(sync_context).sync_all()

        assert stats.total == 0
        assert store.records[ResourceType.TEAMMATES] == {}

    @pytest.mark.asyncio
    async def test_max_results_caps_items(self, front_api, sync_context, store):
        front_api.add_collection("/teammates", [{"id": f"tea_{index}"} for index in range(10)])

        stats = await TeammateSync(sync_context).sync_all(max_results=3)

        assert stats.created == 3


class TestTagSync:
    def test_extract_parent_tag_id(self):
        assert extract_parent_tag_id({"parent_tag_id": "tag_p"}) == "tag_p"
        assert extract_parent_tag_id(_tag("tag_c", "Child", parent="tag_p")) == "tag_p"
        assert extract_parent_tag_id(_tag("tag_c", "Child")) is None

    @pytest.mark.asyncio
    async def test_child_before_parent_is_linked_in_second_pass(self, front_api, sync_context, store):
        front_api.add_collection("/tags", [_tag("tag_child", "Child", parent="tag_parent"), _tag("tag_parent", "Parent")])

        stats = await TagSync(sync_context).sync_all()

        assert stats.created == 2
        parent = store.get(ResourceType.TAGS, "tag_parent")
        child = store.get(ResourceType.TAGS, "tag_child")
        assert child.get("parent_tag_id") == parent.id
        assert parent.get("parent_tag_id") is None

    @pytest.mark.asyncio
    async def test_missing_parent_leaves_link_empty(self, front_api, sync_context, store):
        front_api.add_collection("/tags", [_tag("tag_orphan", "Orphan", parent="tag_gone")])

        stats = await TagSync(sync_context).sync_all()

        assert stats.failed == 0
        assert store.get(ResourceType.TAGS, "tag_orphan").get("parent_tag_id") is None

    @pytest.mark.asyncio
    async def test_second_run_touches_nothing(self, front_api, sync_context, store):
        front_api.add_collection("/tags", [_tag("tag_child", "Child", parent="tag_parent"), _tag("tag_parent", "Parent")])
        await TagSync(sync_context).sync_all()
        updates_after_first = store.updates

        stats = await TagSync(sync_context).sync_all()

        assert stats.skipped == 2
        assert stats.created == stats.updated == 0
        assert store.updates == updates_after_first

    @pytest.mark.asyncio
    async def test_failed_tag_is_counted_and_others_continue(self, front_api, sync_context, store):
        store.fail_on.add("tag_bad")
        front_api.add_collection("/tags", [_tag("tag_bad", "Bad"), _tag("tag_ok", "Ok")])

        stats = await TagSync(sync_context).sync_all()

        assert stats.created == 1
        assert stats.failed == 1
        assert stats.errors == ["Creation failed for tags tag_bad: Validation failed: front_id is invalid"]


class TestInboxSync:
    def test_map_channel_type(self):
        assert map_channel_type("smtp") == "email"
        assert map_channel_type("twilio") == "sms"
        assert map_channel_type("front_chat") == "chat"
        assert map_channel_type("facebook") == "social"
        assert map_channel_type("custom") == "custom"
        assert map_channel_type("carrier_pigeon") == "carrier_pigeon"
        assert map_channel_type(None) == "unknown"

    def test_channel_inbox_id(self):
        channel = {"_links": {"related": {"inbox": f"{API}/inboxes/inb_7"}}}
        assert channel_inbox_id(channel) == "inb_7"
        assert channel_inbox_id({}) is None

    @pytest.mark.asyncio
    async def test_inbox_type_comes_from_channels(self, front_api, sync_context, store):
        front_api.add_collection(
            "/channels",
            [
                {"id": "cha_1", "type": "gmail", "_links": {"related": {"inbox": f"{API}/inboxes/inb_1"}}},
                {"id": "cha_2", "type": "twilio", "_links": {"related": {"inbox": f"{API}/inboxes/inb_2"}}},
            ],
        )
        front_api.add_collection(
            "/inboxes",
            [
                {"id": "inb_1", "name": "Support", "address": "support@example.com", "is_private": True},
                {"id": "inb_2", "name": "SMS", "send_as": "+15550100"},
                {"id": "inb_3", "name": "Orphan"},
            ],
        )

        stats = await InboxSync(sync_context).sync_all()

        assert stats.created == 3
        support = store.get(ResourceType.INBOXES, "inb_1").attributes
        assert support["inbox_type"] == "email"
        assert support["handle"] == "support@example.com"
        assert support["settings"] == {"is_private": True, "custom_fields": {}}
        assert store.get(ResourceType.INBOXES, "inb_2").get("inbox_type") == "sms"
        assert store.get(ResourceType.INBOXES, "inb_2").get("handle") == "+15550100"
        assert store.get(ResourceType.INBOXES, "inb_3").get("inbox_type") == "unknown"
        assert front_api.requested_paths().count("/channels") == 1
