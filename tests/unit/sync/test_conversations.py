"""
Unit tests for conversation sync.
"""

from datetime import timedelta

import pytest

from frontsync.storage.base import Relation, ResourceType
from frontsync.sync.resources.conversations import (
    BATCH_SIZE,
    ConversationSync,
    extract_last_message_id,
    status_category,
)

pytestmark = pytest.mark.unit

API = "https://api2.frontapp.com"


def _conversation(conversation_id: str, *, tags=(), inboxes=("inb_1",), **fields) -> dict:
    payload = {
        "id": conversation_id,
        "subject": "Broken invoice",
        "status": "assigned",
        "assignee": {"id": "tea_1"},
        "recipient": {"handle": "ada@example.com", "role": "from"},
        "tags": [{"id": tag} for tag in tags],
        "inboxes": [{"id": inbox} for inbox in inboxes],
        "created_at": 1767200000.0,
        "_links": {
            "self": f"{API}/conversations/{conversation_id}",
            "related": {"last_message": f"{API}/messages/msg_9"},
        },
    }
    payload.update(fields)
    return payload


@pytest.fixture
def seeded(store):
    ids = {
        "tea_1": store.seed(ResourceType.TEAMMATES, "tea_1").id,
        "crd_1": store.seed(ResourceType.CONTACTS, "crd_1", {"handle": "ada@example.com"}).id,
        "inb_1": store.seed(ResourceType.INBOXES, "inb_1").id,
    }
    for tag in ("tag_a", "tag_b", "tag_c", "tag_d"):
        ids[tag] = store.seed(ResourceType.TAGS, tag).id
    return ids


def _tag_ids(store, conversation_front_id: str) -> set[str]:
    conversation = store.get(ResourceType.CONVERSATIONS, conversation_front_id)
    return {related for parent, related in store.associations[Relation.CONVERSATION_TAGS] if parent == conversation.id}


@pytest.mark.parametrize(
    "status,category",
    [("archived", "closed"), ("Deleted", "closed"), ("assigned", "open"), ("unassigned", "open"), (None, "open")],
)
def test_status_category(status, category):
    assert status_category(status) == category


def test_extract_last_message_id():
    assert extract_last_message_id({"related": {"last_message": f"{API}/messages/msg_42"}}) == "msg_42"
    assert extract_last_message_id({"related": {}}) is None
    assert extract_last_message_id(None) is None


@pytest.mark.asyncio
async def test_full_sync_resolves_references(front_api, sync_context, store, seeded):
    front_api.add_collection(
        "/conversations",
        [_conversation("cnv_1", tags=("tag_a", "tag_b"), status="archived", scheduled_reminders=[{"id": "rem_1"}])],
    )

    stats = await ConversationSync(sync_context).sync_all()

    assert stats.created == 1
    attributes = store.get(ResourceType.CONVERSATIONS, "cnv_1").attributes
    assert attributes["status_category"] == "closed"
    assert attributes["assignee_id"] == seeded["tea_1"]
    assert attributes["recipient_contact_id"] == seeded["crd_1"]
    assert attributes["recipient_role"] == "from"
    assert attributes["last_message_front_id"] == "msg_9"
    assert attributes["metadata"] == {"scheduled_reminders": [{"id": "rem_1"}]}
    assert _tag_ids(store, "cnv_1") == {seeded["tag_a"], seeded["tag_b"]}
    conversation = store.get(ResourceType.CONVERSATIONS, "cnv_1")
    assert store.associations[Relation.CONVERSATION_INBOXES] == {(conversation.id, seeded["inb_1"])}


@pytest.mark.asyncio
async def test_unknown_references_are_left_empty(front_api, sync_context, store, seeded):
    front_api.add_collection(
        "/conversations",
        [_conversation("cnv_1", tags=("tag_a", "tag_unknown"), assignee={"id": "tea_gone"}, recipient=None)],
    )

    stats = await ConversationSync(sync_context).sync_all()

    assert stats.failed == 0
    attributes = store.get(ResourceType.CONVERSATIONS, "cnv_1").attributes
    assert attributes["assignee_id"] is None
    assert attributes["recipient_contact_id"] is None
    assert _tag_ids(store, "cnv_1") == {seeded["tag_a"]}


@pytest.mark.asyncio
async def test_tag_set_is_reconciled_even_when_upsert_is_skipped(front_api, sync_context, store, seeded, fake_clock):
    front_api.add_collection("/conversations", [_conversation("cnv_1", tags=("tag_a", "tag_b", "tag_c"))])
    await ConversationSync(sync_context).sync_all()

    # Front reports an older updated_at, so the row itself is left alone.
    stale = (fake_clock() - timedelta(hours=1)).timestamp()
    front_api.add_collection(
        "/conversations",
        [_conversation("cnv_1", tags=("tag_b", "tag_c", "tag_d"), subject="Changed", updated_at=stale)],
    )
    stats = await ConversationSync(sync_context).sync_all()

    assert stats.skipped == 1
    assert store.get(ResourceType.CONVERSATIONS, "cnv_1").get("subject") == "Broken invoice"
    assert _tag_ids(store, "cnv_1") == {seeded["tag_b"], seeded["tag_c"], seeded["tag_d"]}


@pytest.mark.asyncio
async def test_candidate_sync_fetches_each_conversation(front_api, sync_context, store, seeded):
    front_api.add_conversation(_conversation("cnv_1", tags=("tag_a",)))
    front_api.add_conversation(_conversation("cnv_2"))

    stats = await ConversationSync(sync_context).sync_all(candidate_ids=["cnv_1", "cnv_missing", "cnv_2"])

    assert stats.created == 2
    assert stats.failed == 1
    assert stats.errors[0].startswith("Failed to fetch conversation cnv_missing:")
    assert "/conversations" not in front_api.requested_paths()


@pytest.mark.asyncio
async def test_candidate_sync_honours_max_results(front_api, sync_context, store, seeded):
    for index in range(3):
        front_api.add_conversation(_conversation(f"cnv_{index}"))

    stats = await ConversationSync(sync_context).sync_all(candidate_ids=["cnv_0", "cnv_1", "cnv_2"], max_results=2)

    assert stats.created == 2
    assert store.get(ResourceType.CONVERSATIONS, "cnv_2") is None


@pytest.mark.asyncio
async def test_incremental_sync_detects_candidates(front_api, sync_context, store, seeded, fake_clock):
    front_api.add_collection("/events", [{"id": "evt_1", "conversation": {"id": "cnv_1"}}])
    front_api.add_conversation(_conversation("cnv_1"))

    stats = await ConversationSync(sync_context).sync_all(since=fake_clock() - timedelta(hours=1))

    assert stats.created == 1
    assert "/events" in front_api.requested_paths()


@pytest.mark.asyncio
async def test_no_candidates_makes_no_conversation_calls(front_api, sync_context, store, fake_clock):
    stats = await ConversationSync(sync_context).sync_all(candidate_ids=[])

    assert stats.total == 0
    assert front_api.requests == []


@pytest.mark.asyncio
async def test_pages_are_processed_in_batches(front_api, sync_context, store, seeded):
    front_api.add_collection("/conversations", [_conversation(f"cnv_{index}") for index in range(BATCH_SIZE + 20)])
    fetches = []
    original = store.fetch_associations

    async def counting_fetch(relation, parent_ids):
        fetches.append((relation, len(parent_ids)))
        return await original(relation, parent_ids)

    store.fetch_associations = counting_fetch

    stats = await ConversationSync(sync_context).sync_all()

    assert stats.created == BATCH_SIZE + 20
    tag_reads = [size for relation, size in fetches if relation == Relation.CONVERSATION_TAGS]
    assert sorted(tag_reads) == [20, BATCH_SIZE]


@pytest.mark.asyncio
async def test_undecodable_conversation_body_fails_only_that_item(front_api, sync_context, store, seeded):
    front_api.raw_bodies["/conversations/cnv_bad"] = "<html>maintenance</html>"
    front_api.add_conversation(_conversation("cnv_good"))

    stats = await ConversationSync(sync_context).sync_conversation_ids(["cnv_bad", "cnv_good"])

    assert stats.failed == 1
    assert stats.created == 1
    assert stats.errors[0].startswith("Failed to fetch conversation cnv_bad:")
    assert store.get(ResourceType.CONVERSATIONS, "cnv_good") is not None


@pytest.mark.asyncio
async def test_unexpected_fetch_error_fails_only_that_item(front_api, sync_context, store, seeded):
    front_api.add_conversation(_conversation("cnv_good"))
    sync = ConversationSync(sync_context)
    original = sync.client.get_conversation

    async def flaky_get(conversation_id):
        if conversation_id == "cnv_boom":
            raise RuntimeError("boom")
        return await original(conversation_id)

    sync.client.get_conversation = flaky_get

    stats = await sync.sync_conversation_ids(["cnv_boom", "cnv_good"])

    assert stats.failed == 1
    assert stats.created == 1
    assert "boom" in stats.errors[0]
