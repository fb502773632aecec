"""
Front Mirror Database Models

SQLAlchemy models for the mirrored Front resources, their association and
child tables, and the sync run log. Every mirrored row is keyed by the
immutable Front id (`front_id`).
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid4())


def _id_column():
    return Column(UUID(as_uuid=False), primary_key=True, default=_uuid)


def _timestamps():
    return (
        Column(DateTime(timezone=True), default=_utc_now, nullable=False),
        Column(DateTime(timezone=True), default=_utc_now, onupdate=_utc_now, nullable=False),
    )


class FrontTeammate(Base):
    __tablename__ = "front_teammates"

    id = _id_column()
    front_id = Column(String(64), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=True, index=True)
    username = Column(String(255), nullable=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    is_admin = Column(Boolean, default=False)
    is_available = Column(Boolean, default=True)
    is_blocked = Column(Boolean, default=False)
    teammate_type = Column(String(50), nullable=True)
    custom_fields = Column(JSONB, nullable=False, default=dict)
    api_links = Column(JSONB, nullable=False, default=dict)
    created_at, updated_at = _timestamps()


class FrontTag(Base):
    __tablename__ = "front_tags"

    id = _id_column()
    front_id = Column(String(64), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    highlight = Column(String(50), nullable=True)
    description = Column(Text, nullable=True)
    is_private = Column(Boolean, default=False)
    is_visible_in_conversation_lists = Column(Boolean, default=False)
    created_at_timestamp = Column(Numeric(15, 3), nullable=True)
    updated_at_timestamp = Column(Numeric(15, 3), nullable=True)
    parent_tag_id = Column(UUID(as_uuid=False), ForeignKey("front_tags.id"), nullable=True, index=True)
    api_links = Column(JSONB, nullable=False, default=dict)
    created_at, updated_at = _timestamps()


class FrontInbox(Base):
    __tablename__ = "front_inboxes"

    id = _id_column()
    front_id = Column(String(64), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    inbox_type = Column(String(50), nullable=True)  # email, sms, chat, social, custom, unknown
    handle = Column(String(255), nullable=True, index=True)
    settings = Column(JSONB, nullable=False, default=dict)
    api_links = Column(JSONB, nullable=False, default=dict)
    created_at, updated_at = _timestamps()


class FrontContact(Base):
    __tablename__ = "front_contacts"

    id = _id_column()
    front_id = Column(String(64), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True, index=True)
    handle = Column(String(255), nullable=True, index=True)
    role = Column(String(50), nullable=True)
    handles = Column(JSONB, nullable=False, default=list)  # [{"source": "email", "handle": "..."}]
    merged_front_ids = Column(JSONB, nullable=False, default=list)
    api_links = Column(JSONB, nullable=False, default=dict)
    created_at, updated_at = _timestamps()


class FrontConversation(Base):
    __tablename__ = "front_conversations"

    id = _id_column()
    front_id = Column(String(64), nullable=False, unique=True, index=True)
    subject = Column(Text, nullable=True)
    status = Column(String(50), nullable=True, index=True)
    status_category = Column(String(20), nullable=True)  # open | closed
    status_id = Column(String(64), nullable=True)
    is_private = Column(Boolean, default=False)
    created_at_timestamp = Column(Numeric(15, 3), nullable=True, index=True)
    waiting_since_timestamp = Column(Numeric(15, 3), nullable=True)
    custom_fields = Column(JSONB, nullable=False, default=dict)
    metadata_ = Column("metadata", JSONB, nullable=False, default=dict)
    links = Column(JSONB, nullable=False, default=list)
    scheduled_reminders = Column(JSONB, nullable=False, default=list)
    api_links = Column(JSONB, nullable=False, default=dict)
    assignee_id = Column(UUID(as_uuid=False), ForeignKey("front_teammates.id"), nullable=True, index=True)
    recipient_contact_id = Column(UUID(as_uuid=False), ForeignKey("front_contacts.id"), nullable=True, index=True)
    recipient_handle = Column(String(255), nullable=True)
    recipient_role = Column(String(50), nullable=True)
    last_message_front_id = Column(String(64), nullable=True)
    created_at, updated_at = _timestamps()


class FrontConversationTag(Base):
    __tablename__ = "front_conversation_tags"
    __table_args__ = (
        UniqueConstraint("front_conversation_id", "front_tag_id", name="uq_front_conversation_tag"),
    )

    id = _id_column()
    front_conversation_id = Column(
        UUID(as_uuid=False), ForeignKey("front_conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    front_tag_id = Column(UUID(as_uuid=False), ForeignKey("front_tags.id", ondelete="CASCADE"), nullable=False)
    created_at, updated_at = _timestamps()


class FrontConversationInbox(Base):
    __tablename__ = "front_conversation_inboxes"
    __table_args__ = (
        UniqueConstraint("front_conversation_id", "front_inbox_id", name="uq_front_conversation_inbox"),
    )

    id = _id_column()
    front_conversation_id = Column(
        UUID(as_uuid=False), ForeignKey("front_conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    front_inbox_id = Column(UUID(as_uuid=False), ForeignKey("front_inboxes.id", ondelete="CASCADE"), nullable=False)
    created_at, updated_at = _timestamps()


class FrontMessage(Base):
    __tablename__ = "front_messages"

    id = _id_column()
    front_id = Column(String(64), nullable=False, unique=True, index=True)
    front_conversation_id = Column(
        UUID(as_uuid=False), ForeignKey("front_conversations.id"), nullable=False, index=True
    )
    message_uid = Column(String(255), nullable=True)
    message_type = Column(String(50), nullable=True, index=True)
    is_inbound = Column(Boolean, default=True)
    is_draft = Column(Boolean, default=False)
    subject = Column(Text, nullable=True)
    blurb = Column(Text, nullable=True)
    body_html = Column(Text, nullable=True)
    body_plain = Column(Text, nullable=True)
    error_type = Column(String(100), nullable=True)
    draft_mode = Column(String(50), nullable=True)
    created_at_timestamp = Column(Numeric(15, 3), nullable=True, index=True)
    author_type = Column(String(20), nullable=True)  # contact | teammate | NULL
    author_id = Column(UUID(as_uuid=False), nullable=True, index=True)
    author_handle = Column(String(255), nullable=True, index=True)
    author_name = Column(String(255), nullable=True)
    metadata_ = Column("metadata", JSONB, nullable=False, default=dict)
    api_links = Column(JSONB, nullable=False, default=dict)
    created_at, updated_at = _timestamps()


class FrontMessageRecipient(Base):
    __tablename__ = "front_message_recipients"

    id = _id_column()
    front_message_id = Column(
        UUID(as_uuid=False), ForeignKey("front_messages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    front_contact_id = Column(UUID(as_uuid=False), ForeignKey("front_contacts.id"), nullable=True, index=True)
    role = Column(String(20), nullable=False)  # from | to | cc | bcc | reply-to
    handle = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    api_links = Column(JSONB, nullable=False, default=dict)
    created_at, updated_at = _timestamps()


class FrontAttachment(Base):
    __tablename__ = "front_attachments"

    id = _id_column()
    front_message_id = Column(
        UUID(as_uuid=False), ForeignKey("front_messages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    filename = Column(String(500), nullable=True)
    content_type = Column(String(255), nullable=True)
    url = Column(Text, nullable=True)
    size = Column(Integer, nullable=True)
    metadata_ = Column("metadata", JSONB, nullable=False, default=dict)
    created_at, updated_at = _timestamps()


class FrontSyncRun(Base):
    """One row per orchestration or single-resource sync invocation."""

    __tablename__ = "front_sync_runs"

    id = Column(UUID(as_uuid=False), primary_key=True)
    resource_type = Column(String(50), nullable=False, index=True)
    sync_type = Column(String(20), nullable=False, default="full", index=True)
    status = Column(String(30), nullable=False, default="running", index=True)
    started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Numeric(10, 3), nullable=True)
    records_created = Column(Integer, default=0)
    records_updated = Column(Integer, default=0)
    records_skipped = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)
    error_messages = Column(ARRAY(Text), nullable=False, default=list)
    metadata_ = Column("metadata", JSONB, nullable=False, default=dict)
    created_at, updated_at = _timestamps()
