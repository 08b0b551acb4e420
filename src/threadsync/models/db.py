"""
SQLAlchemy database models for threadsync.

These models represent the durable state of conversations: threads, their
ordered messages, and the share links that expose a prefix of a thread.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests and local dev)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def generate_id() -> str:
    """Generate an opaque identifier for threads, messages and share tokens."""
    return uuid.uuid4().hex


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware DateTime that always loads as UTC.

    SQLite drops tzinfo on storage; normalizing on load keeps comparisons and
    serialization consistent across backends.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Visibility(str, enum.Enum):
    """Who may read a thread."""

    PRIVATE = "private"  # Owner only
    PUBLIC = "public"  # Any authenticated user


class MessageRole(str, enum.Enum):
    """Author of a message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class MessageStatus(str, enum.Enum):
    """Lifecycle status of a message; assistant messages move through all of them."""

    PENDING = "pending"  # Created, generation not yet emitting
    STREAMING = "streaming"  # Generation emitting chunks
    DONE = "done"
    ERROR = "error"
    STOPPED = "stopped"  # Cancelled by the caller

    @property
    def is_live(self) -> bool:
        return self in (MessageStatus.PENDING, MessageStatus.STREAMING)


def _enum_column(enum_cls: type[enum.Enum]) -> Enum:
    return Enum(
        enum_cls,
        native_enum=False,
        values_callable=lambda x: [e.value for e in x],
    )


class Thread(Base):
    """A conversation owned by one user."""

    __tablename__ = "threads"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=generate_id)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    visibility: Mapped[Visibility] = mapped_column(
        _enum_column(Visibility),
        nullable=False,
        default=Visibility.PRIVATE,
        server_default=Visibility.PRIVATE.value,
    )
    # Non-owning back-reference; cleared when the origin thread is deleted
    origin_thread_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )

    __table_args__ = (Index("idx_threads_owner_updated", "owner_id", "updated_at"),)

    def is_readable_by(self, requester_id: str) -> bool:
        return self.owner_id == requester_id or self.visibility == Visibility.PUBLIC

    def touch(self) -> None:
        """Mark the thread as recently active."""
        self.updated_at = utc_now()

    def __repr__(self) -> str:
        return (
            f"<Thread(id={self.id!r}, owner_id={self.owner_id!r}, "
            f"visibility={self.visibility.value})>"
        )


class Message(Base):
    """One turn in a thread.

    Messages are totally ordered within their thread by (created_at, sequence);
    ``sequence`` is assigned at insert time and breaks timestamp ties.
    """

    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=generate_id)
    thread_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("threads.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[MessageRole] = mapped_column(_enum_column(MessageRole), nullable=False)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    parts: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    model: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[MessageStatus] = mapped_column(
        _enum_column(MessageStatus),
        nullable=False,
        default=MessageStatus.DONE,
        server_default=MessageStatus.DONE.value,
    )
    annotations: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )

    thread: Mapped["Thread"] = relationship()

    __table_args__ = (
        UniqueConstraint("thread_id", "sequence", name="uq_messages_thread_sequence"),
        Index("idx_messages_thread_order", "thread_id", "created_at", "sequence"),
    )
    # Optimistic locking: concurrent updates to the same row raise StaleDataError
    __mapper_args__ = {"version_id_col": version}

    @property
    def is_errored(self) -> bool:
        return self.status == MessageStatus.ERROR

    @property
    def is_stopped(self) -> bool:
        return self.status == MessageStatus.STOPPED

    def __repr__(self) -> str:
        return (
            f"<Message(id={self.id!r}, thread_id={self.thread_id!r}, "
            f"role={self.role.value}, seq={self.sequence})>"
        )


class ShareLink(Base):
    """Capability token exposing a thread up to (and including) one message."""

    __tablename__ = "share_links"

    token: Mapped[str] = mapped_column(String(128), primary_key=True)
    thread_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("threads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    shared_up_to_message_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )

    thread: Mapped["Thread"] = relationship()

    def __repr__(self) -> str:
        return (
            f"<ShareLink(token={self.token!r}, thread_id={self.thread_id!r}, "
            f"up_to={self.shared_up_to_message_id!r})>"
        )
