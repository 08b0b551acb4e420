"""
Message repository.

Messages are ordered within a thread by (created_at, sequence). Every query
that reasons about "before" or "after" a message goes through the ordering
helpers here so ties on created_at are always broken by sequence.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.orm import Session

from threadsync.db.repositories.base import BaseRepository
from threadsync.models.db import Message, MessageRole, MessageStatus, utc_now


def _ordered_after(anchor: Message, inclusive: bool = False):
    """SQL condition selecting messages ordered after ``anchor``."""
    later = or_(
        Message.created_at > anchor.created_at,
        and_(
            Message.created_at == anchor.created_at,
            Message.sequence > anchor.sequence,
        ),
    )
    if inclusive:
        return or_(later, Message.id == anchor.id)
    return later


def _ordered_up_to(anchor: Message):
    """SQL condition selecting messages ordered at or before ``anchor``."""
    return or_(
        Message.created_at < anchor.created_at,
        and_(
            Message.created_at == anchor.created_at,
            Message.sequence <= anchor.sequence,
        ),
    )


class MessageRepository(BaseRepository[Message]):
    """Repository for Message model."""

    def __init__(self, session: Session):
        super().__init__(Message, session)

    def next_sequence(self, thread_id: str) -> int:
        """
        Get the next insertion sequence number for a thread.

        Callers hold the thread row lock so two writers never read the same
        maximum.

        Args:
            thread_id: Thread id

        Returns:
            One past the highest sequence in the thread (1 for an empty thread)
        """
        current = self.session.scalar(
            select(func.max(Message.sequence)).where(Message.thread_id == thread_id)
        )
        return (current or 0) + 1

    def append(self, thread_id: str, **kwargs) -> Message:
        """
        Insert a message at the end of a thread's order.

        ``created_at`` never goes below the thread's latest timestamp, so a
        clock step backwards cannot place a new message before older ones.

        Args:
            thread_id: Thread id
            **kwargs: Message field values

        Returns:
            Created message
        """
        created_at = utc_now()
        latest = self.session.scalar(
            select(func.max(Message.created_at)).where(Message.thread_id == thread_id)
        )
        if latest is not None and latest > created_at:
            created_at = latest
        return self.create(
            thread_id=thread_id,
            sequence=self.next_sequence(thread_id),
            created_at=created_at,
            updated_at=created_at,
            **kwargs,
        )

    def list_for_thread(self, thread_id: str) -> List[Message]:
        """
        Get all messages in a thread in conversation order.

        Args:
            thread_id: Thread id

        Returns:
            Messages ordered by (created_at, sequence) ascending
        """
        return list(
            self.session.scalars(
                select(Message)
                .where(Message.thread_id == thread_id)
                .order_by(Message.created_at, Message.sequence)
            )
        )

    def list_up_to(self, anchor: Message) -> List[Message]:
        """
        Get the prefix of a thread ending at (and including) ``anchor``.

        Args:
            anchor: Last message to include

        Returns:
            Messages ordered by (created_at, sequence) ascending
        """
        return list(
            self.session.scalars(
                select(Message)
                .where(Message.thread_id == anchor.thread_id, _ordered_up_to(anchor))
                .order_by(Message.created_at, Message.sequence)
            )
        )

    def trailing_ids(self, anchor: Message, inclusive: bool = False) -> List[str]:
        """
        Get ids of the messages ordered after ``anchor`` in its thread.

        Args:
            anchor: Reference message
            inclusive: Include the anchor itself

        Returns:
            Message ids
        """
        return list(
            self.session.scalars(
                select(Message.id).where(
                    Message.thread_id == anchor.thread_id,
                    _ordered_after(anchor, inclusive),
                )
            )
        )

    def delete_by_ids(self, ids: List[str]) -> int:
        """
        Bulk delete messages by id.

        Args:
            ids: Message ids

        Returns:
            Number of rows deleted
        """
        if not ids:
            return 0
        result = self.session.execute(
            delete(Message)
            .where(Message.id.in_(ids))
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    def delete_by_thread(self, thread_id: str) -> int:
        """Bulk delete every message of a thread."""
        result = self.session.execute(
            delete(Message)
            .where(Message.thread_id == thread_id)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    def find_live_generation(
        self, thread_id: str, active_since: Optional[datetime] = None
    ) -> Optional[Message]:
        """
        Find an assistant message in the thread that is still being generated.

        Args:
            thread_id: Thread id
            active_since: Ignore live messages not updated since this time

        Returns:
            The most recent pending or streaming assistant message, or None
        """
        query = select(Message).where(
            Message.thread_id == thread_id,
            Message.role == MessageRole.ASSISTANT,
            Message.status.in_([MessageStatus.PENDING, MessageStatus.STREAMING]),
        )
        if active_since is not None:
            query = query.where(Message.updated_at >= active_since)
        return self.session.scalars(
            query.order_by(Message.created_at.desc(), Message.sequence.desc())
        ).first()
