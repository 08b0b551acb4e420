"""
Thread repository.
"""

from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from threadsync.db.repositories.base import BaseRepository
from threadsync.models.db import Thread


class ThreadRepository(BaseRepository[Thread]):
    """Repository for Thread model."""

    def __init__(self, session: Session):
        super().__init__(Thread, session)

    def get_for_update(self, id: str) -> Optional[Thread]:
        """
        Get a thread and lock its row for the rest of the transaction.

        Structural changes to a thread's message list (append, trailing
        delete, branch copy, cascade delete) take this lock so they serialize
        per thread. SQLite ignores FOR UPDATE; its writes are serialized by
        the database lock instead.

        Args:
            id: Thread id

        Returns:
            Locked thread or None
        """
        return self.session.scalars(
            select(Thread).where(Thread.id == id).with_for_update()
        ).first()

    def exists(self, id: str) -> bool:
        """Check whether a thread id is taken."""
        return (
            self.session.scalar(select(Thread.id).where(Thread.id == id)) is not None
        )

    def list_by_owner(
        self, owner_id: str, limit: Optional[int] = None, offset: int = 0
    ) -> List[Thread]:
        """
        Get a user's threads, most recently active first.

        Args:
            owner_id: Owner user id
            limit: Maximum number of results
            offset: Number of results to skip

        Returns:
            List of threads ordered by updated_at descending
        """
        query = (
            select(Thread)
            .where(Thread.owner_id == owner_id)
            .order_by(Thread.updated_at.desc(), Thread.created_at.desc())
            .offset(offset)
        )
        if limit:
            query = query.limit(limit)
        return list(self.session.scalars(query))

    def clear_origin_references(self, origin_thread_id: str) -> int:
        """
        Detach branches from a deleted origin thread.

        Args:
            origin_thread_id: Id of the thread being deleted

        Returns:
            Number of branches updated
        """
        result = self.session.execute(
            update(Thread)
            .where(Thread.origin_thread_id == origin_thread_id)
            .values(origin_thread_id=None)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0
