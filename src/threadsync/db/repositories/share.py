"""
Share link repository.
"""

from typing import List

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from threadsync.db.repositories.base import BaseRepository
from threadsync.models.db import ShareLink


class ShareLinkRepository(BaseRepository[ShareLink]):
    """Repository for ShareLink model."""

    def __init__(self, session: Session):
        super().__init__(ShareLink, session)

    def list_by_owner(self, owner_id: str) -> List[ShareLink]:
        """
        Get a user's share links, newest first.

        Args:
            owner_id: Owner user id

        Returns:
            List of share links
        """
        return list(
            self.session.scalars(
                select(ShareLink)
                .where(ShareLink.owner_id == owner_id)
                .order_by(ShareLink.created_at.desc())
            )
        )

    def delete_by_message_ids(self, message_ids: List[str]) -> int:
        """
        Delete share links whose cutoff is one of the given messages.

        Args:
            message_ids: Message ids about to be deleted

        Returns:
            Number of share links deleted
        """
        if not message_ids:
            return 0
        result = self.session.execute(
            delete(ShareLink)
            .where(ShareLink.shared_up_to_message_id.in_(message_ids))
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    def delete_by_thread(self, thread_id: str) -> int:
        """Delete every share link of a thread."""
        result = self.session.execute(
            delete(ShareLink)
            .where(ShareLink.thread_id == thread_id)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0
