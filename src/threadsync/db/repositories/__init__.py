"""
Repository layer for database access.
"""

from threadsync.db.repositories.base import BaseRepository
from threadsync.db.repositories.message import MessageRepository
from threadsync.db.repositories.share import ShareLinkRepository
from threadsync.db.repositories.thread import ThreadRepository

__all__ = [
    "BaseRepository",
    "MessageRepository",
    "ShareLinkRepository",
    "ThreadRepository",
]
