"""Database models and annotation types."""

from threadsync.models.db import (
    Base,
    Message,
    MessageRole,
    MessageStatus,
    ShareLink,
    Thread,
    Visibility,
    generate_id,
    utc_now,
)

__all__ = [
    "Base",
    "Message",
    "MessageRole",
    "MessageStatus",
    "ShareLink",
    "Thread",
    "Visibility",
    "generate_id",
    "utc_now",
]
