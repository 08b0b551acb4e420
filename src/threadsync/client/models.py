"""
Client-side models for threadsync API payloads.

These mirror the server's JSON responses and are independent of the server's
database types.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from threadsync.models.annotations import resolve_message_model


class ThreadData(BaseModel):
    """A thread as returned by the API."""

    id: str
    user_id: str
    title: str
    visibility: str = "private"
    origin_thread_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"extra": "allow"}


class MessageData(BaseModel):
    """A message as returned by the API."""

    id: str
    thread_id: str
    role: str
    content: Optional[str] = None
    parts: list[Any] = Field(default_factory=list)
    annotations: list[dict[str, Any]] = Field(default_factory=list)
    model: Optional[str] = None
    status: str = "done"
    is_errored: bool = False
    is_stopped: bool = False
    error_message: Optional[str] = None
    sequence: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = {"extra": "allow"}

    @property
    def resolved_model(self) -> Optional[str]:
        """Model that produced the message: explicit field, else model annotation."""
        return resolve_message_model(self.model, self.annotations)


class ShareData(BaseModel):
    """A share link as returned by the API."""

    token: str
    thread_id: str
    user_id: str
    shared_up_to_message_id: str
    created_at: datetime


class SharedThreadData(BaseModel):
    thread: ThreadData
    messages: list[MessageData]


class TrailingDeleteResult(BaseModel):
    deleted_count: int
    message: str


class GenerationEvent(BaseModel):
    """One server-sent event from a streamed generation."""

    event: str  # start, delta, done, stopped, error
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.event in ("done", "stopped", "error")
