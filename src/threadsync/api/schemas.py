"""
API schemas for threadsync.

Pydantic models for request/response validation. Field names are
snake_case on the wire.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from threadsync.models.annotations import resolve_message_model
from threadsync.models.db import (
    Message,
    MessageRole,
    MessageStatus,
    ShareLink,
    Thread,
    Visibility,
)
from threadsync.services.conversation import display_title

# ===== Threads =====


class ThreadCreate(BaseModel):
    """Request body for creating a thread."""

    title: Optional[str] = Field(None, max_length=255)
    visibility: Visibility = Visibility.PRIVATE


class ThreadResponse(BaseModel):
    """Response schema for Thread."""

    id: str
    user_id: str
    title: str
    visibility: Visibility
    origin_thread_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_thread(cls, thread: Thread) -> "ThreadResponse":
        return cls(
            id=thread.id,
            user_id=thread.owner_id,
            title=display_title(thread),
            visibility=thread.visibility,
            origin_thread_id=thread.origin_thread_id,
            created_at=thread.created_at,
            updated_at=thread.updated_at,
        )


class VisibilityUpdate(BaseModel):
    visibility: Visibility


class BranchRequest(BaseModel):
    anchor_message_id: str
    new_thread_id: Optional[str] = None


class GenerateTitleRequest(BaseModel):
    user_query: str = Field(..., min_length=1)


# ===== Messages =====


class MessageCreate(BaseModel):
    """Request body for posting a message."""

    role: MessageRole
    content: Optional[str] = None
    parts: list[Any] = Field(default_factory=list)
    model: Optional[str] = None
    status: Optional[MessageStatus] = None
    annotations: Optional[list[dict[str, Any]]] = None


class MessageUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    content: Optional[str] = None
    parts: Optional[list[Any]] = None
    status: Optional[MessageStatus] = None
    error_message: Optional[str] = None


class MessageResponse(BaseModel):
    """Response schema for Message."""

    id: str
    thread_id: str
    role: MessageRole
    content: Optional[str] = None
    parts: list[Any] = Field(default_factory=list)
    annotations: list[dict[str, Any]] = Field(default_factory=list)
    model: Optional[str] = None
    status: MessageStatus
    is_errored: bool = False
    is_stopped: bool = False
    error_message: Optional[str] = None
    sequence: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.id,
            thread_id=message.thread_id,
            role=message.role,
            content=message.content,
            parts=message.parts or [],
            annotations=message.annotations or [],
            model=resolve_message_model(message.model, message.annotations),
            status=message.status,
            is_errored=message.is_errored,
            is_stopped=message.is_stopped,
            error_message=message.error_message,
            sequence=message.sequence,
            created_at=message.created_at,
            updated_at=message.updated_at,
        )


class TrailingDeleteResponse(BaseModel):
    deleted_count: int
    message: str


class GenerateRequest(BaseModel):
    """Request body for generating an assistant response."""

    content: Optional[str] = None
    parts: list[Any] = Field(default_factory=list)
    model: Optional[str] = None
    stream: bool = True
    timeout: Optional[float] = Field(None, gt=0)
    max_tokens: Optional[int] = Field(None, gt=0)
    temperature: Optional[float] = Field(None, ge=0, le=2)


class StopResponse(BaseModel):
    stopped: bool


# ===== Shares =====


class ShareCreate(BaseModel):
    thread_id: str
    shared_up_to_message_id: str
    token: Optional[str] = None


class ShareResponse(BaseModel):
    """Response schema for ShareLink."""

    token: str
    thread_id: str
    user_id: str
    shared_up_to_message_id: str
    created_at: datetime

    @classmethod
    def from_share(cls, share: ShareLink) -> "ShareResponse":
        return cls(
            token=share.token,
            thread_id=share.thread_id,
            user_id=share.owner_id,
            shared_up_to_message_id=share.shared_up_to_message_id,
            created_at=share.created_at,
        )


class SharedThreadResponse(BaseModel):
    thread: ThreadResponse
    messages: list[MessageResponse]


# ===== Errors / health =====


class ErrorResponse(BaseModel):
    detail: str
    error: str


class HealthResponse(BaseModel):
    status: str
    database: str
