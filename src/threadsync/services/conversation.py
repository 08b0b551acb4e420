"""
Conversation engine.

The single authorizer of thread and message mutations. Every operation runs
inside the caller's session; the caller commits (``get_db`` / ``db_session``)
so multi-step changes such as cascading deletes apply atomically or not at
all.
"""

import enum
import logging
from typing import Any, Optional, Sequence, TypeVar

import pydantic
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from threadsync.db.repositories import (
    MessageRepository,
    ShareLinkRepository,
    ThreadRepository,
)
from threadsync.exceptions import (
    ConflictError,
    ForbiddenError,
    GenerationFailedError,
    NotFoundError,
    ThreadSyncError,
    ValidationError,
)
from threadsync.models.annotations import dump_annotations, parse_annotations
from threadsync.models.db import (
    Message,
    MessageRole,
    MessageStatus,
    Thread,
    Visibility,
    utc_now,
)
from threadsync.providers.title import TitleGenerator

logger = logging.getLogger(__name__)

DEFAULT_THREAD_TITLE = "New Thread"
MAX_THREAD_ID_LENGTH = 64

E = TypeVar("E", bound=enum.Enum)


def coerce_enum(enum_cls: type[E], value: Any, field: str) -> E:
    """Convert a raw value to ``enum_cls``, raising ValidationError if invalid."""
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(
            f"Invalid {field}: {value!r} (expected one of {allowed})"
        ) from None


def normalize_annotations(raw: Optional[Sequence[Any]]) -> list[dict[str, Any]]:
    """Validate client-supplied annotations into their stored JSON form."""
    if not raw:
        return []
    if not all(
        isinstance(item, dict) and isinstance(item.get("type"), str) for item in raw
    ):
        raise ValidationError("Annotations must be objects with a string 'type' field")
    try:
        return dump_annotations(parse_annotations(raw))
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid annotation: {e.errors()[0]['msg']}") from e


def display_title(thread: Thread) -> str:
    """Title shown for a thread whose title has not been generated yet."""
    return thread.title or DEFAULT_THREAD_TITLE


class ConversationEngine:
    """Enforces ownership, ordering, branching and deletion rules."""

    def __init__(
        self,
        session: Session,
        title_generator: Optional[TitleGenerator] = None,
    ):
        self.session = session
        self.threads = ThreadRepository(session)
        self.messages = MessageRepository(session)
        self.shares = ShareLinkRepository(session)
        self.title_generator = title_generator

    # ===== Access helpers =====

    def _require_thread(self, thread_id: str, lock: bool = False) -> Thread:
        thread = (
            self.threads.get_for_update(thread_id) if lock else self.threads.get(thread_id)
        )
        if thread is None:
            raise NotFoundError("thread", thread_id)
        return thread

    def _require_owned_thread(
        self, owner_id: str, thread_id: str, lock: bool = False
    ) -> Thread:
        thread = self._require_thread(thread_id, lock=lock)
        if thread.owner_id != owner_id:
            raise ForbiddenError(f"Not the owner of thread {thread_id}")
        return thread

    def _require_readable_thread(
        self, requester_id: str, thread_id: str, lock: bool = False
    ) -> Thread:
        thread = self._require_thread(thread_id, lock=lock)
        if not thread.is_readable_by(requester_id):
            raise ForbiddenError(f"Thread {thread_id} is private")
        return thread

    def _require_owned_message(
        self, owner_id: str, message_id: str, lock_thread: bool = False
    ) -> tuple[Message, Thread]:
        message = self.messages.get(message_id)
        if message is None:
            raise NotFoundError("message", message_id)
        thread = self._require_owned_thread(
            owner_id, message.thread_id, lock=lock_thread
        )
        return message, thread

    # ===== Threads =====

    def create_thread(
        self,
        owner_id: str,
        title: Optional[str] = None,
        visibility: Visibility | str = Visibility.PRIVATE,
    ) -> Thread:
        """Create an empty thread owned by ``owner_id``."""
        thread = self.threads.create(
            owner_id=owner_id,
            title=title,
            visibility=coerce_enum(Visibility, visibility, "visibility"),
        )
        logger.info(f"Created thread {thread.id} for user {owner_id}")
        return thread

    def get_owned_thread(
        self, owner_id: str, thread_id: str, lock: bool = False
    ) -> Thread:
        """Get a thread the requester may modify, optionally locking its row."""
        return self._require_owned_thread(owner_id, thread_id, lock=lock)

    def list_threads(self, owner_id: str, limit: Optional[int] = None) -> list[Thread]:
        """List a user's threads, most recently active first."""
        return self.threads.list_by_owner(owner_id, limit=limit)

    def get_thread(self, requester_id: str, thread_id: str) -> Thread:
        """
        Get a thread the requester may read.

        Raises:
            NotFoundError: If the thread does not exist
            ForbiddenError: If the thread is private and not owned by the requester
        """
        return self._require_readable_thread(requester_id, thread_id)

    def delete_thread(self, owner_id: str, thread_id: str) -> None:
        """
        Delete a thread with all of its messages and share links.

        Branches created from the thread keep existing; their origin
        reference is cleared.
        """
        thread = self._require_owned_thread(owner_id, thread_id, lock=True)

        share_count = self.shares.delete_by_thread(thread.id)
        message_count = self.messages.delete_by_thread(thread.id)
        self.threads.clear_origin_references(thread.id)
        self.threads.delete(thread)

        logger.info(
            f"Deleted thread {thread_id} ({message_count} messages, "
            f"{share_count} share links)"
        )

    def set_visibility(
        self, owner_id: str, thread_id: str, visibility: Visibility | str
    ) -> Thread:
        """Make a thread public or private."""
        thread = self._require_owned_thread(owner_id, thread_id)
        thread.visibility = coerce_enum(Visibility, visibility, "visibility")
        thread.touch()
        self.session.flush()
        return thread

    def branch_thread(
        self,
        requester_id: str,
        original_thread_id: str,
        anchor_message_id: str,
        suggested_new_id: Optional[str] = None,
    ) -> Thread:
        """
        Create a private copy of a thread's history up to an anchor message.

        Copies keep their role, content, parts, model, annotations and
        original ``created_at``; they get new ids and fresh sequence numbers
        in the same relative order.

        Raises:
            NotFoundError: Thread or anchor message missing
            ForbiddenError: Requester cannot read the original thread
            ValidationError: Anchor belongs to another thread, or bad id
            ConflictError: Suggested id already in use
        """
        original = self._require_readable_thread(
            requester_id, original_thread_id, lock=True
        )

        anchor = self.messages.get(anchor_message_id)
        if anchor is None:
            raise NotFoundError("message", anchor_message_id)
        if anchor.thread_id != original.id:
            raise ValidationError(
                f"Message {anchor_message_id} does not belong to thread "
                f"{original_thread_id}"
            )

        if suggested_new_id is not None:
            if not suggested_new_id or len(suggested_new_id) > MAX_THREAD_ID_LENGTH:
                raise ValidationError(
                    f"Thread id must be 1-{MAX_THREAD_ID_LENGTH} characters"
                )
            if self.threads.exists(suggested_new_id):
                raise ConflictError(f"Thread id already exists: {suggested_new_id}")

        fields: dict[str, Any] = {
            "owner_id": requester_id,
            "title": f"Branch of {display_title(original)}",
            "visibility": Visibility.PRIVATE,
            "origin_thread_id": original.id,
        }
        if suggested_new_id is not None:
            fields["id"] = suggested_new_id
        branch = self.threads.create(**fields)

        prefix = self.messages.list_up_to(anchor)
        for sequence, source in enumerate(prefix, start=1):
            # A generation still running in the original cannot continue here
            status = (
                MessageStatus.STOPPED if source.status.is_live else source.status
            )
            self.session.add(
                Message(
                    thread_id=branch.id,
                    role=source.role,
                    content=source.content,
                    parts=list(source.parts or []),
                    model=source.model,
                    status=status,
                    annotations=list(source.annotations or []),
                    error_message=source.error_message,
                    sequence=sequence,
                    created_at=source.created_at,
                )
            )
        self.session.flush()

        logger.info(
            f"Branched thread {original.id} at {anchor.id} into {branch.id} "
            f"({len(prefix)} messages)"
        )
        return branch

    def generate_title(self, owner_id: str, thread_id: str, user_query: str) -> Thread:
        """
        Generate and store a title for the thread.

        Raises:
            GenerationFailedError: Generator failed; the title is unchanged
            UpstreamTimeoutError: Generator timed out; the title is unchanged
        """
        thread = self._require_owned_thread(owner_id, thread_id)
        if not user_query or not user_query.strip():
            raise ValidationError("user_query must not be empty")
        if self.title_generator is None:
            raise GenerationFailedError("Title generation is not configured")

        try:
            title = self.title_generator.generate(user_query)
        except ThreadSyncError:
            raise
        except Exception as e:
            raise GenerationFailedError(f"Title generation failed: {e}") from e

        thread.title = title
        thread.touch()
        self.session.flush()
        return thread

    # ===== Messages =====

    def post_message(
        self,
        requester_id: str,
        thread_id: str,
        role: MessageRole | str,
        content: Optional[str] = None,
        parts: Optional[list[Any]] = None,
        model: Optional[str] = None,
        status: Optional[MessageStatus | str] = None,
        annotations: Optional[list[dict[str, Any]]] = None,
    ) -> Message:
        """
        Append a message at the end of a thread.

        The thread must already exist and be owned by the requester.

        Raises:
            ValidationError: Neither content nor parts supplied, or bad enum value
        """
        role = coerce_enum(MessageRole, role, "role")
        status = (
            coerce_enum(MessageStatus, status, "status")
            if status is not None
            else MessageStatus.DONE
        )
        if content is None and not parts:
            raise ValidationError("A message needs content or parts")
        stored_annotations = normalize_annotations(annotations)

        thread = self._require_owned_thread(requester_id, thread_id, lock=True)
        message = self.messages.append(
            thread.id,
            role=role,
            content=content,
            parts=list(parts or []),
            model=model,
            status=status,
            annotations=stored_annotations,
        )
        thread.touch()
        self.session.flush()
        return message

    def list_messages(self, requester_id: str, thread_id: str) -> list[Message]:
        """List a readable thread's messages in conversation order."""
        thread = self._require_readable_thread(requester_id, thread_id)
        return self.messages.list_for_thread(thread.id)

    def update_message(
        self,
        owner_id: str,
        message_id: str,
        content: Optional[str] = None,
        parts: Optional[list[Any]] = None,
        status: Optional[MessageStatus | str] = None,
        error_message: Optional[str] = None,
    ) -> Message:
        """
        Partially update a message. Fields left as None are unchanged.

        Setting any status other than ``error`` clears ``error_message``.

        Raises:
            ValidationError: error_message given for a message not in error
            ConflictError: The message changed concurrently
        """
        message, thread = self._require_owned_message(owner_id, message_id)

        new_status = (
            coerce_enum(MessageStatus, status, "status")
            if status is not None
            else message.status
        )
        if error_message is not None and new_status != MessageStatus.ERROR:
            raise ValidationError(
                f"error_message requires status 'error' (message is {new_status.value})"
            )

        changes: dict[str, Any] = {"updated_at": utc_now()}
        if content is not None:
            changes["content"] = content
        if parts is not None:
            changes["parts"] = list(parts)
        if status is not None:
            changes["status"] = new_status
            if new_status != MessageStatus.ERROR:
                changes["error_message"] = None
        if error_message is not None:
            changes["error_message"] = error_message

        thread.touch()
        try:
            self.messages.update(message, **changes)
        except StaleDataError as e:
            raise ConflictError(
                f"Message {message_id} was modified or deleted concurrently"
            ) from e
        return message

    def delete_message(self, owner_id: str, message_id: str) -> None:
        """Delete exactly one message and any share link cut off at it."""
        message, thread = self._require_owned_message(
            owner_id, message_id, lock_thread=True
        )
        self.shares.delete_by_message_ids([message.id])
        self.messages.delete_by_ids([message.id])
        thread.touch()
        self.session.flush()

    def delete_trailing(self, owner_id: str, message_id: str, inclusive: bool) -> int:
        """
        Delete every message ordered after ``message_id`` in its thread.

        Args:
            owner_id: Requesting user, must own the thread
            message_id: Reference message
            inclusive: Also delete the reference message

        Returns:
            Number of messages deleted
        """
        anchor, thread = self._require_owned_message(
            owner_id, message_id, lock_thread=True
        )
        ids = self.messages.trailing_ids(anchor, inclusive=inclusive)
        self.shares.delete_by_message_ids(ids)
        deleted = self.messages.delete_by_ids(ids)
        thread.touch()
        self.session.flush()

        logger.info(
            f"Deleted {deleted} trailing messages from thread {thread.id} "
            f"(anchor {message_id}, inclusive={inclusive})"
        )
        return deleted
