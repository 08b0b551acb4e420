"""
Share links: unauthenticated read access to a thread up to a cutoff message.
"""

import logging
import re
import secrets
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from threadsync.db.repositories import (
    MessageRepository,
    ShareLinkRepository,
    ThreadRepository,
)
from threadsync.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from threadsync.models.db import Message, ShareLink, Thread

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def generate_share_token() -> str:
    """Generate a URL-safe share token."""
    return secrets.token_urlsafe(16)


@dataclass
class SharedThread:
    """A thread as seen through a share link."""

    share: ShareLink
    thread: Thread
    messages: list[Message]


class ShareService:
    """Creates, lists, deletes and resolves share links."""

    def __init__(self, session: Session):
        self.session = session
        self.threads = ThreadRepository(session)
        self.messages = MessageRepository(session)
        self.shares = ShareLinkRepository(session)

    def create_share(
        self,
        owner_id: str,
        thread_id: str,
        shared_up_to_message_id: str,
        suggested_token: Optional[str] = None,
    ) -> ShareLink:
        """
        Create a share link exposing ``thread_id`` up to a message.

        A suggested token that is already taken is rejected rather than
        replaced, so the client always knows which URL it handed out.

        Raises:
            NotFoundError: Thread or message missing
            ForbiddenError: Requester does not own the thread
            ValidationError: Cutoff message in another thread, or malformed token
            ConflictError: Suggested token already in use
        """
        thread = self.threads.get(thread_id)
        if thread is None:
            raise NotFoundError("thread", thread_id)
        if thread.owner_id != owner_id:
            raise ForbiddenError(f"Not the owner of thread {thread_id}")

        message = self.messages.get(shared_up_to_message_id)
        if message is None:
            raise NotFoundError("message", shared_up_to_message_id)
        if message.thread_id != thread.id:
            raise ValidationError(
                f"Message {shared_up_to_message_id} does not belong to thread "
                f"{thread_id}"
            )

        if suggested_token is not None:
            if not TOKEN_PATTERN.match(suggested_token):
                raise ValidationError(
                    "Share token must be 1-128 characters of letters, digits, '-' or '_'"
                )
            if self.shares.get(suggested_token) is not None:
                raise ConflictError(f"Share token already in use: {suggested_token}")
            token = suggested_token
        else:
            token = generate_share_token()

        try:
            share = self.shares.create(
                token=token,
                thread_id=thread.id,
                owner_id=owner_id,
                shared_up_to_message_id=message.id,
            )
        except IntegrityError as e:
            raise ConflictError(f"Share token already in use: {token}") from e

        logger.info(f"Created share link for thread {thread.id} up to {message.id}")
        return share

    def list_shares(self, owner_id: str) -> list[ShareLink]:
        """List the share links a user created, newest first."""
        return self.shares.list_by_owner(owner_id)

    def delete_share(self, owner_id: str, token: str) -> None:
        """Delete a share link owned by ``owner_id``."""
        share = self.shares.get(token)
        if share is None:
            raise NotFoundError("share link", token)
        if share.owner_id != owner_id:
            raise ForbiddenError("Not the owner of this share link")
        self.shares.delete(share)

    def resolve_share(self, token: str) -> SharedThread:
        """
        Resolve a share token to the thread and its visible history.

        No authentication: holding the token is the capability.

        Returns:
            SharedThread with messages ordered up to and including the cutoff
        """
        share = self.shares.get(token)
        if share is None:
            raise NotFoundError("share link", token)

        cutoff = self.messages.get(share.shared_up_to_message_id)
        if cutoff is None:
            raise NotFoundError("share link", token)

        return SharedThread(
            share=share,
            thread=share.thread,
            messages=self.messages.list_up_to(cutoff),
        )
