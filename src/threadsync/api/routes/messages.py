"""
Message API routes.

Edits and deletions addressed by message id.
"""

from fastapi import APIRouter, Depends, Response, status

from threadsync.api.auth import AuthenticatedUser, get_current_user
from threadsync.api.dependencies import get_engine
from threadsync.api.schemas import (
    MessageResponse,
    MessageUpdate,
    TrailingDeleteResponse,
)
from threadsync.services import ConversationEngine

router = APIRouter()


@router.put("/{message_id}", response_model=MessageResponse)
def update_message(
    message_id: str,
    body: MessageUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: ConversationEngine = Depends(get_engine),
) -> MessageResponse:
    """Partially update a message."""
    message = engine.update_message(
        user.id,
        message_id,
        content=body.content,
        parts=body.parts,
        status=body.status,
        error_message=body.error_message,
    )
    return MessageResponse.from_message(message)


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_message(
    message_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: ConversationEngine = Depends(get_engine),
) -> Response:
    engine.delete_message(user.id, message_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{message_id}/delete-trailing", response_model=TrailingDeleteResponse)
def delete_trailing(
    message_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: ConversationEngine = Depends(get_engine),
) -> TrailingDeleteResponse:
    """Delete every message after this one."""
    deleted = engine.delete_trailing(user.id, message_id, inclusive=False)
    return TrailingDeleteResponse(
        deleted_count=deleted,
        message=f"Successfully deleted {deleted} trailing messages.",
    )


@router.post(
    "/{message_id}/delete-inclusive-trailing", response_model=TrailingDeleteResponse
)
def delete_inclusive_trailing(
    message_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: ConversationEngine = Depends(get_engine),
) -> TrailingDeleteResponse:
    """Delete this message and every message after it."""
    deleted = engine.delete_trailing(user.id, message_id, inclusive=True)
    return TrailingDeleteResponse(
        deleted_count=deleted,
        message=(
            f"Successfully deleted message and {deleted - 1} trailing messages. "
            f"Total: {deleted}"
        ),
    )
