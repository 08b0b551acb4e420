"""
Share link API routes.

``GET /shares/{token}/data`` is the only unauthenticated read endpoint.
"""

from fastapi import APIRouter, Depends, Response, status

from threadsync.api.auth import AuthenticatedUser, get_current_user
from threadsync.api.dependencies import get_share_service
from threadsync.api.schemas import (
    MessageResponse,
    ShareCreate,
    ShareResponse,
    SharedThreadResponse,
    ThreadResponse,
)
from threadsync.services import ShareService

router = APIRouter()


@router.post("", response_model=ShareResponse, status_code=status.HTTP_201_CREATED)
def create_share(
    body: ShareCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    shares: ShareService = Depends(get_share_service),
) -> ShareResponse:
    """Share a thread up to (and including) a message."""
    share = shares.create_share(
        user.id,
        body.thread_id,
        body.shared_up_to_message_id,
        suggested_token=body.token,
    )
    return ShareResponse.from_share(share)


@router.get("", response_model=list[ShareResponse])
def list_shares(
    user: AuthenticatedUser = Depends(get_current_user),
    shares: ShareService = Depends(get_share_service),
) -> list[ShareResponse]:
    return [ShareResponse.from_share(s) for s in shares.list_shares(user.id)]


@router.delete("/{token}", status_code=status.HTTP_204_NO_CONTENT)
def delete_share(
    token: str,
    user: AuthenticatedUser = Depends(get_current_user),
    shares: ShareService = Depends(get_share_service),
) -> Response:
    shares.delete_share(user.id, token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{token}/data", response_model=SharedThreadResponse)
def get_shared_thread(
    token: str,
    shares: ShareService = Depends(get_share_service),
) -> SharedThreadResponse:
    """Resolve a share token to the thread and its visible messages."""
    shared = shares.resolve_share(token)
    return SharedThreadResponse(
        thread=ThreadResponse.from_thread(shared.thread),
        messages=[MessageResponse.from_message(m) for m in shared.messages],
    )
