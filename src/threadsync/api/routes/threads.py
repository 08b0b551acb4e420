"""
Thread API routes.

Endpoints for thread CRUD, visibility, branching, titles, the messages of a
thread, and assistant generation.
"""

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse, StreamingResponse

from threadsync.api.auth import AuthenticatedUser, get_current_user
from threadsync.api.dependencies import get_coordinator, get_engine
from threadsync.api.schemas import (
    BranchRequest,
    GenerateRequest,
    GenerateTitleRequest,
    MessageCreate,
    MessageResponse,
    StopResponse,
    ThreadCreate,
    ThreadResponse,
    VisibilityUpdate,
)
from threadsync.api.sse import generation_events
from threadsync.services import (
    ConversationEngine,
    GenerationOptions,
    StreamingCoordinator,
)

router = APIRouter()


@router.post("", response_model=ThreadResponse, status_code=status.HTTP_201_CREATED)
def create_thread(
    body: ThreadCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: ConversationEngine = Depends(get_engine),
) -> ThreadResponse:
    """Create an empty thread."""
    thread = engine.create_thread(user.id, title=body.title, visibility=body.visibility)
    return ThreadResponse.from_thread(thread)


@router.get("", response_model=list[ThreadResponse])
def list_threads(
    user: AuthenticatedUser = Depends(get_current_user),
    engine: ConversationEngine = Depends(get_engine),
) -> list[ThreadResponse]:
    """List the requester's threads, most recently active first."""
    return [ThreadResponse.from_thread(t) for t in engine.list_threads(user.id)]


@router.get("/{thread_id}", response_model=ThreadResponse)
def get_thread(
    thread_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: ConversationEngine = Depends(get_engine),
) -> ThreadResponse:
    return ThreadResponse.from_thread(engine.get_thread(user.id, thread_id))


@router.delete("/{thread_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_thread(
    thread_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: ConversationEngine = Depends(get_engine),
) -> Response:
    """Delete a thread with its messages and share links."""
    engine.delete_thread(user.id, thread_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{thread_id}/visibility", response_model=ThreadResponse)
def set_visibility(
    thread_id: str,
    body: VisibilityUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: ConversationEngine = Depends(get_engine),
) -> ThreadResponse:
    thread = engine.set_visibility(user.id, thread_id, body.visibility)
    return ThreadResponse.from_thread(thread)


@router.post(
    "/{thread_id}/branch",
    response_model=ThreadResponse,
    status_code=status.HTTP_201_CREATED,
)
def branch_thread(
    thread_id: str,
    body: BranchRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: ConversationEngine = Depends(get_engine),
) -> ThreadResponse:
    """Copy the thread's history up to an anchor message into a new thread."""
    branch = engine.branch_thread(
        user.id,
        thread_id,
        body.anchor_message_id,
        suggested_new_id=body.new_thread_id,
    )
    return ThreadResponse.from_thread(branch)


@router.post("/{thread_id}/generate-title", response_model=ThreadResponse)
def generate_title(
    thread_id: str,
    body: GenerateTitleRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: ConversationEngine = Depends(get_engine),
) -> ThreadResponse:
    thread = engine.generate_title(user.id, thread_id, body.user_query)
    return ThreadResponse.from_thread(thread)


# ===== Messages of a thread =====


@router.post(
    "/{thread_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
def post_message(
    thread_id: str,
    body: MessageCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: ConversationEngine = Depends(get_engine),
) -> MessageResponse:
    """Append a message to the end of the thread."""
    message = engine.post_message(
        user.id,
        thread_id,
        body.role,
        content=body.content,
        parts=body.parts,
        model=body.model,
        status=body.status,
        annotations=body.annotations,
    )
    return MessageResponse.from_message(message)


@router.get("/{thread_id}/messages", response_model=list[MessageResponse])
def list_messages(
    thread_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: ConversationEngine = Depends(get_engine),
) -> list[MessageResponse]:
    """List the thread's messages in conversation order."""
    return [
        MessageResponse.from_message(m) for m in engine.list_messages(user.id, thread_id)
    ]


# ===== Generation =====


@router.post("/{thread_id}/generate")
def generate(
    thread_id: str,
    body: GenerateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    coordinator: StreamingCoordinator = Depends(get_coordinator),
) -> Response:
    """
    Post a user message and generate the assistant reply.

    Streams server-sent events by default; with ``stream: false`` waits for
    the full reply and returns the assistant message (201).
    """
    options = GenerationOptions(
        timeout=body.timeout,
        max_tokens=body.max_tokens,
        temperature=body.temperature,
    )

    if not body.stream:
        message = coordinator.generate(
            user.id,
            thread_id,
            body.content,
            parts=body.parts,
            model=body.model,
            options=options,
        )
        return JSONResponse(
            status_code=status.HTTP_201_CREATED,
            content=MessageResponse.from_message(message).model_dump(mode="json"),
        )

    generation = coordinator.start(
        user.id,
        thread_id,
        body.content,
        parts=body.parts,
        model=body.model,
        options=options,
    )
    return StreamingResponse(
        generation_events(generation),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/{thread_id}/generate/stop", response_model=StopResponse)
def stop_generation(
    thread_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    coordinator: StreamingCoordinator = Depends(get_coordinator),
) -> StopResponse:
    """Cancel the thread's active generation, if any."""
    return StopResponse(stopped=coordinator.cancel(user.id, thread_id))
