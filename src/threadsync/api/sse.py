"""
Server-sent event encoding for streamed generations.

Event sequence: ``start``, any number of ``delta``, then exactly one of
``done``, ``stopped`` or ``error``.
"""

import json
import logging
from typing import Any, Iterator

from threadsync.api.errors import error_body
from threadsync.api.schemas import MessageResponse
from threadsync.exceptions import ThreadSyncError
from threadsync.services.streaming import Generation, GenerationState

logger = logging.getLogger(__name__)


def format_event(event: str, data: Any) -> str:
    """Encode one SSE frame."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def generation_events(generation: Generation) -> Iterator[str]:
    """
    Drive a generation and encode its progress as SSE frames.

    The generation is closed when the consumer stops reading, which finalizes
    it as stopped.
    """
    try:
        yield format_event(
            "start",
            {
                "thread_id": generation.thread_id,
                "user_message_id": generation.user_message_id,
                "assistant_message_id": generation.assistant_message_id,
                "model": generation.model,
            },
        )

        try:
            for fragment in generation:
                yield format_event("delta", {"content": fragment})
        except ThreadSyncError as e:
            yield format_event("error", error_body(e))
            return

        if generation.state == GenerationState.DONE and generation.message is not None:
            message = MessageResponse.from_message(generation.message)
            yield format_event("done", message.model_dump(mode="json"))
        elif generation.state == GenerationState.ERROR and generation.error is not None:
            yield format_event("error", error_body(generation.error))
        else:
            yield format_event(
                "stopped",
                {
                    "assistant_message_id": generation.assistant_message_id,
                    "content": generation.content,
                },
            )
    finally:
        generation.close()
