"""Conversation services: engine, sharing and streaming generation."""

from threadsync.services.conversation import ConversationEngine
from threadsync.services.sharing import SharedThread, ShareService
from threadsync.services.streaming import (
    Generation,
    GenerationOptions,
    GenerationState,
    StreamingCoordinator,
)

__all__ = [
    "ConversationEngine",
    "Generation",
    "GenerationOptions",
    "GenerationState",
    "ShareService",
    "SharedThread",
    "StreamingCoordinator",
]
