"""
threadsync client.

Async API client plus an explicit query cache kept in sync through
optimistic mutations.
"""

from threadsync.client.api_client import ApiClient, parse_sse
from threadsync.client.cache import QueryCache
from threadsync.client.conversation import ConversationSync
from threadsync.client.grouping import group_threads_by_recency
from threadsync.client.models import (
    GenerationEvent,
    MessageData,
    ShareData,
    SharedThreadData,
    ThreadData,
    TrailingDeleteResult,
)
from threadsync.client.retry import ApiError, RetryableError, RetryConfig
from threadsync.client.sync import CacheSynchronizer, Mutation

__all__ = [
    "ApiClient",
    "ApiError",
    "CacheSynchronizer",
    "ConversationSync",
    "GenerationEvent",
    "MessageData",
    "Mutation",
    "QueryCache",
    "RetryConfig",
    "RetryableError",
    "ShareData",
    "SharedThreadData",
    "ThreadData",
    "TrailingDeleteResult",
    "group_threads_by_recency",
    "parse_sse",
]
