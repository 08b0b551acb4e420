"""Base protocol and types for model providers."""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass
class ChatMessage:
    """One turn of conversation history sent to a provider."""

    role: str  # "system", "user" or "assistant"
    content: str


@dataclass
class LLMResponse:
    """Standardized non-streaming response from model providers.

    Attributes:
        content: The generated text
        prompt_tokens: Number of tokens in the prompt
        completion_tokens: Number of tokens in the completion
        total_tokens: Total tokens used
        finish_reason: Why generation stopped (stop, length, etc.)
        model: The actual model used (may differ from requested)
        duration_ms: Time taken for the API call in milliseconds
        raw_response: Provider-specific raw response for debugging
    """

    content: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    finish_reason: str
    model: str
    duration_ms: float
    raw_response: Any = None


class ModelProvider(ABC):
    """Abstract base class for model providers.

    Implementations must normalize SDK failures: timeouts raise
    UpstreamTimeoutError, everything else raises GenerationFailedError.
    Streaming implementations register their open response with
    ``_track_stream`` so ``abort`` can close it from another thread.
    """

    def __init__(self) -> None:
        self._streams_lock = threading.Lock()
        self._open_streams: list[Any] = []

    def abort(self) -> None:
        """Close every response this provider is streaming. Thread-safe.

        A consumer blocked waiting for the next fragment wakes up with an
        error once its response is closed.
        """
        with self._streams_lock:
            streams, self._open_streams = self._open_streams, []
        for response in streams:
            try:
                response.close()
            except Exception as e:
                logger.debug(f"Error closing aborted {self.provider_name} stream: {e}")

    def _track_stream(self, response: Any) -> None:
        with self._streams_lock:
            self._open_streams.append(response)

    def _untrack_stream(self, response: Any) -> None:
        with self._streams_lock:
            if response in self._open_streams:
                self._open_streams.remove(response)

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider identifier (e.g., 'openai', 'anthropic')."""
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model identifier being used."""
        ...

    @abstractmethod
    def complete(
        self,
        messages: Sequence[ChatMessage],
        max_tokens: int = 2000,
        temperature: float = 0.7,
        timeout: Optional[float] = None,
    ) -> LLMResponse:
        """Generate a full completion for the conversation history.

        Args:
            messages: Conversation history, oldest first
            max_tokens: Maximum tokens in the response
            temperature: Sampling temperature
            timeout: Request timeout in seconds

        Returns:
            LLMResponse with the completion and metadata
        """
        ...

    @abstractmethod
    def stream(
        self,
        messages: Sequence[ChatMessage],
        max_tokens: int = 2000,
        temperature: float = 0.7,
        timeout: Optional[float] = None,
    ) -> Iterator[str]:
        """Generate a completion as a lazy sequence of text fragments.

        Closing the returned iterator aborts the underlying request.

        Args:
            messages: Conversation history, oldest first
            max_tokens: Maximum tokens in the response
            temperature: Sampling temperature
            timeout: Request timeout in seconds

        Yields:
            Text fragments in order
        """
        ...
