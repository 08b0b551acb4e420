"""Anthropic model provider implementation."""

import logging
import time
from typing import Any, Iterator, Optional, Sequence

import anthropic
import httpx
from anthropic import Anthropic

from threadsync.exceptions import GenerationFailedError, UpstreamTimeoutError
from threadsync.providers.base import ChatMessage, LLMResponse, ModelProvider

logger = logging.getLogger(__name__)


class AnthropicProvider(ModelProvider):
    """Model provider using the Anthropic Python SDK.

    The Messages API takes the system prompt as a separate parameter, so
    system turns in the history are folded into it.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-5",
    ):
        """Initialize the Anthropic provider.

        Args:
            api_key: Anthropic API key
            model: Model to use (default: claude-sonnet-4-5)
        """
        if not api_key:
            raise ValueError("Anthropic API key is required")

        super().__init__()
        self.client = Anthropic(api_key=api_key)
        self._model = model
        logger.info(f"Initialized Anthropic provider with model: {model}")

    @property
    def provider_name(self) -> str:
        return "anthropic"

    @property
    def model_name(self) -> str:
        return self._model

    def _request_params(
        self,
        messages: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
        timeout: Optional[float],
    ) -> dict[str, Any]:
        system_parts = [m.content for m in messages if m.role == "system"]
        params: dict[str, Any] = {
            "model": self._model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [
                {"role": m.role, "content": m.content}
                for m in messages
                if m.role != "system"
            ],
        }
        if system_parts:
            params["system"] = "\n\n".join(system_parts)
        if timeout is not None:
            params["timeout"] = timeout
        return params

    @staticmethod
    def _normalize_error(exc: Exception, timeout: Optional[float]) -> Exception:
        if isinstance(exc, (anthropic.APITimeoutError, httpx.TimeoutException)):
            return UpstreamTimeoutError("anthropic request timed out", timeout=timeout)
        return GenerationFailedError(
            f"anthropic request failed: {exc}", provider="anthropic"
        )

    def complete(
        self,
        messages: Sequence[ChatMessage],
        max_tokens: int = 2000,
        temperature: float = 0.7,
        timeout: Optional[float] = None,
    ) -> LLMResponse:
        """Generate a completion using the Messages API."""
        start_time = time.time()
        params = self._request_params(messages, max_tokens, temperature, timeout)

        try:
            response = self.client.messages.create(**params)
        except (anthropic.AnthropicError, httpx.HTTPError) as e:
            logger.warning(f"anthropic completion failed: {e}")
            raise self._normalize_error(e, timeout) from e
        duration_ms = (time.time() - start_time) * 1000

        content = ""
        for block in response.content:
            if hasattr(block, "text"):
                content += block.text

        usage = response.usage
        prompt_tokens = usage.input_tokens if usage else 0
        completion_tokens = usage.output_tokens if usage else 0

        return LLMResponse(
            content=content,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            finish_reason=response.stop_reason or "unknown",
            model=response.model,
            duration_ms=duration_ms,
            raw_response=response,
        )

    def stream(
        self,
        messages: Sequence[ChatMessage],
        max_tokens: int = 2000,
        temperature: float = 0.7,
        timeout: Optional[float] = None,
    ) -> Iterator[str]:
        """Stream a completion, yielding text deltas."""
        params = self._request_params(messages, max_tokens, temperature, timeout)

        try:
            with self.client.messages.stream(**params) as response_stream:
                self._track_stream(response_stream)
                try:
                    for text in response_stream.text_stream:
                        if text:
                            yield text
                finally:
                    self._untrack_stream(response_stream)
        except (anthropic.AnthropicError, httpx.HTTPError) as e:
            logger.warning(f"anthropic stream failed: {e}")
            raise self._normalize_error(e, timeout) from e
