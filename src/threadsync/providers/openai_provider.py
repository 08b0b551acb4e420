"""OpenAI model provider implementation.

Also serves OpenRouter, which exposes an OpenAI-compatible API under a
different base URL.
"""

import logging
import time
from typing import Any, Iterator, Optional, Sequence

import httpx
import openai
from openai import OpenAI

from threadsync.exceptions import GenerationFailedError, UpstreamTimeoutError
from threadsync.providers.base import ChatMessage, LLMResponse, ModelProvider

logger = logging.getLogger(__name__)


class OpenAIProvider(ModelProvider):
    """Model provider using the OpenAI Python SDK."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
        provider_name: str = "openai",
    ):
        """Initialize the OpenAI provider.

        Args:
            api_key: API key
            model: Model to use (default: gpt-4o-mini)
            base_url: Override the API base URL (OpenRouter)
            provider_name: Identifier reported in errors and logs
        """
        if not api_key:
            raise ValueError(f"{provider_name} API key is required")

        super().__init__()
        self.client = OpenAI(api_key=api_key, base_url=base_url)
        self._model = model
        self._provider_name = provider_name
        logger.info(f"Initialized {provider_name} provider with model: {model}")

    @property
    def provider_name(self) -> str:
        return self._provider_name

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
        params: dict[str, Any] = {
            "model": self._model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if timeout is not None:
            params["timeout"] = timeout
        return params

    def _normalize_error(
        self, exc: Exception, timeout: Optional[float]
    ) -> Exception:
        if isinstance(exc, (openai.APITimeoutError, httpx.TimeoutException)):
            return UpstreamTimeoutError(
                f"{self._provider_name} request timed out", timeout=timeout
            )
        return GenerationFailedError(
            f"{self._provider_name} request failed: {exc}",
            provider=self._provider_name,
        )

    def complete(
        self,
        messages: Sequence[ChatMessage],
        max_tokens: int = 2000,
        temperature: float = 0.7,
        timeout: Optional[float] = None,
    ) -> LLMResponse:
        """Generate a completion using the chat completions API."""
        start_time = time.time()
        params = self._request_params(messages, max_tokens, temperature, timeout)

        try:
            response = self.client.chat.completions.create(**params)
        except (openai.OpenAIError, httpx.HTTPError) as e:
            logger.warning(f"{self._provider_name} completion failed: {e}")
            raise self._normalize_error(e, timeout) from e
        duration_ms = (time.time() - start_time) * 1000

        usage = response.usage
        return LLMResponse(
            content=response.choices[0].message.content or "",
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            total_tokens=usage.total_tokens if usage else 0,
            finish_reason=response.choices[0].finish_reason or "unknown",
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
        """Stream a completion, yielding content deltas."""
        params = self._request_params(messages, max_tokens, temperature, timeout)

        try:
            response_stream = self.client.chat.completions.create(
                stream=True, **params
            )
        except (openai.OpenAIError, httpx.HTTPError) as e:
            logger.warning(f"{self._provider_name} stream failed to start: {e}")
            raise self._normalize_error(e, timeout) from e

        self._track_stream(response_stream)
        try:
            for chunk in response_stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except (openai.OpenAIError, httpx.HTTPError) as e:
            logger.warning(f"{self._provider_name} stream interrupted: {e}")
            raise self._normalize_error(e, timeout) from e
        finally:
            self._untrack_stream(response_stream)
            response_stream.close()
