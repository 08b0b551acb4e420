"""Thread title generation."""

import logging
from typing import Callable, Optional

from threadsync.config import Settings, settings as default_settings
from threadsync.exceptions import GenerationFailedError
from threadsync.providers import provider_for_model
from threadsync.providers.base import ChatMessage, ModelProvider

logger = logging.getLogger(__name__)

TITLE_SYSTEM_PROMPT = (
    "You are a helpful assistant. Your task is to generate a concise and "
    "relevant title (5 words or less) for the following user query or "
    "conversation start. Only output the title itself, nothing else."
)

MAX_TITLE_LENGTH = 255


def clean_title(raw: str) -> str:
    """Strip whitespace and surrounding quotes from a generated title."""
    title = raw.strip().strip("\"'“”‘’").strip()
    return title[:MAX_TITLE_LENGTH]


class TitleGenerator:
    """Generates short thread titles from the user's first query."""

    def __init__(
        self,
        provider_factory: Optional[Callable[[], ModelProvider]] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or default_settings
        self._provider_factory = provider_factory or (
            lambda: provider_for_model(self.config.title_model, self.config)
        )

    def generate(self, user_query: str, timeout: Optional[float] = None) -> str:
        """
        Generate a title for a user query.

        Args:
            user_query: Text the title should summarize
            timeout: Seconds to wait (defaults to title_timeout_seconds)

        Returns:
            Cleaned title text

        Raises:
            UpstreamTimeoutError: If the provider times out
            GenerationFailedError: If the provider fails or returns nothing
        """
        provider = self._provider_factory()
        response = provider.complete(
            [
                ChatMessage(role="system", content=TITLE_SYSTEM_PROMPT),
                ChatMessage(role="user", content=user_query),
            ],
            max_tokens=20,
            temperature=0.5,
            timeout=timeout or self.config.title_timeout_seconds,
        )

        title = clean_title(response.content)
        if not title:
            raise GenerationFailedError(
                "Title generation returned no text", provider=provider.provider_name
            )
        logger.debug(f"Generated title {title!r} with {provider.model_name}")
        return title
