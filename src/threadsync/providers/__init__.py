"""Model provider implementations for assistant generation.

Model ids take the form ``provider/model`` (``openai/gpt-4o-mini``,
``anthropic/claude-sonnet-4-5``, ``openrouter/meta-llama/llama-3-70b``). A
bare id without a provider prefix is an OpenAI model.

Usage:
    from threadsync.providers import provider_for_model

    provider = provider_for_model("anthropic/claude-sonnet-4-5")
    for fragment in provider.stream([ChatMessage("user", "Hello")]):
        ...
"""

import logging
from typing import Literal, Optional, get_args

from threadsync.config import Settings, settings as default_settings
from threadsync.exceptions import GenerationFailedError, ValidationError
from threadsync.providers.base import ChatMessage, LLMResponse, ModelProvider

logger = logging.getLogger(__name__)

# Type alias for provider names
ProviderType = Literal["openai", "openrouter", "anthropic"]

DEFAULT_PROVIDER: ProviderType = "openai"


def split_model_id(model_id: str) -> tuple[str, str]:
    """Split a model id into (provider, model).

    Args:
        model_id: ``provider/model`` or a bare OpenAI model name

    Returns:
        Tuple of provider type and provider-specific model name

    Raises:
        ValidationError: If the id is empty or names an unknown provider
    """
    model_id = (model_id or "").strip()
    if not model_id:
        raise ValidationError("Model id must not be empty")

    if "/" not in model_id:
        return DEFAULT_PROVIDER, model_id

    provider, _, model = model_id.partition("/")
    if provider not in get_available_providers():
        raise ValidationError(
            f"Unknown model provider: {provider}. "
            f"Supported providers: {', '.join(get_available_providers())}"
        )
    if not model:
        raise ValidationError(f"Model id has no model name: {model_id}")
    return provider, model


def create_provider(
    provider_type: ProviderType,
    api_key: str,
    model: str | None = None,
    base_url: str | None = None,
) -> ModelProvider:
    """Factory function to create model providers.

    Args:
        provider_type: The provider to use
        api_key: API key for the provider
        model: Optional model override (uses provider default if not specified)
        base_url: Optional API base URL (OpenRouter)

    Returns:
        Configured ModelProvider instance

    Raises:
        ValueError: If provider_type is unknown or api_key is missing
    """
    if not api_key:
        raise ValueError(f"API key is required for {provider_type} provider")

    if provider_type in ("openai", "openrouter"):
        from threadsync.providers.openai_provider import OpenAIProvider

        return OpenAIProvider(
            api_key=api_key,
            model=model or "gpt-4o-mini",
            base_url=base_url,
            provider_name=provider_type,
        )

    elif provider_type == "anthropic":
        from threadsync.providers.anthropic_provider import AnthropicProvider

        return AnthropicProvider(
            api_key=api_key,
            model=model or "claude-sonnet-4-5",
        )

    else:
        raise ValueError(
            f"Unknown provider type: {provider_type}. "
            f"Supported providers: {', '.join(get_available_providers())}"
        )


def provider_for_model(
    model_id: Optional[str] = None, config: Optional[Settings] = None
) -> ModelProvider:
    """Build the provider that serves a model id, using configured API keys.

    Args:
        model_id: Model id; the configured default model when omitted
        config: Settings to read keys from (defaults to global settings)

    Returns:
        Configured ModelProvider

    Raises:
        ValidationError: If the model id is malformed
        GenerationFailedError: If the provider has no API key configured
    """
    config = config or default_settings
    provider_type, model = split_model_id(model_id or config.default_model)

    api_key = {
        "openai": config.openai_api_key,
        "openrouter": config.openrouter_api_key,
        "anthropic": config.anthropic_api_key,
    }[provider_type]
    if not api_key:
        raise GenerationFailedError(
            f"No API key configured for provider {provider_type}",
            provider=provider_type,
        )

    base_url = config.openrouter_base_url if provider_type == "openrouter" else None
    return create_provider(provider_type, api_key, model=model, base_url=base_url)


def get_available_providers() -> list[str]:
    """Get list of available provider types."""
    return list(get_args(ProviderType))


__all__ = [
    "ChatMessage",
    "LLMResponse",
    "ModelProvider",
    "ProviderType",
    "create_provider",
    "get_available_providers",
    "provider_for_model",
    "split_model_id",
]
