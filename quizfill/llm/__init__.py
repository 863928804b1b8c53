"""LLM adapter layer: OpenAI and Anthropic behind a common protocol."""

from quizfill.llm.anthropic_provider import AnthropicProvider
from quizfill.llm.base import LLMProvider
from quizfill.llm.openai_provider import OpenAIProvider


def get_provider(provider_name: str, **kwargs: object) -> LLMProvider:
    """Return the configured LLM provider. provider_name: 'openai' | 'anthropic'."""
    if provider_name.lower() == "anthropic":
        return AnthropicProvider(**kwargs)
    return OpenAIProvider(**kwargs)


def provider_from_settings(settings, provider_name: str | None = None) -> LLMProvider:
    """Build the provider named in settings (or ``provider_name``) with its key and model."""
    name = (provider_name or settings.qf_llm_provider).lower()
    if name == "anthropic":
        return get_provider(name, api_key=settings.anthropic_api_key, model=settings.qf_anthropic_model)
    return get_provider(name, api_key=settings.openai_api_key, model=settings.qf_openai_model)


__all__ = ["LLMProvider", "OpenAIProvider", "AnthropicProvider", "get_provider", "provider_from_settings"]
