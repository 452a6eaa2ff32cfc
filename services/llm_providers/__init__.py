"""LLM provider abstraction layer.

Usage:
    from services.llm_providers import get_llm_provider

    provider = get_llm_provider()  # Returns provider based on settings.llm_provider
"""

from config import get_settings
from services.llm_providers.base import BaseLLMProvider


def get_llm_provider(model: str | None = None) -> BaseLLMProvider:
    """Factory: return the configured LLM provider."""
    settings = get_settings()
    provider_name = getattr(settings, "llm_provider", "openai")

    if provider_name == "openai":
        from services.llm_providers.openai_compatible import OpenAICompatibleProvider

        return OpenAICompatibleProvider(model=model)

    raise ValueError(f"Unknown LLM provider: {provider_name}")


__all__ = [
    "BaseLLMProvider",
    "get_llm_provider",
]
