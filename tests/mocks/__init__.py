"""Mock implementations for testing."""

from .llm_mock import MockLLMProvider

__all__ = [
    "MockLLMProvider",
]
