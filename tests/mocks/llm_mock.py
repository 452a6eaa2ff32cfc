"""Scripted LLM provider for unit and end-to-end tests.

The provider sits under the real ``LLMClient``, so tests exercise schema
validation, re-asks and retry handling exactly as production does; only the
network call is replaced.
"""

import json
from typing import Optional, Union

from services.llm_providers.base import BaseLLMProvider

IDENTIFICATION_MARKER = "identify decisions that were made"

Response = Union[str, dict, list]


def extraction_marker(title: str) -> str:
    """Text that appears only in the Phase 2 prompt for ``title``."""
    return f'DECISION: "{title}"'


class MockLLMProvider(BaseLLMProvider):
    """Returns canned responses for prompts containing a pattern.

    Patterns are checked in the order they were registered. Failures
    registered with ``fail_on`` take precedence and can be limited to a
    number of calls, which is how tests simulate transient outages.
    """

    def __init__(self, model: str = "mock-model"):
        self._model = model
        self._responses: list[tuple[str, str]] = []
        self._failures: list[list] = []  # [pattern, exception, remaining or None]
        self._default_response = "{}"
        self.calls: list[dict] = []

    @property
    def model_name(self) -> str:
        return self._model

    def set_response(self, pattern: str, response: Response) -> None:
        """Respond to prompts containing ``pattern`` (dicts are JSON-encoded)."""
        text = response if isinstance(response, str) else json.dumps(response)
        self._responses = [(p, r) for p, r in self._responses if p != pattern]
        self._responses.append((pattern, text))

    def set_identification(self, decisions: list[dict]) -> None:
        self.set_response(IDENTIFICATION_MARKER, {"decisions": decisions})

    def set_extraction(self, title: str, data: Response) -> None:
        self.set_response(extraction_marker(title), data)

    def set_default_response(self, response: Response) -> None:
        self._default_response = (
            response if isinstance(response, str) else json.dumps(response)
        )

    def fail_on(
        self, pattern: str, error: Exception, times: Optional[int] = None
    ) -> None:
        """Raise ``error`` for matching prompts, ``times`` times or forever."""
        self._failures.append([pattern, error, times])

    def clear_failures(self) -> None:
        self._failures.clear()

    async def generate(
        self,
        messages: list[dict],
        temperature: float = 0.2,
        max_tokens: int = 4096,
    ) -> tuple[str, dict]:
        prompt = messages[-1]["content"]
        self.calls.append(
            {"messages": messages, "temperature": temperature, "max_tokens": max_tokens}
        )

        for failure in self._failures:
            pattern, error, remaining = failure
            if pattern in prompt and remaining != 0:
                if remaining is not None:
                    failure[2] = remaining - 1
                raise error

        text = self._default_response
        for pattern, response in self._responses:
            if pattern in prompt:
                text = response
                break

        usage = {"prompt_tokens": len(prompt) // 4, "completion_tokens": len(text) // 4}
        return text, usage

    def call_count(self, pattern: Optional[str] = None) -> int:
        if pattern is None:
            return len(self.calls)
        return sum(1 for c in self.calls if pattern in c["messages"][-1]["content"])

    def get_last_prompt(self) -> Optional[str]:
        return self.calls[-1]["messages"][-1]["content"] if self.calls else None

    def reset(self) -> None:
        self._responses.clear()
        self._failures.clear()
        self.calls.clear()
        self._default_response = "{}"
