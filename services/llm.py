"""LLM client with retry logic, request size validation, and schema-validated output.

``generate`` returns raw text. ``generate_structured`` asks for JSON matching
a pydantic model, validates it, and either returns a fully populated model
or raises ``SchemaValidationError``; a half-valid object never escapes.
"""

import asyncio
import json
import re
from typing import TypeVar

from openai import APIConnectionError, APIStatusError, APITimeoutError
from pydantic import BaseModel, ValidationError

from config import Settings, get_settings
from services.llm_providers import BaseLLMProvider, get_llm_provider
from utils.json_extraction import extract_json_from_response
from utils.logging import get_logger
from utils.retry import calculate_backoff

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def strip_thinking_tags(text: str) -> str:
    """Remove <think>...</think> tags from model output.

    Handles various formats:
    - <think>...</think>  (any attributes)
    - <thinking>...</thinking>
    - Unclosed tags (removes from opening tag to true end-of-string)
    """
    if not text:
        return text

    patterns = [
        r"<think\b[^>]*>.*?</think>\s*",
        r"<thinking\b[^>]*>.*?</thinking>\s*",
    ]
    for pattern in patterns:
        text = re.sub(pattern, "", text, flags=re.DOTALL | re.IGNORECASE)

    # \Z rather than $ so re.DOTALL doesn't stop at \n
    unclosed_patterns = [
        r"<think\b[^>]*>.*\Z",
        r"<thinking\b[^>]*>.*\Z",
    ]
    for pattern in unclosed_patterns:
        text = re.sub(pattern, "", text, flags=re.DOTALL | re.IGNORECASE)

    return text.strip()


# HTTP status codes that should trigger a retry
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504, 529}

# Overhead tokens for message formatting (role labels, special tokens, etc.)
MESSAGE_OVERHEAD_TOKENS = 10

STRUCTURED_SYSTEM_PROMPT = (
    "You are a precise information extraction system. "
    "Always answer with a single JSON object and nothing else."
)


class PromptTooLargeError(ValueError):
    """Raised when the prompt exceeds the maximum allowed token count."""

    def __init__(
        self, estimated_tokens: int, max_tokens: int, message: str | None = None
    ):
        self.estimated_tokens = estimated_tokens
        self.max_tokens = max_tokens
        if message is None:
            message = (
                f"Prompt too large: estimated {estimated_tokens} tokens, "
                f"max allowed is {max_tokens} tokens"
            )
        super().__init__(message)


class LLMError(Exception):
    """The model call failed.

    ``retryable`` is False when the provider rejected the request outright
    (bad request, auth); repeating the call cannot succeed.
    """

    def __init__(self, message: str, model: str | None = None, retryable: bool = True):
        self.model = model
        self.retryable = retryable
        super().__init__(message)


def is_retryable_llm_error(error: BaseException) -> bool:
    return getattr(error, "retryable", True)


class SchemaValidationError(LLMError):
    """Model output was not JSON or did not conform to the response schema."""

    def __init__(
        self,
        schema_name: str,
        errors: list[str],
        raw_preview: str = "",
        model: str | None = None,
    ):
        self.schema_name = schema_name
        self.errors = errors
        self.raw_preview = raw_preview
        super().__init__(
            f"Response did not match {schema_name}: {'; '.join(errors[:5])}",
            model=model,
        )


def _format_validation_errors(exc: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
        for err in exc.errors()
    ]


class LLMClient:
    """LLM client with retry logic, size validation, and structured output.

    Features:
    - Exponential backoff with jitter for transient failures
    - Retries on 429, 5xx and 529 (overloaded) status codes
    - Thinking tag stripping from model output
    - Request size validation to prevent oversized prompts
    - Schema-validated JSON responses with bounded re-asks
    """

    def __init__(
        self,
        provider: BaseLLMProvider | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.provider = provider or get_llm_provider()
        self.model = self.provider.model_name

    def _estimate_tokens(self, text: str) -> int:
        """Estimate token count: roughly 4 characters per token for English text."""
        if not text:
            return 0
        return len(text) // 4 + 1

    def _validate_prompt_size(
        self,
        prompt: str,
        system_prompt: str = "",
        max_prompt_tokens: int | None = None,
    ) -> int:
        """Validate that the prompt size is within limits.

        Returns:
            Estimated token count

        Raises:
            PromptTooLargeError: If estimated tokens exceed the limit
        """
        if max_prompt_tokens is None:
            max_prompt_tokens = self.settings.max_prompt_tokens

        estimated_tokens = (
            self._estimate_tokens(prompt)
            + self._estimate_tokens(system_prompt)
            + MESSAGE_OVERHEAD_TOKENS * (2 if system_prompt else 1)
        )

        if estimated_tokens > max_prompt_tokens:
            logger.error(
                f"Prompt size validation failed: estimated {estimated_tokens} tokens "
                f"exceeds max {max_prompt_tokens} tokens"
            )
            raise PromptTooLargeError(estimated_tokens, max_prompt_tokens)

        warning_threshold = max_prompt_tokens * self.settings.prompt_warning_threshold
        if estimated_tokens > warning_threshold:
            logger.warning(
                f"Prompt size approaching limit: estimated {estimated_tokens} tokens "
                f"({estimated_tokens / max_prompt_tokens * 100:.1f}% of {max_prompt_tokens} max)"
            )

        return estimated_tokens

    def _is_retryable_error(self, error: Exception) -> bool:
        """Check if an error is transient and should be retried."""
        if isinstance(
            error, (TimeoutError, ConnectionError, APIConnectionError, APITimeoutError)
        ):
            return True

        if isinstance(error, APIStatusError):
            return error.status_code in RETRYABLE_STATUS_CODES

        return False

    def _log_token_usage(self, usage: dict | None, model: str) -> None:
        """Log token usage for cost monitoring."""
        if not usage:
            logger.debug("Token usage not available in response")
            return

        prompt_tokens = usage.get("prompt_tokens", 0) or 0
        completion_tokens = usage.get("completion_tokens", 0) or 0
        total_tokens = usage.get("total_tokens", 0) or prompt_tokens + completion_tokens

        logger.info(
            "LLM token usage",
            extra={
                "token_usage": {
                    "model": model,
                    "prompt_tokens": prompt_tokens,
                    "completion_tokens": completion_tokens,
                    "total_tokens": total_tokens,
                }
            },
        )

    async def generate(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float | None = None,
        max_tokens: int | None = None,
        max_retries: int | None = None,
        validate_size: bool = True,
    ) -> str:
        """Generate a completion with retry logic.

        Args:
            prompt: The user prompt
            system_prompt: Optional system prompt
            temperature: Sampling temperature (default: from settings)
            max_tokens: Maximum tokens to generate (default: from settings)
            max_retries: Maximum retry attempts (default: from settings)
            validate_size: Whether to validate prompt size before sending

        Returns:
            The generated text with thinking tags stripped

        Raises:
            PromptTooLargeError: If prompt exceeds max_prompt_tokens
            LLMError: On non-retryable errors or when retries are exhausted
        """
        if temperature is None:
            temperature = self.settings.llm_temperature
        if max_tokens is None:
            max_tokens = self.settings.llm_max_output_tokens
        if max_retries is None:
            max_retries = self.settings.llm_max_retries

        if validate_size:
            self._validate_prompt_size(prompt, system_prompt)

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        model = self.provider.model_name

        for attempt in range(max_retries + 1):
            try:
                text, usage = await self.provider.generate(
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
                self._log_token_usage(usage, model)
                return strip_thinking_tags(text)

            except Exception as e:
                if not self._is_retryable_error(e):
                    logger.error(
                        f"Non-retryable error on LLM call with {model}: {type(e).__name__}: {e}"
                    )
                    raise LLMError(
                        f"{type(e).__name__}: {e}", model=model, retryable=False
                    ) from e

                if attempt >= max_retries:
                    logger.error(
                        f"LLM call with {model} failed after {max_retries + 1} attempts. "
                        f"Last error: {type(e).__name__}: {e}"
                    )
                    raise LLMError(
                        f"Retries exhausted after {max_retries + 1} attempts: "
                        f"{type(e).__name__}: {e}",
                        model=model,
                    ) from e

                backoff = calculate_backoff(
                    attempt, base=self.settings.llm_retry_base_delay
                )
                logger.warning(
                    f"Retryable error on attempt {attempt + 1}/{max_retries + 1} with {model}: "
                    f"{type(e).__name__}: {e}. Retrying in {backoff:.2f}s"
                )
                await asyncio.sleep(backoff)

        raise LLMError("Unexpected state in LLM generate", model=model)

    @staticmethod
    def _schema_instructions(schema: type[BaseModel]) -> str:
        json_schema = json.dumps(schema.model_json_schema(by_alias=True), indent=2)
        return (
            "\n\nRespond with ONLY a JSON object that conforms to this JSON schema "
            "(no prose, no markdown):\n"
            f"{json_schema}"
        )

    def _parse_structured(self, text: str, schema: type[ModelT]) -> ModelT:
        data = extract_json_from_response(text, context=schema.__name__)
        if data is None:
            raise SchemaValidationError(
                schema.__name__,
                ["response contained no parseable JSON"],
                raw_preview=text[:200],
                model=self.model,
            )
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            raise SchemaValidationError(
                schema.__name__,
                _format_validation_errors(e),
                raw_preview=text[:200],
                model=self.model,
            ) from e

    async def generate_structured(
        self,
        prompt: str,
        schema: type[ModelT],
        system_prompt: str = STRUCTURED_SYSTEM_PROMPT,
        max_tokens: int | None = None,
        schema_retries: int | None = None,
    ) -> ModelT:
        """Generate a response and validate it against ``schema``.

        A response that fails validation is re-requested up to
        ``schema_retries`` times with the validation errors appended.

        Raises:
            SchemaValidationError: Output never conformed to the schema
            LLMError: Transport failure after the client's retries
            PromptTooLargeError: Prompt exceeds the size limit
        """
        if schema_retries is None:
            schema_retries = self.settings.llm_schema_retries
        if schema_retries < 0:
            raise ValueError(f"schema_retries must be non-negative, got {schema_retries}")

        full_prompt = prompt + self._schema_instructions(schema)
        request_prompt = full_prompt
        attempts = schema_retries + 1

        for attempt in range(attempts):
            text = await self.generate(
                request_prompt,
                system_prompt=system_prompt,
                max_tokens=max_tokens,
            )
            try:
                return self._parse_structured(text, schema)
            except SchemaValidationError as e:
                logger.warning(
                    f"{schema.__name__} validation failed on attempt "
                    f"{attempt + 1}/{attempts}: {e}"
                )
                if attempt + 1 >= attempts:
                    raise
                request_prompt = (
                    f"{full_prompt}\n\nYour previous response was invalid: "
                    f"{'; '.join(e.errors[:5])}. Reply again with only the corrected JSON object."
                )


# Singleton instance
_llm_client: LLMClient | None = None


def get_llm_client() -> LLMClient:
    """Get the LLM client singleton."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client
