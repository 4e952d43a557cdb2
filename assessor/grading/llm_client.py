"""
LLM Client for the grading model.

Provides an async wrapper around the OpenAI SDK that requests strict
JSON-schema output. Includes bounded retry logic, a per-call timeout,
error classification and token usage reporting.
"""

import asyncio
import json
import logging
import time
from typing import Any, NamedTuple

from openai import (
    APIConnectionError,
    APIStatusError,
    AsyncOpenAI,
    RateLimitError,
)

from assessor.config import Settings, get_settings
from assessor.usage import UsageRecorder, get_usage_recorder

logger = logging.getLogger(__name__)

GRADE_OPERATION = "submission_grade"


class LLMError(Exception):
    """Raised when LLM API call fails."""

    def __init__(self, message: str, cause: Exception | None = None, retryable: bool = False):
        self.cause = cause
        self.retryable = retryable
        super().__init__(message)


class ModelCompletion(NamedTuple):
    """A completed grading call."""

    content: str
    parsed: dict[str, Any] | None
    usage: dict[str, Any] | None
    model: str
    duration_ms: int


def parse_model_json(content: str) -> dict[str, Any] | None:
    """
    Parse model output text as a JSON object.

    Falls back to the outermost ``{...}`` block when the text carries
    stray prose around the object.

    Returns:
        The parsed object, or None when no JSON object can be read.
    """
    src = (content or "").strip()
    if not src:
        return None
    try:
        data = json.loads(src)
    except json.JSONDecodeError:
        start, end = src.find("{"), src.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            data = json.loads(src[start : end + 1])
        except json.JSONDecodeError:
            return None
    return data if isinstance(data, dict) else None


class LLMClient:
    """
    Async client for the grading model.

    Uses the OpenAI SDK with SDK-level retries disabled; retries are handled
    here with exponential backoff up to ``llm_retries`` attempts.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        usage_recorder: UsageRecorder | None = None,
        client: AsyncOpenAI | None = None,
    ):
        """
        Initialize the LLM client.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
            usage_recorder: Usage metering collaborator. Uses the global recorder if not provided.
            client: Pre-built SDK client (mainly for tests).
        """
        self._settings = settings or get_settings()
        self._usage_recorder = usage_recorder or get_usage_recorder()
        self._client = client or AsyncOpenAI(
            api_key=self._settings.openai_api_key or "missing",
            base_url=self._settings.openai_base_url,
            timeout=self._settings.llm_timeout_seconds,
            max_retries=0,
        )

        # Retry configuration
        self._max_retries = self._settings.llm_retries
        self._base_delay = 1.0  # seconds
        self._max_delay = 30.0  # seconds

    async def generate(
        self,
        prompt: str,
        schema: dict[str, Any],
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int = 1100,
        operation: str = GRADE_OPERATION,
    ) -> ModelCompletion:
        """
        Generate a structured grading response.

        Args:
            prompt: The complete grading instruction.
            schema: ``json_schema`` response format payload.
            model: Model override (uses config default if None).
            temperature: Temperature override (uses config default if None).
            max_tokens: Maximum tokens in response.
            operation: Operation tag reported to usage metering.

        Returns:
            ModelCompletion with raw content, parsed JSON and usage.

        Raises:
            LLMError: If generation fails after all retries.
        """
        model_name = model or self._settings.grading_model
        temp = temperature if temperature is not None else self._settings.llm_temperature

        messages: list[dict[str, str]] = [{"role": "user", "content": prompt}]

        started = time.perf_counter()
        content, usage = await self._call_with_retry(messages, model_name, temp, max_tokens, schema)
        duration_ms = int((time.perf_counter() - started) * 1000)

        self._usage_recorder.record(model_name, operation, usage)

        return ModelCompletion(
            content=content,
            parsed=parse_model_json(content),
            usage=usage,
            model=model_name,
            duration_ms=duration_ms,
        )

    async def _call_with_retry(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int,
        schema: dict[str, Any],
    ) -> tuple[str, dict[str, Any] | None]:
        """
        Call the API with exponential backoff retry.

        Args:
            messages: Chat messages to send.
            model: Model identifier.
            temperature: Temperature setting.
            max_tokens: Maximum response tokens.
            schema: Structured output schema.

        Returns:
            Tuple of (generated text, raw usage dict).

        Raises:
            LLMError: If all retries fail.
        """
        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            try:
                response = await self._client.chat.completions.create(
                    model=model,
                    messages=messages,  # type: ignore[arg-type]
                    temperature=temperature,
                    max_tokens=max_tokens,
                    response_format={"type": "json_schema", "json_schema": schema},  # type: ignore[arg-type]
                )

                usage = response.usage.model_dump() if response.usage is not None else None

                # Extract content from response
                if response.choices and response.choices[0].message.content:
                    return response.choices[0].message.content, usage

                raise LLMError("Empty response from LLM")

            except RateLimitError as e:
                last_error = e
                if attempt < self._max_retries:
                    await self._backoff(attempt, "rate limited")
                    continue
                raise LLMError(
                    f"Rate limit exceeded after {self._max_retries} retries",
                    cause=e,
                    retryable=True,
                ) from e

            except APIConnectionError as e:
                # Includes timeouts
                last_error = e
                if attempt < self._max_retries:
                    await self._backoff(attempt, "connection error")
                    continue
                raise LLMError(
                    f"Connection failed after {self._max_retries} retries",
                    cause=e,
                    retryable=True,
                ) from e

            except APIStatusError as e:
                # Don't retry on client errors (4xx except 429)
                if 400 <= e.status_code < 500 and e.status_code != 429:
                    raise LLMError(
                        f"API error: {e.message}",
                        cause=e,
                        retryable=False,
                    ) from e

                last_error = e
                if attempt < self._max_retries:
                    await self._backoff(attempt, f"status {e.status_code}")
                    continue
                raise LLMError(
                    f"API error after {self._max_retries} retries: {e.message}",
                    cause=e,
                    retryable=True,
                ) from e

            except LLMError:
                raise

            except Exception as e:
                raise LLMError(f"Unexpected error: {e}", cause=e, retryable=False) from e

        # Should not reach here, but just in case
        raise LLMError(f"Failed after {self._max_retries} retries", cause=last_error)

    async def _backoff(self, attempt: int, reason: str) -> None:
        delay = self._calculate_delay(attempt)
        logger.warning(
            "Grading model call failed (%s), retry %d/%d in %.1fs",
            reason,
            attempt + 1,
            self._max_retries,
            delay,
        )
        await asyncio.sleep(delay)

    def _calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay for exponential backoff.

        Args:
            attempt: Current attempt number (0-indexed).

        Returns:
            Delay in seconds.
        """
        delay = self._base_delay * (2**attempt)
        return min(delay, self._max_delay)

    async def health_check(self) -> bool:
        """
        Check if the API is reachable.

        Returns:
            True if API is healthy, False otherwise.
        """
        try:
            response = await self._client.chat.completions.create(
                model=self._settings.grading_model,
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=5,
            )
            return bool(response.choices)
        except Exception:
            logger.warning("Grading model health check failed", exc_info=True)
            return False
