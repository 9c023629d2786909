"""Anthropic LLM client implementing the LLMClient protocol.

Configuration via environment variables:
- ANTHROPIC_API_KEY: Required. Fail-closed if missing.
- LEGACY_IMPORT_ANTHROPIC_MODEL: Model used for re-clustering
  (default: claude-sonnet-4-20250514).
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable

import anthropic

logger = logging.getLogger(__name__)

ANTHROPIC_MODEL_ENV = "LEGACY_IMPORT_ANTHROPIC_MODEL"
DEFAULT_MODEL = "claude-sonnet-4-20250514"

MAX_RETRIES = 2
RETRY_BACKOFF_BASE_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 120
MAX_TOKENS = 4096

JSON_ONLY_INSTRUCTION = (
    "You MUST respond with valid JSON only. No markdown, no explanation, "
    "no code fences. Output raw JSON."
)


class AnthropicLLMClient:
    """Anthropic-backed LLM client.

    Temperature is fixed at 0. Rate limits, 5xx responses and connection
    errors are retried with exponential backoff; other API errors are not.

    Args:
        model: Model identifier override; defaults to LEGACY_IMPORT_ANTHROPIC_MODEL.
        max_tokens: Maximum output tokens per request.
        client: Pre-built SDK client, mainly for tests.
        sleep: Backoff sleep function, mainly for tests.

    Raises:
        ValueError: If no client is given and ANTHROPIC_API_KEY is not set.
    """

    def __init__(
        self,
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        client: anthropic.Anthropic | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if client is None:
            api_key = os.environ.get("ANTHROPIC_API_KEY", "")
            if not api_key:
                raise ValueError(
                    "ANTHROPIC_API_KEY environment variable is required "
                    "when using the anthropic re-cluster backend. "
                    "Set LEGACY_IMPORT_RECLUSTER_BACKEND=deterministic to run without it."
                )
            client = anthropic.Anthropic(api_key=api_key, timeout=REQUEST_TIMEOUT_SECONDS)

        self._client = client
        self._model = model or os.environ.get(ANTHROPIC_MODEL_ENV) or DEFAULT_MODEL
        self._max_tokens = max_tokens or MAX_TOKENS
        self._sleep = sleep

    @property
    def model(self) -> str:
        return self._model

    def call(self, prompt: str, *, json_mode: bool = False) -> str:
        """Send the prompt and return the first text block of the reply.

        Raises:
            RuntimeError: On a non-retryable API error or when all retries fail.
        """
        system = JSON_ONLY_INSTRUCTION if json_mode else ""
        messages: list[anthropic.types.MessageParam] = [{"role": "user", "content": prompt}]

        last_error: Exception | None = None
        for attempt in range(MAX_RETRIES + 1):
            try:
                response = self._client.messages.create(
                    model=self._model,
                    max_tokens=self._max_tokens,
                    temperature=0,
                    system=system,
                    messages=messages,
                )
                text_block = response.content[0]
                if hasattr(text_block, "text"):
                    return str(text_block.text)
                return str(text_block)

            except anthropic.RateLimitError as exc:
                last_error = exc
                logger.warning("Anthropic rate limit (attempt %d/%d)", attempt + 1, MAX_RETRIES + 1)

            except anthropic.APIStatusError as exc:
                if exc.status_code < 500:
                    raise RuntimeError(
                        f"Anthropic API error (non-retryable): {exc.status_code}"
                    ) from exc
                last_error = exc
                logger.warning(
                    "Anthropic server error %d (attempt %d/%d)",
                    exc.status_code,
                    attempt + 1,
                    MAX_RETRIES + 1,
                )

            except anthropic.APIConnectionError as exc:
                last_error = exc
                logger.warning(
                    "Anthropic connection error (attempt %d/%d)", attempt + 1, MAX_RETRIES + 1
                )

            if attempt < MAX_RETRIES:
                self._sleep(RETRY_BACKOFF_BASE_SECONDS * (2**attempt))

        raise RuntimeError(
            f"Anthropic API call failed after {MAX_RETRIES + 1} attempts"
        ) from last_error
