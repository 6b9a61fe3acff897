"""
plainsub.llm.client - LLM backend abstraction using litellm.

Talks to a local Ollama server in non-streaming mode, with retry logic.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from plainsub.exceptions import RefinementError, RefinementResponseError

logger = logging.getLogger(__name__)


class LLMClient:
    """LLM client wrapper with retry logic."""

    def __init__(
        self,
        model: str = "phi3:mini",
        base_url: str = "http://localhost:11434",
        timeout: int = 300,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        temperature: float = 0.3,
        top_p: float = 0.9,
    ) -> None:
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.temperature = temperature
        self.top_p = top_p
        self._token_usage = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}

    def _get_model_string(self) -> str:
        """Get the model string for litellm."""
        return f"ollama/{self.model}"

    def complete(self, prompt: str, max_tokens: int = 4096) -> str:
        """Send prompt to LLM and get completion with retry logic.

        Args:
            prompt: The prompt string
            max_tokens: Maximum tokens in response

        Returns:
            LLM response text

        Raises:
            RefinementResponseError: If the LLM returns an empty or malformed response
            RefinementError: If LLM request fails after all retries
        """
        try:
            import litellm
        except ImportError as e:
            raise RefinementError("litellm not installed. Install with: pip install litellm") from e

        litellm.telemetry = False

        model = self._get_model_string()
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            if attempt > 0:
                logger.info("Retry %d/%d for %s", attempt + 1, self.max_retries, model)

            try:
                response = litellm.completion(
                    model=model,
                    messages=[{"role": "user", "content": prompt}],
                    max_tokens=max_tokens,
                    temperature=self.temperature,
                    top_p=self.top_p,
                    stream=False,
                    api_base=self.base_url,
                    timeout=self.timeout,
                )

                self._record_usage(response)
                return _message_content(response)

            except RefinementResponseError:
                raise
            except Exception as e:
                last_error = e
                error_str = str(e).lower()

                if "connection" in error_str or "refused" in error_str:
                    logger.warning("Connection error: %s", e)
                elif "timeout" in error_str:
                    logger.warning("Timeout, retrying...")
                elif "rate limit" in error_str:
                    logger.warning("Rate limited, waiting...")
                    time.sleep(self.retry_delay * 2)
                    continue

                if attempt < self.max_retries - 1:
                    time.sleep(self.retry_delay)

        raise RefinementError(
            f"LLM request failed after {self.max_retries} retries: {last_error}"
        ) from last_error

    def _record_usage(self, response: Any) -> None:
        usage = getattr(response, "usage", None)
        if usage:
            self._token_usage["prompt_tokens"] += getattr(usage, "prompt_tokens", 0) or 0
            self._token_usage["completion_tokens"] += getattr(usage, "completion_tokens", 0) or 0
            self._token_usage["total_tokens"] += getattr(usage, "total_tokens", 0) or 0

    def get_token_usage(self) -> dict[str, int]:
        """Get cumulative token usage."""
        return self._token_usage.copy()

    def reset_token_usage(self) -> None:
        """Reset token usage counters."""
        self._token_usage = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}


def _message_content(response: Any) -> str:
    choices = getattr(response, "choices", None)
    if not choices:
        raise RefinementResponseError("Empty response from LLM")

    message = getattr(choices[0], "message", None)
    if message is None:
        raise RefinementResponseError("No message in LLM response")

    content = getattr(message, "content", None)
    if content is None:
        raise RefinementResponseError("No content in LLM message")

    return content


def create_client_from_settings(settings: Any) -> LLMClient:
    """Create LLM client from RefinementSettings.

    Args:
        settings: RefinementSettings instance

    Returns:
        Configured LLMClient
    """
    return LLMClient(
        model=settings.model,
        base_url=settings.base_url,
        timeout=settings.timeout,
        max_retries=settings.max_retries,
    )
