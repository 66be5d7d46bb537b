"""
Claude API Client

Anthropic client used for free-text replies outside the booking flows and
for classifying ambiguous mentions of an appointment. Without an API key
the client cannot be built and callers fall back to fixed replies.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from anthropic import AsyncAnthropic, APIError, RateLimitError, APIConnectionError

from app.config import settings

logger = logging.getLogger(__name__)


class ClaudeClientError(Exception):
    """Raised when the model cannot be reached or is not configured."""
    pass


@dataclass
class ClaudeResponse:
    """Response from Claude API."""
    content: str
    model: str
    input_tokens: int
    output_tokens: int
    stop_reason: str
    latency_ms: float


def build_messages(prompt: str, history: Optional[list[dict]] = None) -> list[dict]:
    """
    Turn stored session history plus the new message into API messages.

    History is trimmed from the front, so it can start with an assistant
    turn; the API needs the first message from the user. Consecutive turns
    of the same role are merged.
    """
    messages: list[dict] = []
    for turn in [*(history or []), {"role": "user", "content": prompt}]:
        role, content = turn.get("role"), turn.get("content")
        if role not in ("user", "assistant") or not content:
            continue
        if not messages and role == "assistant":
            continue
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += f"\n{content}"
        else:
            messages.append({"role": role, "content": content})
    return messages


class ClaudeClient:
    """
    Async Claude API client wrapper.

    Rate limits and connection errors are retried with exponential backoff;
    any other API error is raised immediately as ClaudeClientError.
    """

    _instance: Optional["ClaudeClient"] = None

    def __init__(self, api_key: Optional[str] = None, max_retries: Optional[int] = None):
        """Initialize Claude client.

        Args:
            api_key: Anthropic API key (defaults to settings)
            max_retries: Attempts per call (defaults to settings)
        """
        self.api_key = api_key or settings.anthropic_api_key
        if not self.api_key:
            raise ClaudeClientError("Anthropic API key is not configured")

        self._client = AsyncAnthropic(api_key=self.api_key)
        self._default_model = settings.claude_model
        self._max_retries = max_retries or settings.claude_max_retries

        logger.info(f"ClaudeClient initialized with model={self._default_model}")

    @classmethod
    def get_instance(cls) -> "ClaudeClient":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        history: Optional[list[dict]] = None,
        max_tokens: Optional[int] = None,
        temperature: float = 0.0,
    ) -> ClaudeResponse:
        """
        Generate a reply.

        Args:
            prompt: Contact's message
            system_prompt: System prompt (optional)
            history: Earlier {"role", "content"} turns, oldest first
            max_tokens: Maximum tokens in response
            temperature: Sampling temperature

        Returns:
            ClaudeResponse with the text blocks joined

        Raises:
            ClaudeClientError: If the call fails after retries
        """
        start_time = time.time()

        kwargs: dict[str, Any] = {
            "model": self._default_model,
            "max_tokens": max_tokens or settings.claude_max_tokens,
            "temperature": temperature,
            "messages": build_messages(prompt, history),
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        response = await self._call_with_retry(kwargs)

        return ClaudeResponse(
            content="".join(
                block.text for block in response.content if getattr(block, "type", "") == "text"
            ),
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason or "",
            latency_ms=(time.time() - start_time) * 1000,
        )

    async def _call_with_retry(self, kwargs: dict[str, Any]) -> Any:
        """Call the API, backing off on rate limits and connection errors."""
        last_error: Optional[Exception] = None

        for attempt in range(self._max_retries):
            try:
                return await self._client.messages.create(**kwargs)
            except (RateLimitError, APIConnectionError) as e:
                last_error = e
                wait_time = 2 ** attempt
                logger.warning(
                    f"{type(e).__name__}, retrying in {wait_time}s "
                    f"(attempt {attempt + 1}/{self._max_retries})"
                )
                await asyncio.sleep(wait_time)
            except APIError as e:
                raise ClaudeClientError(f"Claude API call failed: {e}") from e

        raise ClaudeClientError(f"Claude API call failed after retries: {last_error}")

    async def close(self) -> None:
        """Close the client."""
        await self._client.close()


async def get_claude_client() -> ClaudeClient:
    """Get Claude client singleton instance."""
    return ClaudeClient.get_instance()


async def close_claude_client() -> None:
    """Close the singleton if it was created."""
    if ClaudeClient._instance is not None:
        await ClaudeClient._instance.close()
        ClaudeClient.reset_instance()
