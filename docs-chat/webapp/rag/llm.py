"""Streaming chat-completion client for OpenAI-compatible and Anthropic APIs.

The default provider is "openai" pointed at Groq's OpenAI-compatible endpoint;
any other OpenAI-compatible server works by changing the base URL.
"""

import logging
import os
from typing import Callable, Optional

from errors import ExternalServiceError

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "llama-3.3-70b-versatile"
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-6"
DEFAULT_MAX_TOKENS = 2048


def _openai_fragment(chunk) -> Optional[str]:
    if chunk.choices and chunk.choices[0].delta.content:
        return chunk.choices[0].delta.content
    return None


def _anthropic_fragment(event) -> Optional[str]:
    if getattr(event, "type", None) == "content_block_delta" and getattr(event.delta, "type", None) == "text_delta":
        return event.delta.text or None
    return None


class CompletionStream:
    """Async iterator of non-empty text fragments over an open upstream stream."""

    def __init__(self, response, extract: Callable[[object], Optional[str]]):
        self._response = response
        self._iterator = response.__aiter__()
        self._extract = extract
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        while True:
            event = await self._iterator.__anext__()
            text = self._extract(event)
            if text:
                return text

    async def aclose(self) -> None:
        """Release the upstream HTTP stream. Idempotent."""
        if self.closed:
            return
        self.closed = True
        await self._response.close()


class LLMClient:
    """Async streaming chat client shared by all requests."""

    def __init__(
        self,
        provider: str = "openai",
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        self.provider = provider
        self.max_tokens = max_tokens
        client_kwargs = {}
        if timeout is not None:
            client_kwargs["timeout"] = timeout
        if base_url:
            client_kwargs["base_url"] = base_url

        if provider == "anthropic":
            import anthropic
            self.model = model or DEFAULT_ANTHROPIC_MODEL
            self.client = anthropic.AsyncAnthropic(
                api_key=api_key or os.getenv("ANTHROPIC_API_KEY"),
                **client_kwargs,
            )
        elif provider == "openai":
            from openai import AsyncOpenAI
            self.model = model or DEFAULT_OPENAI_MODEL
            self.client = AsyncOpenAI(
                api_key=api_key or os.getenv("GROQ_API_KEY") or os.getenv("OPENAI_API_KEY"),
                **client_kwargs,
            )
        else:
            raise ValueError(f"Unsupported provider: {provider}")

    async def open_stream(self, messages: list[dict]) -> CompletionStream:
        """Start a streaming completion.

        Returns once the upstream stream is open, so connection and auth
        failures surface here rather than mid-answer.

        Raises:
            ExternalServiceError: If the request cannot be started.
        """
        try:
            if self.provider == "anthropic":
                system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
                conversation = [m for m in messages if m["role"] != "system"]
                response = await self.client.messages.create(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    system=system,
                    messages=conversation,
                    stream=True,
                )
                return CompletionStream(response, _anthropic_fragment)

            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                stream=True,
            )
            return CompletionStream(response, _openai_fragment)
        except Exception as e:
            logger.error("Completion request to %s/%s failed: %s", self.provider, self.model, e)
            raise ExternalServiceError(f"Completion service error: {e}") from e
