"""
AI providers consumed by llm and image steps.

Both expose the same capability: `chat(messages)` returns an async iterator
of text fragments. The engine concatenates every fragment before moving on.
"""
from __future__ import annotations

import base64
import logging
import random
import re
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Sequence
from urllib.parse import quote

import httpx
from anthropic import APIError, AsyncAnthropic

from stepflow.config import settings
from stepflow.core.exceptions import ProviderError

logger = logging.getLogger(__name__)

ChatMessage = dict[str, str]

IMAGE_COMMAND_PREFIX = re.compile(r"^/img\s+", re.IGNORECASE)

_anthropic_client: AsyncAnthropic | None = None


def anthropic_configured() -> bool:
    return bool(settings.anthropic_api_key.get_secret_value())


def get_anthropic_client() -> AsyncAnthropic:
    """Process-wide client; created on first use so imports never need a key."""
    global _anthropic_client
    if _anthropic_client is None:
        _anthropic_client = AsyncAnthropic(
            api_key=settings.anthropic_api_key.get_secret_value(),
            timeout=settings.http_timeout_seconds,
        )
    return _anthropic_client


class ChatProvider(ABC):
    name: str = "provider"

    @abstractmethod
    def chat(self, messages: Sequence[ChatMessage]) -> AsyncIterator[str]:
        """Yield text fragments for the given message list."""


class AnthropicChatProvider(ChatProvider):
    """Streams a completion from the Anthropic Messages API."""

    name = "anthropic"

    def __init__(
        self,
        client: AsyncAnthropic | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> None:
        self._client = client
        self.model = model or settings.anthropic_model
        self.max_tokens = max_tokens or settings.llm_max_tokens
        self.temperature = settings.llm_temperature if temperature is None else temperature

    def _get_client(self) -> AsyncAnthropic:
        if self._client is not None:
            return self._client
        if not anthropic_configured():
            raise ProviderError("ANTHROPIC_API_KEY not configured")
        return get_anthropic_client()

    async def chat(self, messages: Sequence[ChatMessage]) -> AsyncIterator[str]:
        client = self._get_client()
        system = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
        conversation = [
            {"role": m.get("role", "user"), "content": m["content"]}
            for m in messages
            if m.get("role") != "system"
        ]
        request: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": conversation,
        }
        if system:
            request["system"] = system

        try:
            async with client.messages.stream(**request) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield text
        except APIError as exc:
            logger.error("Anthropic streaming failed: %s", exc)
            raise ProviderError(f"Anthropic request failed: {exc}") from exc


class PollinationsImageProvider(ChatProvider):
    """Generates an image from the last message and yields markdown embedding it as a data URL."""

    name = "pollinations"

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        size: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.base_url = str(base_url or settings.image_base_url)
        if not self.base_url.endswith("/"):
            self.base_url += "/"
        self.api_key = api_key if api_key is not None else settings.pollinations_api_key.get_secret_value()
        self.model = model or settings.image_model
        self.size = size or settings.image_size
        self._transport = transport
        self._timeout = timeout

    @staticmethod
    def _clean_prompt(content: str) -> str:
        return IMAGE_COMMAND_PREFIX.sub("", content).strip()

    async def chat(self, messages: Sequence[ChatMessage]) -> AsyncIterator[str]:
        if not messages:
            raise ProviderError("Image generation needs a prompt message")
        prompt = self._clean_prompt(messages[-1]["content"])

        url = f"{self.base_url}{quote(prompt, safe='')}"
        params = {
            "width": self.size,
            "height": self.size,
            "seed": random.randint(0, 999999),
            "model": self.model,
            "nologo": "true",
        }
        headers = {"User-Agent": "stepflow", "Accept": "image/*"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        logger.info("Fetching image for prompt %r", prompt[:80])
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Image API request failed: {exc}") from exc

        if response.status_code != 200:
            raise ProviderError(f"Image API error: {response.status_code} - {response.text[:100]}")

        content_type = response.headers.get("content-type", "")
        if content_type and not content_type.startswith("image/"):
            raise ProviderError(f"Image API returned non-image content: {content_type}")

        image_base64 = base64.b64encode(response.content).decode()
        data_url = f"data:{content_type or 'image/jpeg'};base64,{image_base64}"
        yield f"Here is your generated image:\n\n![{prompt}]({data_url})"


class ProviderRotation:
    """Round-robin cursor over chat providers. One instance per owner; no module-level state."""

    def __init__(self, providers: Sequence[ChatProvider]) -> None:
        if not providers:
            raise ValueError("ProviderRotation needs at least one provider")
        self._providers = list(providers)
        self._cursor = 0

    def next(self) -> ChatProvider:
        provider = self._providers[self._cursor]
        self._cursor = (self._cursor + 1) % len(self._providers)
        return provider


async def collect_text(provider: ChatProvider, messages: Sequence[ChatMessage]) -> str:
    """Drain a provider's stream into one string."""
    parts: list[str] = []
    async for fragment in provider.chat(messages):
        parts.append(fragment)
    return "".join(parts)
