"""Groq chat provider using the OpenAI-compatible SDK."""

from __future__ import annotations

import logging
from typing import Final

from openai import APIError, AsyncOpenAI

from khet.ai.backoff import retry_with_backoff
from khet.ai.providers.base import ChatBackendError, ChatMessage, ChatModel, ChatResponse
from khet.config import Settings
from khet.core.logging import preview

logger = logging.getLogger(__name__)


class GroqChatModel(ChatModel):
  """Chat completions against Groq's OpenAI-compatible endpoint."""

  def __init__(self, name: str, api_key: str | None, *, base_url: str, timeout: float = 30.0, client: AsyncOpenAI | None = None) -> None:
    self.name = name
    if client is None and api_key:
      client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
    # Without a key the service still starts; chat calls fail with ChatBackendError.
    self._client = client

  async def chat(self, messages: list[ChatMessage], *, temperature: float = 0.3, max_tokens: int = 1500) -> ChatResponse:
    if self._client is None:
      raise ChatBackendError("GROQ_API_KEY environment variable is required")
    try:
      response = await retry_with_backoff(self._client.chat.completions.create, model=self.name, messages=messages, temperature=temperature, max_tokens=max_tokens)
    except APIError as exc:
      logger.error("Groq chat failed model=%s error=%s", self.name, exc)
      raise ChatBackendError(f"Chat backend failed: {exc}") from exc

    if not response.choices:
      raise ChatBackendError("Chat backend returned no choices.")
    content = response.choices[0].message.content or ""
    logger.debug("Groq response model=%s preview=%s", self.name, preview(content))

    usage = None
    if response.usage:
      usage = {"prompt_tokens": response.usage.prompt_tokens, "completion_tokens": response.usage.completion_tokens, "total_tokens": response.usage.total_tokens}
    return ChatResponse(content=content, model=self.name, usage=usage)

  async def close(self) -> None:
    if self._client is not None:
      await self._client.close()


class GroqProvider:
  """Groq provider."""

  _DEFAULT_MODEL: Final[str] = "openai/gpt-oss-20b"

  def __init__(self, api_key: str | None = None, base_url: str = "https://api.groq.com/openai/v1", timeout: float = 30.0) -> None:
    self.name: str = "groq"
    self._api_key = api_key
    self._base_url = base_url
    self._timeout = timeout

  def get_model(self, model: str | None = None) -> GroqChatModel:
    """Return a Groq model client."""
    return GroqChatModel(model or self._DEFAULT_MODEL, self._api_key, base_url=self._base_url, timeout=self._timeout)

  @classmethod
  def from_settings(cls, settings: Settings) -> GroqProvider:
    return cls(api_key=settings.groq_api_key, base_url=settings.groq_base_url)
