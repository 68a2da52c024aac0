"""Base interfaces and error types for chat and language backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


class BackendError(Exception):
  """HTTP-level failure of the translation, speech or content backend.

  `status_code` is None for network errors and timeouts. `user_message` is safe
  to show to a farmer.
  """

  def __init__(self, message: str, *, status_code: int | None = None, user_message: str | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code
    self.message = message
    self.user_message = user_message or default_user_message(status_code)


class ModeRejectedError(BackendError):
  """The backend rejected the requested tone mode; another mode may work."""


class InputTooLongError(BackendError):
  """The input exceeded the backend's length limit; the caller should chunk it."""


class ChatBackendError(Exception):
  """Raised when the chat backend cannot produce a completion."""


def default_user_message(status_code: int | None) -> str:
  if status_code is None:
    return "Network error. Please check your connection and try again."
  if status_code == 400:
    return "The request was not accepted. Please try rephrasing."
  if status_code in {401, 403}:
    return "Language service authentication failed. Please check the API key."
  if status_code == 429:
    return "Language service is busy. Please try again in a moment."
  if status_code >= 500:
    return "Language service is temporarily unavailable. Please try again later."
  return "Language service request failed."


ChatMessage = dict[str, str]


@dataclass
class ChatResponse:
  """Minimal chat completion result."""

  content: str
  model: str
  usage: dict[str, int] | None = None


class ChatModel(ABC):
  """Abstract chat completion client."""

  name: str

  @abstractmethod
  async def chat(self, messages: list[ChatMessage], *, temperature: float = 0.3, max_tokens: int = 1500) -> ChatResponse:
    """Return a completion for the given messages."""

  async def close(self) -> None:
    """Release network resources held by the client."""
