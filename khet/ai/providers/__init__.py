"""Provider implementations."""

from khet.ai.providers.base import BackendError, ChatBackendError, ChatMessage, ChatModel, ChatResponse, InputTooLongError, ModeRejectedError
from khet.ai.providers.groq import GroqChatModel, GroqProvider
from khet.ai.providers.sarvam import SarvamClient

__all__ = ["BackendError", "ChatBackendError", "ChatMessage", "ChatModel", "ChatResponse", "InputTooLongError", "ModeRejectedError", "GroqChatModel", "GroqProvider", "SarvamClient"]
