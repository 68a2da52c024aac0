"""Sarvam translation and speech backend client over httpx."""

from __future__ import annotations

import base64
import logging
from typing import TypeVar

import httpx
import msgspec

from khet.ai.providers.base import BackendError, InputTooLongError, ModeRejectedError
from khet.config import Settings

logger = logging.getLogger(__name__)

TRANSLATE_MODEL = "mayura:v1"
TTS_MODEL = "bulbul:v1"
STT_MODEL = "saarika:v2"
MAX_AUDIO_BYTES = 5 * 1024 * 1024

_TOO_LONG_MARKERS = ("exceed 1000 characters", "Input text must not exceed")


class TranslatePayload(msgspec.Struct, frozen=True):
  translated_text: str
  source_language_code: str | None = None


class TextToSpeechPayload(msgspec.Struct, frozen=True):
  audios: list[str] = msgspec.field(default_factory=list)


class SpeechToTextPayload(msgspec.Struct, frozen=True):
  transcript: str = ""
  language_code: str | None = None


class SarvamClient:
  """Thin async client for the translate, text-to-speech and speech-to-text endpoints.

  Raises BackendError (or a subclass) on any failure. Upstream timeouts are
  owned by the httpx client.
  """

  def __init__(self, api_key: str | None, *, base_url: str = "https://api.sarvam.ai", timeout: float = 30.0, client: httpx.AsyncClient | None = None) -> None:
    self._api_key = api_key
    self._base_url = base_url.rstrip("/")
    self._client = client or httpx.AsyncClient(timeout=timeout)

  @classmethod
  def from_settings(cls, settings: Settings) -> SarvamClient:
    return cls(settings.sarvam_api_key, base_url=settings.sarvam_base_url, timeout=settings.sarvam_timeout_seconds)

  def _headers(self) -> dict[str, str]:
    if not self._api_key:
      raise BackendError("SARVAM_API_KEY is not configured.", status_code=401, user_message="Language service is not configured.")
    return {"api-subscription-key": self._api_key}

  async def _post(self, path: str, **kwargs: object) -> httpx.Response:
    url = f"{self._base_url}{path}"
    try:
      response = await self._client.post(url, headers=self._headers(), **kwargs)  # type: ignore[arg-type]
      response.raise_for_status()
    except httpx.HTTPStatusError as e:
      body = e.response.text
      status_code = e.response.status_code
      logger.warning("Sarvam %s returned %s: %s", path, status_code, body[:300])
      if "body.mode" in body:
        raise ModeRejectedError(f"Mode rejected: {body}", status_code=status_code) from e
      if any(marker in body for marker in _TOO_LONG_MARKERS):
        raise InputTooLongError(f"Input too long: {body}", status_code=status_code, user_message="Text is too long for a single request.") from e
      raise BackendError(f"Sarvam {path} error {status_code}: {body}", status_code=status_code, user_message=_user_message(path, status_code, body)) from e
    except httpx.RequestError as e:
      logger.warning("Sarvam %s request failed: %s", path, e)
      raise BackendError(f"Sarvam {path} request failed: {e}") from e
    return response

  async def translate(self, text: str, source: str, target: str, mode: str | None = None) -> TranslatePayload:
    body: dict[str, str] = {"input": text, "source_language_code": source, "target_language_code": target, "model": TRANSLATE_MODEL}
    if mode is not None:
      body["mode"] = mode
    response = await self._post("/translate", json=body)
    return _decode(response, TranslatePayload)

  async def text_to_speech(self, text: str, language: str, speaker: str) -> str:
    """Return synthesized audio as a base64 string."""
    body = {
      "inputs": [text],
      "target_language_code": language,
      "speaker": speaker,
      "pitch": 0,
      "pace": 1.2,
      "loudness": 1.5,
      "speech_sample_rate": 16000,
      "enable_preprocessing": True,
      "model": TTS_MODEL,
    }
    response = await self._post("/text-to-speech", json=body)
    if "application/json" not in response.headers.get("content-type", ""):
      return base64.b64encode(response.content).decode("ascii")
    payload = _decode(response, TextToSpeechPayload)
    if not payload.audios:
      raise BackendError("Text-to-speech returned no audio.", status_code=response.status_code, user_message="No audio was generated. Please try again.")
    return payload.audios[0]

  async def speech_to_text(self, audio: bytes, language: str | None = None, *, filename: str = "audio.wav", content_type: str = "audio/wav") -> SpeechToTextPayload:
    data = {"model": STT_MODEL}
    if language:
      data["language_code"] = language
    response = await self._post("/speech-to-text", data=data, files={"file": (filename, audio, content_type)})
    return _decode(response, SpeechToTextPayload)

  async def close(self) -> None:
    await self._client.aclose()


_T = TypeVar("_T", bound=msgspec.Struct)


def _decode(response: httpx.Response, struct_type: type[_T]) -> _T:
  try:
    return msgspec.json.decode(response.content, type=struct_type)
  except msgspec.DecodeError as exc:
    raise BackendError(f"Unexpected response payload: {exc}", status_code=response.status_code, user_message="Language service returned an unexpected response.") from exc


def _user_message(path: str, status_code: int, body: str) -> str:
  if status_code == 400:
    if path == "/speech-to-text":
      return "Invalid audio format or parameters. Please try again."
    if path == "/text-to-speech" and "Speaker" in body:
      return "Invalid speaker for this model. Please try again."
    return "Invalid text or parameters. Please try again."
  if status_code == 401:
    return "Authentication failed. Please check API key."
  if status_code >= 500:
    return "Server error. Please try again later."
  return f"Language service error: {status_code}"
