"""Resilient translation and speech client.

Wraps the language backend with language-code normalization, a content-hash
cache, an ordered tone-mode fallback ladder, structure-preserving chunking for
long inputs, and original-text fallback so a failed translation never hides
content from the farmer.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from typing import Any, Protocol

from khet.ai.providers.base import BackendError, InputTooLongError, ModeRejectedError
from khet.ai.providers.sarvam import MAX_AUDIO_BYTES, SpeechToTextPayload, TranslatePayload
from khet.core.logging import preview
from khet.services.text_structure import TextStructure, extract_structure, reconstruct
from khet.services.translation_cache import TranslationCache, make_entry

logger = logging.getLogger(__name__)

AUTO = "auto"
DEFAULT_LANGUAGE = "en-IN"

LANGUAGE_ALIASES: dict[str, str] = {
  "english": "en-IN",
  "en": "en-IN",
  "eng": "en-IN",
  "en-in": "en-IN",
  "hindi": "hi-IN",
  "hi": "hi-IN",
  "hi-in": "hi-IN",
  "telugu": "te-IN",
  "te": "te-IN",
  "te-in": "te-IN",
}

TONE_MODES: tuple[str, ...] = ("formal", "modern-colloquial", "classic-colloquial")
# Label recorded for an attempt sent without a mode parameter.
NO_MODE_LABEL = "default"

_SPEAKERS = ("meera", "pavithra", "maitreyi", "amol", "amartya", "arvind", "maya", "arjun", "diya", "neel", "misha", "vian")
VOICE_SPEAKERS: dict[str, tuple[str, ...]] = {"en-IN": _SPEAKERS, "hi-IN": _SPEAKERS, "te-IN": _SPEAKERS}

THINK_BLOCK_RE = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)
THINK_TAG_RE = re.compile(r"</?think>", re.IGNORECASE)
BLANK_LINES_RE = re.compile(r"\n\s*\n")


class TranslationBackend(Protocol):
  async def translate(self, text: str, source: str, target: str, mode: str | None = None) -> TranslatePayload: ...

  async def text_to_speech(self, text: str, language: str, speaker: str) -> str: ...

  async def speech_to_text(self, audio: bytes, language: str | None = None) -> SpeechToTextPayload: ...


def normalize_language(code: str | None) -> str:
  """Map aliases such as 'hindi' or 'hi' to backend codes; unknown codes pass through."""
  if not code:
    return DEFAULT_LANGUAGE
  return LANGUAGE_ALIASES.get(str(code).strip().lower(), str(code).strip())


def normalize_source(code: str | None) -> str:
  if code is None or str(code).strip().lower() in {"", AUTO, "unknown"}:
    return AUTO
  return normalize_language(code)


def mode_strategies(target: str) -> list[str | None]:
  """Ordered tone modes to try; None means the mode parameter is omitted."""
  if target == DEFAULT_LANGUAGE:
    return [None]
  return [*TONE_MODES, None]


def clean_model_text(text: str | None) -> str:
  """Drop <think> blocks and collapse runs of blank lines."""
  if not text:
    return ""
  cleaned = THINK_BLOCK_RE.sub("", text)
  cleaned = THINK_TAG_RE.sub("", cleaned)
  return BLANK_LINES_RE.sub("\n\n", cleaned.strip())


def truncate_for_tts(text: str, limit: int = 500) -> str:
  """Cut text to `limit` chars, preferring the last sentence end that fits."""
  if len(text) <= limit:
    return text
  window = text[:limit]
  boundary = max(window.rfind("."), window.rfind("!"), window.rfind("?"))
  if boundary > 0:
    return window[: boundary + 1]
  return text[: limit - 3].rstrip() + "..."


def valid_speaker(language: str, speaker: str | None) -> str:
  speakers = VOICE_SPEAKERS.get(language, VOICE_SPEAKERS[DEFAULT_LANGUAGE])
  if speaker in speakers:
    return speaker
  return speakers[0]


@dataclass(frozen=True)
class Ok:
  payload: TranslatePayload
  mode: str | None


@dataclass(frozen=True)
class RetryableError:
  reason: str


@dataclass(frozen=True)
class FatalError:
  reason: str
  user_message: str | None = None


@dataclass(frozen=True)
class TooLong:
  reason: str


AttemptResult = Ok | RetryableError | FatalError | TooLong


@dataclass(frozen=True)
class TranslationResult:
  success: bool
  translated_text: str
  source_language: str
  target_language: str
  mode: str | None = None
  cached: bool = False
  preserved_formatting: bool = False
  error: str | None = None

  def to_dict(self) -> dict[str, Any]:
    return asdict(self)


@dataclass(frozen=True)
class SpeechResult:
  success: bool
  audio: str | None = None
  language: str | None = None
  speaker: str | None = None
  error: str | None = None


@dataclass(frozen=True)
class TranscriptionResult:
  success: bool
  transcript: str = ""
  language: str | None = None
  error: str | None = None


class TranslationResilienceClient:
  """Translate and speak text through a length-limited, occasionally picky backend.

  `translate` never raises: it returns a tagged result whose text is the
  original input whenever the backend could not produce a translation.
  """

  def __init__(self, backend: TranslationBackend, cache: TranslationCache, *, char_limit: int = 1000, batch_size: int = 5, tts_char_limit: int = 500) -> None:
    self._backend = backend
    self._cache = cache
    self._char_limit = char_limit
    self._batch_size = max(batch_size, 1)
    self._tts_char_limit = tts_char_limit

  @property
  def cache(self) -> TranslationCache:
    return self._cache

  async def translate(self, text: str | None, source: str | None = AUTO, target: str | None = "hi-IN") -> TranslationResult:
    return await self._translate(text, source, target, allow_chunking=True)

  async def translate_formatted(self, text: str | None, source: str | None = AUTO, target: str | None = "hi-IN") -> TranslationResult:
    """Translate line by line so lists and headers survive, whatever the length."""
    if not text or not isinstance(text, str):
      return TranslationResult(success=True, translated_text=text or "", source_language=normalize_source(source), target_language=normalize_language(target))

    src = normalize_source(source)
    tgt = normalize_language(target)
    if src == tgt:
      return TranslationResult(success=True, translated_text=text, source_language=src, target_language=tgt)

    cached = await self._cache.get(text, src, tgt)
    if cached is not None:
      return TranslationResult(success=True, translated_text=cached.text, source_language=cached.source_lang, target_language=tgt, mode=cached.mode, cached=True, preserved_formatting=True)

    return await self._translate_chunked(text, src, tgt)

  async def _translate(self, text: str | None, source: str | None, target: str | None, *, allow_chunking: bool) -> TranslationResult:
    if not text or not isinstance(text, str):
      return TranslationResult(success=True, translated_text=text or "", source_language=normalize_source(source), target_language=normalize_language(target))

    src = normalize_source(source)
    tgt = normalize_language(target)
    if src == tgt:
      return TranslationResult(success=True, translated_text=text, source_language=src, target_language=tgt)

    cached = await self._cache.get(text, src, tgt)
    if cached is not None:
      return TranslationResult(success=True, translated_text=cached.text, source_language=cached.source_lang, target_language=tgt, mode=cached.mode, cached=True)

    if allow_chunking and len(text) > self._char_limit:
      logger.info("Text of %s chars exceeds limit %s; translating in segments", len(text), self._char_limit)
      return await self._translate_chunked(text, src, tgt)

    failure = "Translation failed."
    for mode in mode_strategies(tgt):
      outcome = await self._attempt(text, src, tgt, mode)
      if isinstance(outcome, Ok):
        translated = outcome.payload.translated_text
        detected = outcome.payload.source_language_code or src
        label = outcome.mode or NO_MODE_LABEL
        entry = make_entry(text, src, tgt, translated, mode=label, detected_source=detected)
        self._cache.put(entry.key, entry)
        return TranslationResult(success=True, translated_text=translated, source_language=detected, target_language=tgt, mode=label)
      if isinstance(outcome, TooLong):
        if allow_chunking:
          logger.info("Backend rejected length; translating in segments")
          return await self._translate_chunked(text, src, tgt)
        failure = outcome.reason
        break
      if isinstance(outcome, RetryableError):
        logger.info("Mode %s rejected for %s; trying next mode", mode or NO_MODE_LABEL, tgt)
        failure = outcome.reason
        continue
      failure = outcome.user_message or outcome.reason
      break

    logger.warning("Translation to %s failed; returning original text preview=%s", tgt, preview(text))
    return TranslationResult(success=False, translated_text=text, source_language=src, target_language=tgt, error=failure)

  async def _attempt(self, text: str, source: str, target: str, mode: str | None) -> AttemptResult:
    try:
      payload = await self._backend.translate(text, source, target, mode)
    except ModeRejectedError as exc:
      return RetryableError(exc.message)
    except InputTooLongError as exc:
      return TooLong(exc.message)
    except BackendError as exc:
      logger.warning("Translation attempt failed mode=%s status=%s: %s", mode or NO_MODE_LABEL, exc.status_code, exc.message)
      return FatalError(exc.message, exc.user_message)
    if not payload.translated_text:
      return FatalError("Backend returned an empty translation.")
    return Ok(payload, mode)

  async def _translate_chunked(self, text: str, source: str, target: str) -> TranslationResult:
    structure = extract_structure(text, max_segment_chars=self._char_limit)
    translated, failures = await self._translate_segments(structure, source, target)
    output = reconstruct(structure, translated)

    if failures:
      logger.warning("%s of %s segments kept their original text", failures, len(structure.segments))
      return TranslationResult(
        success=False, translated_text=output, source_language=source, target_language=target, preserved_formatting=True, error=f"{failures} segment(s) could not be translated."
      )

    entry = make_entry(text, source, target, output, mode="segmented")
    self._cache.put(entry.key, entry)
    return TranslationResult(success=True, translated_text=output, source_language=source, target_language=target, mode="segmented", preserved_formatting=True)

  async def _translate_segments(self, structure: TextStructure, source: str, target: str) -> tuple[list[str], int]:
    segments: Sequence[str] = structure.segments
    translated: list[str] = []
    failures = 0
    for start in range(0, len(segments), self._batch_size):
      batch = segments[start : start + self._batch_size]
      results = await asyncio.gather(*(self._translate(segment, source, target, allow_chunking=False) for segment in batch))
      for original, result in zip(batch, results, strict=True):
        if result.success:
          translated.append(result.translated_text)
        else:
          failures += 1
          translated.append(original)
    return translated, failures

  async def text_to_speech(self, text: str | None, language: str | None = DEFAULT_LANGUAGE, speaker: str | None = "meera") -> SpeechResult:
    lang = normalize_language(language)
    cleaned = truncate_for_tts(clean_model_text(text), self._tts_char_limit)
    if not cleaned:
      return SpeechResult(success=False, language=lang, error="No text to speak.")

    voice = valid_speaker(lang, speaker)
    try:
      audio = await self._backend.text_to_speech(cleaned, lang, voice)
    except BackendError as exc:
      logger.warning("Text-to-speech failed lang=%s status=%s: %s", lang, exc.status_code, exc.message)
      return SpeechResult(success=False, language=lang, speaker=voice, error=exc.user_message)
    return SpeechResult(success=True, audio=audio, language=lang, speaker=voice)

  async def speech_to_text(self, audio: bytes | None, language: str | None = None) -> TranscriptionResult:
    if not audio:
      return TranscriptionResult(success=False, error="Invalid audio data")
    if len(audio) > MAX_AUDIO_BYTES:
      return TranscriptionResult(success=False, error="Audio file too large. Maximum size is 5MB.")

    lang = None if normalize_source(language) == AUTO else normalize_language(language)
    try:
      payload = await self._backend.speech_to_text(audio, lang)
    except BackendError as exc:
      logger.warning("Speech-to-text failed status=%s: %s", exc.status_code, exc.message)
      return TranscriptionResult(success=False, language=lang, error=exc.user_message)
    if not payload.transcript.strip():
      return TranscriptionResult(success=False, language=payload.language_code or lang, error="Could not understand the audio. Please speak clearly and try again.")
    return TranscriptionResult(success=True, transcript=payload.transcript, language=payload.language_code or lang)
