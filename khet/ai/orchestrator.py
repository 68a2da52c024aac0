"""Orchestration for the ask-a-question and content refresh flows."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from khet.ai.analyzer import QueryAnalyzer
from khet.ai.prompts import build_messages, sanitize_response
from khet.ai.providers.base import ChatModel
from khet.ai.providers.groq import GroqProvider
from khet.ai.providers.sarvam import SarvamClient
from khet.ai.safety import SafetyFilter
from khet.ai.sequencer import ReasoningSequencer
from khet.ai.steps import SUCCESS_ICON, ProgressTracker, StepEmitter, StepId, StepSink, StepStatus
from khet.ai.stream import StepStream
from khet.ai.tools import ToolRegistry, ToolResult
from khet.config import Settings
from khet.core.logging import preview
from khet.services.farm_data import FarmDataTools
from khet.services.news import RESOURCE_NAME, Flashcard, NewsClient, NewsFlashcardService, NewsRefreshResult
from khet.services.refresh_cache import RefreshCache
from khet.services.translation import DEFAULT_LANGUAGE, SpeechResult, TranslationResilienceClient, TranslationResult, clean_model_text, normalize_language
from khet.services.translation_cache import TranslationCache
from khet.storage.kv_store import KeyValueStore
from khet.utils.ids import generate_request_id

logger = logging.getLogger(__name__)

EMPTY_QUERY_ANSWER = "Please ask a farming question - about your crops, weather, market prices, pests or government schemes."
CHAT_FAILURE_ANSWER = "Sorry, I could not prepare advice right now. Please try again in a little while."
TOOL_FAILURE_ANSWER = "Sorry, I could not fetch the latest data for your question. Please try again in a little while."
CANCELLED_ERROR = "Query cancelled."


@dataclass(frozen=True)
class AskResult:
  """Final outcome of one query."""

  success: bool
  answer: str
  request_id: str
  language: str = DEFAULT_LANGUAGE
  original_answer: str | None = None
  error: str | None = None
  analysis: dict[str, Any] | None = None
  tools_used: list[str] = field(default_factory=list)
  translation: dict[str, Any] | None = None
  safety: dict[str, Any] | None = None

  def to_dict(self) -> dict[str, Any]:
    return {
      "success": self.success,
      "answer": self.answer,
      "request_id": self.request_id,
      "language": self.language,
      "original_answer": self.original_answer,
      "error": self.error,
      "analysis": self.analysis,
      "tools_used": list(self.tools_used),
      "translation": self.translation,
      "safety": self.safety,
    }


@dataclass(frozen=True)
class VoiceQueryResult:
  success: bool
  transcript: str = ""
  answer: str = ""
  language: str | None = None
  audio: str | None = None
  audio_error: str | None = None
  error: str | None = None
  result: AskResult | None = None


@dataclass
class QueryRun:
  """A query in flight: its step stream and the task producing the final result."""

  request_id: str
  stream: StepStream
  task: asyncio.Task[AskResult]

  async def result(self) -> AskResult:
    return await self.task

  def cancel(self) -> None:
    """Abandon the step stream; no new phase starts afterwards."""
    self.stream.abandon()


class OrchestrationFacade:
  """Compose analysis, sequencing, chat, translation and safety into single operations.

  Owns the shared caches and HTTP clients; `close()` drains pending cache
  writes and releases the clients.
  """

  def __init__(
    self,
    *,
    chat_model: ChatModel,
    translator: TranslationResilienceClient,
    news: NewsFlashcardService | None = None,
    analyzer: QueryAnalyzer | None = None,
    sequencer: ReasoningSequencer | None = None,
    safety: SafetyFilter | None = None,
    closeables: list[Any] | None = None,
  ) -> None:
    self._chat_model = chat_model
    self._translator = translator
    self._news = news
    self._analyzer = analyzer or QueryAnalyzer()
    self._sequencer = sequencer or ReasoningSequencer()
    self._safety = safety or SafetyFilter()
    self._closeables = list(closeables or [])
    self._runs: set[asyncio.Task[AskResult]] = set()

  @classmethod
  def from_settings(
    cls, settings: Settings, store: KeyValueStore, *, tools: ToolRegistry | None = None, tools_client: httpx.AsyncClient | None = None
  ) -> OrchestrationFacade:
    """Build the facade and its collaborators from settings.

    Without an explicit `tools` registry the farm data tools configured in
    settings are registered; `tools_client` replaces their HTTP client.
    """
    cache = TranslationCache(store, max_items=settings.translation_cache_max_items)
    sarvam = SarvamClient.from_settings(settings)
    translator = TranslationResilienceClient(
      sarvam, cache, char_limit=settings.translation_char_limit, batch_size=settings.translation_batch_size, tts_char_limit=settings.tts_char_limit
    )
    provider = GroqProvider.from_settings(settings)
    chat_model = provider.get_model(settings.chat_model)
    summary_model = provider.get_model(settings.summary_model)
    news_cache: RefreshCache[list[Flashcard]] = RefreshCache(RESOURCE_NAME, ttl_seconds=settings.news_cache_ttl_seconds, store=store, payload_type=list[Flashcard])
    news = NewsFlashcardService(NewsClient.from_settings(settings), summary_model, news_cache)
    closeables: list[Any] = [sarvam, chat_model, summary_model]
    if tools is None:
      farm_tools = FarmDataTools.from_settings(settings, client=tools_client)
      tools = farm_tools.registry()
      closeables.append(farm_tools)
    sequencer = ReasoningSequencer(tools, delay_scale=settings.step_delay_scale)
    return cls(chat_model=chat_model, translator=translator, news=news, sequencer=sequencer, closeables=closeables)

  @property
  def translator(self) -> TranslationResilienceClient:
    return self._translator

  def start_query(self, query: str | None, *, language: str | None = DEFAULT_LANGUAGE, context: Mapping[str, Any] | None = None) -> QueryRun:
    """Start processing a query and return its live step stream."""
    request_id = generate_request_id()
    stream = StepStream()
    task = asyncio.create_task(self._run(request_id, query, language, dict(context or {}), stream), name=f"query:{request_id}")
    self._runs.add(task)
    task.add_done_callback(self._runs.discard)
    return QueryRun(request_id=request_id, stream=stream, task=task)

  async def ask(self, query: str | None, *, language: str | None = DEFAULT_LANGUAGE, context: Mapping[str, Any] | None = None, on_step: StepSink | None = None) -> AskResult:
    run = self.start_query(query, language=language, context=context)
    async for step in run.stream:
      if on_step is not None:
        on_step(step)
    return await run.result()

  async def _run(self, request_id: str, query: str | None, language: str | None, context: dict[str, Any], stream: StepStream) -> AskResult:
    emitter = StepEmitter(ProgressTracker(stream.push))
    try:
      result = await self._process(request_id, query, language, context, emitter, stream)
    except Exception as exc:
      logger.error("Query %s failed unexpectedly: %s", request_id, exc, exc_info=True)
      emitter({"id": StepId.ERROR, "title": "Something went wrong", "description": CHAT_FAILURE_ANSWER, "status": StepStatus.ERROR})
      stream.finish(error=str(exc) or type(exc).__name__)
      return AskResult(success=False, answer=CHAT_FAILURE_ANSWER, request_id=request_id, language=normalize_language(language), error=str(exc))
    else:
      stream.finish(error=None if result.success else result.error or "Query failed.")
      return result
    finally:
      # A cancelled task reaches neither branch above; consumers still need an end.
      if not stream.finished:
        logger.info("Query %s cancelled", request_id)
        stream.finish(error=CANCELLED_ERROR)
      emitter.close()

  async def _process(self, request_id: str, query: str | None, language: str | None, context: dict[str, Any], emit: StepEmitter, stream: StepStream) -> AskResult:
    lang = normalize_language(language)
    text = (query or "").strip()
    if not text:
      return AskResult(success=True, answer=EMPTY_QUERY_ANSWER, request_id=request_id, language=lang)

    logger.info("Query %s lang=%s preview=%s", request_id, lang, preview(text))

    english_query = text
    if lang != DEFAULT_LANGUAGE:
      emit({"id": StepId.QUERY_TRANSLATE, "title": "Understanding your language", "description": "Translating your question to English", "status": StepStatus.ACTIVE})
      translated = await self._translator.translate(text, lang, DEFAULT_LANGUAGE)
      english_query = translated.translated_text
      description = "Question translated" if translated.success else "Using your original words"
      emit({"id": StepId.QUERY_TRANSLATE, "title": "Language understood", "description": description, "status": StepStatus.COMPLETED, "icon": SUCCESS_ICON})

    if stream.abandoned:
      return self._cancelled(request_id, lang)

    analysis = self._analyzer.analyze(english_query, context)

    async def respond(tool_results: Sequence[ToolResult]) -> str:
      response = await self._chat_model.chat(build_messages(english_query, analysis, context, tool_results))
      logger.info("Query %s answered by %s", request_id, response.model)
      return sanitize_response(clean_model_text(response.content))

    sequence = await self._sequencer.run(analysis, emit, query=english_query, cancel_event=stream.cancel_event, responder=respond)
    if sequence.cancelled:
      return self._cancelled(request_id, lang)
    if sequence.error is not None:
      logger.error("Query %s failed during %s: %s", request_id, sequence.failed_phase, sequence.error)
      answer = CHAT_FAILURE_ANSWER if sequence.failed_phase == StepId.RESPONSE else TOOL_FAILURE_ANSWER
      return AskResult(success=False, answer=answer, request_id=request_id, language=lang, error=sequence.error, analysis=analysis.to_dict())
    answer = sequence.answer or ""

    final = answer
    translation: dict[str, Any] | None = None
    if lang != DEFAULT_LANGUAGE:
      emit({"id": StepId.TRANSLATE, "title": "Translating answer", "description": f"Converting advice to {lang}", "status": StepStatus.ACTIVE})
      if "\n" in answer:
        result = await self._translator.translate_formatted(answer, DEFAULT_LANGUAGE, lang)
      else:
        result = await self._translator.translate(answer, DEFAULT_LANGUAGE, lang)
      final = result.translated_text
      translation = {"success": result.success, "cached": result.cached, "mode": result.mode, "preserved_formatting": result.preserved_formatting}
      description = "Answer translated" if result.success else "Showing the answer in English"
      emit({"id": StepId.TRANSLATE, "title": "Translation complete", "description": description, "status": StepStatus.COMPLETED, "icon": SUCCESS_ICON})

    filtered = self._safety.apply(final)
    emit({"id": StepId.COMPLETE, "title": "Done", "description": "Your advice is ready", "status": StepStatus.COMPLETED})

    return AskResult(
      success=True,
      answer=filtered.text,
      request_id=request_id,
      language=lang,
      original_answer=answer,
      analysis=analysis.to_dict(),
      tools_used=[item.tool for item in sequence.tool_results],
      translation=translation,
      safety=filtered.verdict.to_dict(),
    )

  def _cancelled(self, request_id: str, language: str) -> AskResult:
    logger.info("Query %s abandoned by consumer", request_id)
    return AskResult(success=False, answer="", request_id=request_id, language=language, error=CANCELLED_ERROR)

  async def process_voice_query(
    self, audio: bytes | None, *, language: str | None = None, context: Mapping[str, Any] | None = None, speaker: str = "meera", on_step: StepSink | None = None
  ) -> VoiceQueryResult:
    """Transcribe, answer, and synthesize speech for a spoken question."""
    transcription = await self._translator.speech_to_text(audio, language)
    if not transcription.success:
      return VoiceQueryResult(success=False, error=transcription.error)

    lang = normalize_language(language or transcription.language)
    result = await self.ask(transcription.transcript, language=lang, context=context, on_step=on_step)
    speech = await self._translator.text_to_speech(result.answer, lang, speaker) if result.answer else SpeechResult(success=False, error="No answer to speak.")
    return VoiceQueryResult(
      success=result.success,
      transcript=transcription.transcript,
      answer=result.answer,
      language=lang,
      audio=speech.audio if speech.success else None,
      audio_error=None if speech.success else speech.error,
      error=result.error,
      result=result,
    )

  async def refresh_news(self, *, force: bool = False) -> NewsRefreshResult:
    if self._news is None:
      return NewsRefreshResult(from_cache=False, error="News is not configured.")
    return await self._news.get_flashcards(force=force)

  async def translate(self, text: str | None, source: str | None = "auto", target: str | None = "hi-IN") -> TranslationResult:
    return await self._translator.translate(text, source, target)

  async def speak(self, text: str | None, language: str | None = DEFAULT_LANGUAGE, speaker: str | None = "meera") -> SpeechResult:
    return await self._translator.text_to_speech(text, language, speaker)

  async def close(self) -> None:
    """Wait for running queries, drain cache writes, and close clients."""
    if self._runs:
      await asyncio.gather(*list(self._runs), return_exceptions=True)
    await self._translator.cache.close()
    if self._news is not None:
      await self._news.close()
    for closeable in self._closeables:
      try:
        await closeable.close()
      except Exception as exc:  # noqa: BLE001
        logger.warning("Failed to close %s: %s", type(closeable).__name__, exc)
