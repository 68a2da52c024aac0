"""Translation client fallbacks, caching and speech helpers."""

from __future__ import annotations

import pytest

from khet.ai.providers.base import BackendError, InputTooLongError
from khet.services.translation import (
  TranslationResilienceClient,
  clean_model_text,
  mode_strategies,
  normalize_language,
  normalize_source,
  truncate_for_tts,
  valid_speaker,
)
from khet.services.translation_cache import TranslationCache, cache_key
from khet.storage.kv_store import InMemoryKeyValueStore
from tests.fakes import FakeTranslationBackend

FORMATTED = "Crop plan:\n1. Sow wheat early\n2. Apply urea after irrigation\n\n- Check soil moisture\n• Remove weeds weekly\nKeep records of every input."


def _identity(text: str, _target: str) -> str:
  return text


@pytest.mark.anyio
async def test_same_language_is_returned_verbatim(translator: TranslationResilienceClient, translation_backend: FakeTranslationBackend) -> None:
  result = await translator.translate("Irrigate twice a week", "hindi", "hi-IN")
  assert result.success
  assert result.translated_text == "Irrigate twice a week"
  assert translation_backend.translate_calls == []
  assert len(translator.cache) == 0


@pytest.mark.anyio
async def test_second_call_is_served_from_cache(translator: TranslationResilienceClient, translation_backend: FakeTranslationBackend) -> None:
  first = await translator.translate("Apply urea now", "en-IN", "hi-IN")
  second = await translator.translate("Apply urea now", "en", "hindi")

  assert first.success and not first.cached
  assert first.translated_text == "<hi-IN>Apply urea now"
  assert first.mode == "formal"
  assert second.cached
  assert second.translated_text == first.translated_text
  assert len(translation_backend.translate_calls) == 1


@pytest.mark.anyio
async def test_server_error_falls_back_to_original_text(translator: TranslationResilienceClient, translation_backend: FakeTranslationBackend) -> None:
  translation_backend.error = BackendError("Upstream 500", status_code=500)
  result = await translator.translate("Apply urea now", "en-IN", "hi-IN")

  assert not result.success
  assert result.translated_text == "Apply urea now"
  assert result.error
  # Generic failures do not walk the mode ladder.
  assert len(translation_backend.translate_calls) == 1
  assert len(translator.cache) == 0


@pytest.mark.anyio
async def test_rejected_modes_advance_to_next_strategy(translator: TranslationResilienceClient, translation_backend: FakeTranslationBackend) -> None:
  translation_backend.rejected_modes = {"formal", "modern-colloquial"}
  result = await translator.translate("Harvest before the rain", "en-IN", "te-IN")

  assert result.success
  assert result.mode == "classic-colloquial"
  assert [call[3] for call in translation_backend.translate_calls] == ["formal", "modern-colloquial", "classic-colloquial"]


@pytest.mark.anyio
async def test_all_modes_rejected_then_no_mode_attempt(translator: TranslationResilienceClient, translation_backend: FakeTranslationBackend) -> None:
  translation_backend.rejected_modes = {"formal", "modern-colloquial", "classic-colloquial"}
  result = await translator.translate("Harvest before the rain", "en-IN", "te-IN")

  assert result.success
  assert result.mode == "default"
  assert translation_backend.translate_calls[-1][3] is None


@pytest.mark.anyio
async def test_every_strategy_rejected_keeps_original(translator: TranslationResilienceClient, translation_backend: FakeTranslationBackend) -> None:
  translation_backend.rejected_modes = {"formal", "modern-colloquial", "classic-colloquial", None}
  result = await translator.translate("Harvest before the rain", "en-IN", "te-IN")

  assert not result.success
  assert result.translated_text == "Harvest before the rain"
  assert len(translation_backend.translate_calls) == 4


@pytest.mark.anyio
async def test_long_text_is_chunked_with_structure_preserved(translation_cache: TranslationCache) -> None:
  backend = FakeTranslationBackend(_identity)
  client = TranslationResilienceClient(backend, translation_cache, char_limit=40, batch_size=2)
  result = await client.translate(FORMATTED, "en-IN", "hi-IN")

  assert result.success
  assert result.preserved_formatting
  assert result.mode == "segmented"
  assert result.translated_text == FORMATTED
  # One call per non-empty line's content.
  assert len(backend.translate_calls) == 6
  assert all(len(call[0]) <= 40 for call in backend.translate_calls)


@pytest.mark.anyio
async def test_backend_length_rejection_switches_to_chunking(translation_cache: TranslationCache) -> None:
  class LengthLimited(FakeTranslationBackend):
    async def translate(self, text: str, source: str, target: str, mode: str | None = None):
      if "\n" in text:
        self.translate_calls.append((text, source, target, mode))
        raise InputTooLongError("Input text must not exceed 1000 characters", status_code=400)
      return await super().translate(text, source, target, mode)

  backend = LengthLimited(lambda text, _target: text.upper())
  client = TranslationResilienceClient(backend, translation_cache)
  result = await client.translate("Tips:\n1. Sow early", "en-IN", "hi-IN")

  assert result.success
  assert result.translated_text == "TIPS:\n1. SOW EARLY"


@pytest.mark.anyio
async def test_partially_failed_chunks_keep_original_segments(translation_cache: TranslationCache) -> None:
  backend = FakeTranslationBackend(lambda text, _target: text.upper())
  backend.failing_texts = {"Sow wheat early"}
  client = TranslationResilienceClient(backend, translation_cache)
  result = await client.translate_formatted(FORMATTED, "en-IN", "hi-IN")

  assert not result.success
  assert result.preserved_formatting
  lines = result.translated_text.split("\n")
  assert lines[0] == "CROP PLAN:"
  assert lines[1] == "1. Sow wheat early"
  assert lines[2] == "2. APPLY UREA AFTER IRRIGATION"
  assert translation_cache.get_memory(cache_key(FORMATTED, "en-IN", "hi-IN")) is None


@pytest.mark.anyio
async def test_successful_writes_reach_the_persistent_tier(kv_store: InMemoryKeyValueStore, translation_backend: FakeTranslationBackend) -> None:
  first = TranslationResilienceClient(translation_backend, TranslationCache(kv_store))
  await first.translate("Check for aphids", "en-IN", "hi-IN")
  await first.cache.flush()

  fresh_backend = FakeTranslationBackend()
  second = TranslationResilienceClient(fresh_backend, TranslationCache(kv_store))
  result = await second.translate("Check for aphids", "en-IN", "hi-IN")

  assert result.cached
  assert fresh_backend.translate_calls == []


@pytest.mark.anyio
async def test_empty_text_is_a_successful_no_op(translator: TranslationResilienceClient, translation_backend: FakeTranslationBackend) -> None:
  result = await translator.translate("", "en-IN", "hi-IN")
  assert result.success
  assert result.translated_text == ""
  assert translation_backend.translate_calls == []


@pytest.mark.anyio
async def test_text_to_speech_cleans_and_truncates(translation_backend: FakeTranslationBackend, translation_cache: TranslationCache) -> None:
  client = TranslationResilienceClient(translation_backend, translation_cache, tts_char_limit=40)
  result = await client.text_to_speech("<think>plan</think>Water early. Then add mulch to keep moisture in.", "hi", "nobody")

  assert result.success
  assert result.audio == translation_backend.audio
  text, language, speaker = translation_backend.tts_calls[0]
  assert text == "Water early."
  assert language == "hi-IN"
  assert speaker == "meera"


@pytest.mark.anyio
async def test_text_to_speech_failure_returns_message(translator: TranslationResilienceClient, translation_backend: FakeTranslationBackend) -> None:
  translation_backend.error = BackendError("401", status_code=401, user_message="Authentication failed. Please check API key.")
  result = await translator.text_to_speech("Water early.", "en-IN")
  assert not result.success
  assert result.error == "Authentication failed. Please check API key."


@pytest.mark.anyio
async def test_speech_to_text_validates_audio_before_calling(translator: TranslationResilienceClient, translation_backend: FakeTranslationBackend) -> None:
  assert (await translator.speech_to_text(b"")).error == "Invalid audio data"
  too_large = await translator.speech_to_text(b"0" * (5 * 1024 * 1024 + 1))
  assert too_large.error == "Audio file too large. Maximum size is 5MB."
  assert translation_backend.stt_calls == []


@pytest.mark.anyio
async def test_speech_to_text_auto_detects_language(translator: TranslationResilienceClient, translation_backend: FakeTranslationBackend) -> None:
  result = await translator.speech_to_text(b"RIFF....", None)
  assert result.success
  assert result.transcript == translation_backend.transcript
  assert result.language == "en-IN"
  assert translation_backend.stt_calls == [(b"RIFF....", None)]


def test_truncate_for_tts() -> None:
  assert truncate_for_tts("Short.", 500) == "Short."
  assert truncate_for_tts("One. Two three four five", 12) == "One."
  assert truncate_for_tts("no sentence boundary here at all", 10) == "no sent..."


def test_language_helpers() -> None:
  assert normalize_language("English") == "en-IN"
  assert normalize_language("hi") == "hi-IN"
  assert normalize_language("ta-IN") == "ta-IN"
  assert normalize_language(None) == "en-IN"
  assert normalize_source("") == "auto"
  assert normalize_source("unknown") == "auto"
  assert mode_strategies("en-IN") == [None]
  assert mode_strategies("hi-IN") == ["formal", "modern-colloquial", "classic-colloquial", None]
  assert valid_speaker("hi-IN", "arvind") == "arvind"
  assert valid_speaker("xx-YY", "ghost") == "meera"


def test_clean_model_text() -> None:
  assert clean_model_text("<think>hidden</think>\n\nAnswer\n\n\n\nMore") == "Answer\n\nMore"
  assert clean_model_text(None) == ""
