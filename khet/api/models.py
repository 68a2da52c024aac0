from __future__ import annotations

from typing import Any

import msgspec

from khet.services.news import Flashcard

MAX_QUERY_CHARS = 2000
MAX_TRANSLATE_CHARS = 20000


class AskRequest(msgspec.Struct, forbid_unknown_fields=True):
  """Request payload for a farming question."""

  query: str
  language: str | None = "en-IN"
  location: str | None = None
  crops: list[str] = msgspec.field(default_factory=list)
  farm_size: str | None = None

  def context(self) -> dict[str, Any]:
    return {"location": self.location, "crops": list(self.crops), "farm_size": self.farm_size}


class TranslateRequest(msgspec.Struct, forbid_unknown_fields=True):
  text: str
  target: str
  source: str | None = "auto"


class SpeakRequest(msgspec.Struct, forbid_unknown_fields=True):
  text: str
  language: str | None = "en-IN"
  speaker: str | None = "meera"


class TranslationResponse(msgspec.Struct, rename="camel"):
  success: bool
  translated_text: str
  source_language: str
  target_language: str
  mode: str | None = None
  cached: bool = False
  preserved_formatting: bool = False
  error: str | None = None


class SpeechResponse(msgspec.Struct):
  success: bool
  audio: str | None = None
  language: str | None = None
  speaker: str | None = None
  error: str | None = None


class NewsResponse(msgspec.Struct, rename="camel"):
  """Flashcards served from the refresh cache."""

  from_cache: bool
  flashcards: list[Flashcard]
  stale: bool = False
  error: str | None = None
