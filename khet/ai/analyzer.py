"""Keyword-driven query analysis: topic patterns, complexity, tools, and context signals."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Complexity(str, Enum):
  SIMPLE = "simple"
  MODERATE = "moderate"
  COMPLEX = "complex"


@dataclass(frozen=True)
class TopicPattern:
  """Keyword set and tool list that define one query topic."""

  keywords: tuple[str, ...]
  tools: tuple[str, ...]


TOPIC_PATTERNS: dict[str, TopicPattern] = {
  "WEATHER": TopicPattern(
    keywords=("weather", "rain", "temperature", "forecast", "humidity", "wind"),
    tools=("get_current_weather", "get_weather_irrigation_advice"),
  ),
  "MARKET_PRICES": TopicPattern(
    keywords=("price", "market", "rate", "cost", "sell", "buy", "mandi"),
    tools=("get_market_prices", "get_agmarknet_prices"),
  ),
  "CROP_DISEASE": TopicPattern(
    keywords=("disease", "pest", "insect", "fungus", "treatment", "spray", "infection"),
    tools=("identify_plant_disease", "get_disease_treatment"),
  ),
  "SOIL_MANAGEMENT": TopicPattern(
    keywords=("soil", "fertilizer", "nutrients", "ph", "organic", "compost"),
    tools=("soil_analysis", "fertilizer_recommendation"),
  ),
  "IRRIGATION": TopicPattern(
    keywords=("water", "irrigation", "drip", "sprinkler", "watering"),
    tools=("get_weather_irrigation_advice", "irrigation_schedule"),
  ),
  "GOVERNMENT_SCHEMES": TopicPattern(
    keywords=("scheme", "subsidy", "government", "loan", "insurance", "pmkisan"),
    tools=("get_government_schemes",),
  ),
}

SEASON_KEYWORDS: dict[str, tuple[str, ...]] = {
  "monsoon": ("monsoon", "rainy", "kharif"),
  "winter": ("winter", "rabi", "cold"),
  "summer": ("summer", "zaid", "hot"),
}

URGENT_KEYWORDS = ("urgent", "immediate", "emergency", "asap", "quickly", "now")

LONG_QUERY_CHARS = 100


@dataclass(frozen=True)
class PatternMatch:
  """A detected topic with its keyword coverage."""

  type: str
  confidence: float
  matched_keywords: tuple[str, ...]
  suggested_tools: tuple[str, ...]

  @property
  def label(self) -> str:
    return pattern_label(self.type)


@dataclass(frozen=True)
class ContextualElements:
  location: str | None = None
  crops: tuple[str, ...] = ()
  seasonality: str | None = None
  urgency: bool = False


@dataclass(frozen=True)
class QueryAnalysis:
  """Immutable analysis of a single query."""

  detected_patterns: tuple[PatternMatch, ...]
  complexity: Complexity
  complexity_score: int
  estimated_steps: int
  required_tools: tuple[str, ...]
  contextual_elements: ContextualElements = field(default_factory=ContextualElements)

  @property
  def primary_pattern(self) -> PatternMatch | None:
    return self.detected_patterns[0] if self.detected_patterns else None

  def pattern_labels(self) -> list[str]:
    return [match.label for match in self.detected_patterns]

  def to_dict(self) -> dict[str, Any]:
    return {
      "detected_patterns": [
        {"type": match.type, "confidence": match.confidence, "matched_keywords": list(match.matched_keywords), "suggested_tools": list(match.suggested_tools)} for match in self.detected_patterns
      ],
      "complexity": self.complexity.value,
      "complexity_score": self.complexity_score,
      "estimated_steps": self.estimated_steps,
      "required_tools": list(self.required_tools),
      "contextual_elements": {
        "location": self.contextual_elements.location,
        "crops": list(self.contextual_elements.crops),
        "seasonality": self.contextual_elements.seasonality,
        "urgency": self.contextual_elements.urgency,
      },
    }


def pattern_label(pattern_type: str) -> str:
  """Return a human label such as 'market prices' for 'MARKET_PRICES'."""
  return pattern_type.lower().replace("_", " ")


def detect_seasonality(query: str) -> str | None:
  lowered = query.lower()
  for season, keywords in SEASON_KEYWORDS.items():
    if any(keyword in lowered for keyword in keywords):
      return season
  return None


def detect_urgency(query: str) -> bool:
  lowered = query.lower()
  return any(keyword in lowered for keyword in URGENT_KEYWORDS)


class QueryAnalyzer:
  """Classify a natural-language farming query; pure and deterministic.

  Complexity is a sum of six boolean indicators:

  1. mentions "compare"
  2. mentions "analyze"
  3. mentions "recommend" or "optimize"
  4. longer than 100 characters
  5. at least one topic pattern detected
  6. more than two topic patterns detected

  A score of 3 or more is complex, 1 or more is moderate, otherwise simple.
  """

  def __init__(self, patterns: Mapping[str, TopicPattern] | None = None) -> None:
    self._patterns = dict(patterns or TOPIC_PATTERNS)

  def analyze(self, query: str | None, context: Mapping[str, Any] | None = None) -> QueryAnalysis:
    text = query or ""
    lowered = text.lower()
    context = context or {}

    detected: list[PatternMatch] = []
    required_tools: list[str] = []
    for pattern_type, pattern in self._patterns.items():
      matches = tuple(keyword for keyword in pattern.keywords if keyword in lowered)
      if not matches:
        continue
      detected.append(PatternMatch(type=pattern_type, confidence=len(matches) / len(pattern.keywords), matched_keywords=matches, suggested_tools=pattern.tools))
      for tool in pattern.tools:
        if tool not in required_tools:
          required_tools.append(tool)

    indicators = (
      "compare" in lowered,
      "analyze" in lowered,
      "recommend" in lowered or "optimize" in lowered,
      len(text) > LONG_QUERY_CHARS,
      len(detected) > 0,
      len(detected) > 2,
    )
    score = sum(indicators)

    if score >= 3:
      complexity = Complexity.COMPLEX
      estimated_steps = 6 + min(score, 3)
    elif score >= 1:
      complexity = Complexity.MODERATE
      estimated_steps = 4 + score
    else:
      complexity = Complexity.SIMPLE
      estimated_steps = 3

    return QueryAnalysis(
      detected_patterns=tuple(detected),
      complexity=complexity,
      complexity_score=score,
      estimated_steps=estimated_steps,
      required_tools=tuple(required_tools),
      contextual_elements=ContextualElements(
        location=_optional_text(context.get("location")),
        crops=_crops(context.get("crops")),
        seasonality=detect_seasonality(text),
        urgency=detect_urgency(text),
      ),
    )


def _optional_text(value: Any) -> str | None:
  if value is None:
    return None
  text = str(value).strip()
  return text or None


def _crops(value: Any) -> tuple[str, ...]:
  if isinstance(value, str):
    value = [value]
  if not isinstance(value, Sequence):
    return ()
  return tuple(str(crop).strip() for crop in value if str(crop).strip())
