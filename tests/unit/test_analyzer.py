from __future__ import annotations

from khet.ai.analyzer import Complexity, QueryAnalyzer, detect_seasonality, detect_urgency, pattern_label


def test_multi_indicator_query_is_complex() -> None:
  analysis = QueryAnalyzer().analyze("compare prices and analyze market trends for my rice and wheat crops across regions")
  assert analysis.complexity is Complexity.COMPLEX
  assert analysis.complexity_score >= 3
  assert analysis.primary_pattern is not None
  assert analysis.primary_pattern.type == "MARKET_PRICES"


def test_single_pattern_question_is_moderate() -> None:
  analysis = QueryAnalyzer().analyze("Will there be rain in my village during the coming week?")
  assert analysis.complexity is Complexity.MODERATE
  assert analysis.complexity_score == 1
  assert analysis.estimated_steps == 5
  assert [match.type for match in analysis.detected_patterns] == ["WEATHER"]


def test_unmatched_short_query_is_simple() -> None:
  analysis = QueryAnalyzer().analyze("hello there friend")
  assert analysis.complexity is Complexity.SIMPLE
  assert analysis.required_tools == ()
  assert analysis.estimated_steps == 3
  assert analysis.primary_pattern is None


def test_empty_query_is_simple() -> None:
  analysis = QueryAnalyzer().analyze(None)
  assert analysis.complexity is Complexity.SIMPLE
  assert analysis.detected_patterns == ()


def test_required_tools_are_deduplicated_in_detection_order() -> None:
  analysis = QueryAnalyzer().analyze("weather forecast and irrigation plan")
  assert analysis.required_tools == ("get_current_weather", "get_weather_irrigation_advice", "irrigation_schedule")


def test_confidence_is_share_of_matched_keywords() -> None:
  analysis = QueryAnalyzer().analyze("mandi price to sell")
  match = analysis.detected_patterns[0]
  assert set(match.matched_keywords) == {"price", "sell", "mandi"}
  assert match.confidence == 3 / 7


def test_context_elements_are_carried() -> None:
  analysis = QueryAnalyzer().analyze("urgent: monsoon pest attack on paddy", {"location": " Guntur ", "crops": ["paddy", " ", "chilli"]})
  elements = analysis.contextual_elements
  assert elements.location == "Guntur"
  assert elements.crops == ("paddy", "chilli")
  assert elements.seasonality == "monsoon"
  assert elements.urgency is True


def test_analysis_is_deterministic() -> None:
  analyzer = QueryAnalyzer()
  query = "recommend fertilizer for soil with low ph"
  assert analyzer.analyze(query) == analyzer.analyze(query)


def test_helpers() -> None:
  assert pattern_label("MARKET_PRICES") == "market prices"
  assert detect_seasonality("rabi sowing") == "winter"
  assert detect_seasonality("anything else") is None
  assert detect_urgency("need help asap") is True
  assert detect_urgency("no hurry") is False


def test_to_dict_is_json_ready() -> None:
  payload = QueryAnalyzer().analyze("government subsidy scheme").to_dict()
  assert payload["complexity"] == "moderate"
  assert payload["required_tools"] == ["get_government_schemes"]
  assert payload["detected_patterns"][0]["type"] == "GOVERNMENT_SCHEMES"
