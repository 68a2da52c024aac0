from __future__ import annotations

import asyncio

import pytest

from khet.ai.analyzer import QueryAnalyzer
from khet.ai.sequencer import ReasoningSequencer, tool_context
from khet.ai.steps import Step, StepEmitter, StepStatus
from khet.ai.providers.base import ChatBackendError
from khet.ai.tools import ToolCall, ToolRegistry, ToolResult, ToolSkipped, never_uncertain

PRICE_QUERY = "What is the market price of onion"


def _trace(steps: list[Step]) -> list[tuple[str, str]]:
  return [(step.id, step.status.value) for step in steps]


async def _prices(call: ToolCall) -> dict[str, object]:
  return {"commodity": "onion", "modal_price": 2100, "location": call.location}


@pytest.mark.anyio
async def test_simple_query_uses_knowledge_base() -> None:
  steps: list[Step] = []
  result = await ReasoningSequencer(delay_scale=0).run(QueryAnalyzer().analyze("hello there friend"), StepEmitter(steps.append))

  assert _trace(steps) == [
    ("understand", "active"),
    ("understand", "completed"),
    ("knowledge", "completed"),
    ("analysis", "active"),
    ("analysis", "completed"),
    ("response", "active"),
    ("response", "completed"),
  ]
  assert result.ok
  assert result.tool_results == []


@pytest.mark.anyio
async def test_price_sources_trigger_uncertainty_and_synthesis() -> None:
  tools = ToolRegistry({"get_market_prices": _prices, "get_agmarknet_prices": _prices})
  steps: list[Step] = []
  analysis = QueryAnalyzer().analyze(PRICE_QUERY, {"location": "Nashik", "crops": ["onion"]})
  result = await ReasoningSequencer(tools, delay_scale=0).run(analysis, StepEmitter(steps.append), query=PRICE_QUERY)

  assert _trace(steps) == [
    ("understand", "active"),
    ("understand", "completed"),
    ("tools", "active"),
    ("tool_0", "processing"),
    ("tool_0", "completed"),
    ("tool_1", "processing"),
    ("tool_1", "completed"),
    ("tools", "completed"),
    ("uncertainty", "uncertain"),
    ("uncertainty", "completed"),
    ("analysis", "active"),
    ("analysis", "completed"),
    ("synthesis", "active"),
    ("synthesis", "completed"),
    ("response", "active"),
    ("response", "completed"),
  ]
  assert result.uncertainty == "price_conflict"
  assert [item.tool for item in result.tool_results] == ["get_market_prices", "get_agmarknet_prices"]
  assert result.tool_results[0].data["location"] == "Nashik"
  assert steps[3].title == "Checking market rates for onion"


@pytest.mark.anyio
async def test_uncertainty_policy_is_pluggable() -> None:
  tools = ToolRegistry({"get_market_prices": _prices, "get_agmarknet_prices": _prices})
  steps: list[Step] = []
  sequencer = ReasoningSequencer(tools, uncertainty_policy=never_uncertain, delay_scale=0)
  result = await sequencer.run(QueryAnalyzer().analyze(PRICE_QUERY), StepEmitter(steps.append))
  assert result.uncertainty is None
  assert "uncertainty" not in {step.id for step in steps}


@pytest.mark.anyio
async def test_unregistered_tools_are_skipped_and_paced() -> None:
  waits: list[float] = []

  async def fake_sleep(seconds: float) -> None:
    waits.append(seconds)

  steps: list[Step] = []
  result = await ReasoningSequencer(sleep=fake_sleep).run(QueryAnalyzer().analyze(PRICE_QUERY), StepEmitter(steps.append))

  assert ("tool_0", "skipped") in _trace(steps)
  assert ("tool_1", "skipped") in _trace(steps)
  assert result.skipped_tools == ["get_market_prices", "get_agmarknet_prices"]
  assert result.ok
  # understand, tools, analysis, synthesis, response
  assert waits == [0.8, 1.2, 1.0, 0.8, 0.6]


@pytest.mark.anyio
async def test_tool_failure_emits_one_error_step_and_stops() -> None:
  async def broken(_call: ToolCall) -> None:
    raise ConnectionError("mandi feed offline")

  tools = ToolRegistry({"get_market_prices": broken, "get_agmarknet_prices": _prices})
  steps: list[Step] = []
  result = await ReasoningSequencer(tools, delay_scale=0).run(QueryAnalyzer().analyze(PRICE_QUERY), StepEmitter(steps.append))

  assert steps[-1].id == "error"
  assert steps[-1].status is StepStatus.ERROR
  assert [step.id for step in steps].count("error") == 1
  assert "analysis" not in {step.id for step in steps}
  assert result.error == "mandi feed offline"
  assert result.failed_phase == "tools"
  assert not result.ok


@pytest.mark.anyio
async def test_cancel_before_start_emits_nothing() -> None:
  cancel = asyncio.Event()
  cancel.set()
  steps: list[Step] = []
  result = await ReasoningSequencer(delay_scale=0).run(QueryAnalyzer().analyze(PRICE_QUERY), StepEmitter(steps.append), cancel_event=cancel)
  assert steps == []
  assert result.cancelled


@pytest.mark.anyio
async def test_cancel_during_tools_finishes_current_tool_only() -> None:
  cancel = asyncio.Event()
  calls: list[str] = []

  async def slow(call: ToolCall) -> str:
    calls.append(call.name)
    cancel.set()
    await asyncio.sleep(0)
    return "ok"

  tools = ToolRegistry({"get_market_prices": slow, "get_agmarknet_prices": slow})
  steps: list[Step] = []
  result = await ReasoningSequencer(tools, delay_scale=0).run(QueryAnalyzer().analyze(PRICE_QUERY), StepEmitter(steps.append), cancel_event=cancel)

  assert calls == ["get_market_prices"]
  assert ("tool_0", "completed") in _trace(steps)
  assert "analysis" not in {step.id for step in steps}
  assert result.cancelled


@pytest.mark.anyio
async def test_tool_can_skip_itself_without_failing_the_run() -> None:
  async def needs_location(call: ToolCall) -> dict[str, object]:
    raise ToolSkipped(call.name, "No location given")

  tools = ToolRegistry({"get_market_prices": needs_location, "get_agmarknet_prices": _prices})
  steps: list[Step] = []
  result = await ReasoningSequencer(tools, delay_scale=0).run(QueryAnalyzer().analyze(PRICE_QUERY), StepEmitter(steps.append), query=PRICE_QUERY)

  assert _trace(steps)[3:6] == [("tool_0", "processing"), ("tool_0", "skipped"), ("tool_1", "processing")]
  assert steps[4].description == "No location given"
  assert result.skipped_tools == ["get_market_prices"]
  assert [item.tool for item in result.tool_results] == ["get_agmarknet_prices"]
  assert result.ok


@pytest.mark.anyio
async def test_responder_runs_inside_the_response_phase() -> None:
  seen: list[tuple[str, str]] = []
  steps: list[Step] = []

  async def respond(tool_results: list[ToolResult]) -> str:
    seen.extend(_trace(steps)[-1:])
    return f"Advice from {len(tool_results)} sources"

  tools = ToolRegistry({"get_market_prices": _prices})
  result = await ReasoningSequencer(tools, delay_scale=0).run(QueryAnalyzer().analyze(PRICE_QUERY), StepEmitter(steps.append), responder=respond)

  assert seen == [("response", "active")]
  assert _trace(steps)[-1] == ("response", "completed")
  assert result.answer == "Advice from 1 sources"
  assert result.ok


@pytest.mark.anyio
async def test_responder_failure_is_the_single_terminal_error() -> None:
  async def respond(_tool_results: list[ToolResult]) -> str:
    raise ChatBackendError("Chat backend failed: 503")

  steps: list[Step] = []
  result = await ReasoningSequencer(delay_scale=0).run(QueryAnalyzer().analyze("hello there friend"), StepEmitter(steps.append), responder=respond)

  assert _trace(steps)[-2:] == [("response", "active"), ("error", "error")]
  assert ("response", "completed") not in _trace(steps)
  assert result.failed_phase == "response"
  assert result.error == "Chat backend failed: 503"
  assert result.answer is None
  assert not result.ok


def test_tool_context_falls_back_to_generic_text() -> None:
  analysis = QueryAnalyzer().analyze("soil test")
  context = tool_context("soil_analysis", analysis)
  assert context.title == "Using soil analysis"
  assert context.icon == "settings"
