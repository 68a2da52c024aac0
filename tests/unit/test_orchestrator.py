"""End-to-end query flow through the facade with scripted backends."""

from __future__ import annotations

import asyncio
import dataclasses
import json

import httpx
import pytest

from khet.ai.orchestrator import CANCELLED_ERROR, CHAT_FAILURE_ANSWER, EMPTY_QUERY_ANSWER, TOOL_FAILURE_ANSWER, OrchestrationFacade
from khet.ai.safety import WITHHELD_MESSAGE
from khet.ai.sequencer import ReasoningSequencer
from khet.ai.steps import Step, StepStatus
from khet.ai.tools import ToolCall, ToolRegistry
from khet.config import get_settings
from khet.services.translation import TranslationResilienceClient
from tests.fakes import FakeTranslationBackend, ScriptedChatModel, chat_failure


def _facade(translator: TranslationResilienceClient, chat: ScriptedChatModel, tools: ToolRegistry | None = None) -> OrchestrationFacade:
  return OrchestrationFacade(chat_model=chat, translator=translator, sequencer=ReasoningSequencer(tools, delay_scale=0))


@pytest.mark.anyio
async def test_english_query_streams_steps_and_answers(translator: TranslationResilienceClient, translation_backend: FakeTranslationBackend) -> None:
  chat = ScriptedChatModel(["<think>reasoning</think>Sow wheat in early November."])
  facade = _facade(translator, chat)
  steps: list[Step] = []

  result = await facade.ask("When should I sow wheat?", on_step=steps.append)

  assert result.success
  assert result.answer == "Sow wheat in early November."
  assert result.language == "en-IN"
  assert result.safety == {"action": "allow", "rules": [], "version": 1}
  ids = [step.id for step in steps]
  assert ids[0] == "understand"
  assert ids[-1] == "complete"
  assert ids[-2:] == ["response", "complete"]
  assert "translate" not in ids
  progress = [step.progress for step in steps]
  assert progress == sorted(progress)
  assert translation_backend.translate_calls == []
  assert chat.requests[0][1]["content"].startswith("When should I sow wheat?")
  await facade.close()


@pytest.mark.anyio
async def test_regional_query_is_translated_both_ways(translation_cache) -> None:
  backend = FakeTranslationBackend(lambda text, target: f"[{target}] {text}")
  translator = TranslationResilienceClient(backend, translation_cache)
  chat = ScriptedChatModel(["Irrigate every five days."])
  facade = _facade(translator, chat)
  steps: list[Step] = []

  result = await facade.ask("गेहूं में पानी कब दें?", language="hindi", on_step=steps.append)

  assert result.success
  assert result.language == "hi-IN"
  assert result.original_answer == "Irrigate every five days."
  assert result.answer == "[hi-IN] Irrigate every five days."
  assert result.translation is not None and result.translation["success"]
  assert chat.requests[0][1]["content"].startswith("[en-IN] गेहूं में पानी कब दें?")
  ids = [step.id for step in steps]
  assert ids.index("query-translate") < ids.index("understand") < ids.index("response") < ids.index("translate") < ids.index("complete")
  assert [(call[1], call[2]) for call in backend.translate_calls] == [("hi-IN", "en-IN"), ("en-IN", "hi-IN")]


@pytest.mark.anyio
async def test_multiline_answer_keeps_its_structure(translation_cache) -> None:
  backend = FakeTranslationBackend(lambda text, _target: text.upper())
  translator = TranslationResilienceClient(backend, translation_cache)
  facade = _facade(translator, ScriptedChatModel(["Steps:\n1. Plough the field\n2. Sow seeds"]))

  result = await facade.ask("how to sow", language="te-IN")

  assert result.answer == "STEPS:\n1. PLOUGH THE FIELD\n2. SOW SEEDS"
  assert result.translation is not None and result.translation["preserved_formatting"]


@pytest.mark.anyio
async def test_chat_failure_returns_apology(translator: TranslationResilienceClient) -> None:
  facade = _facade(translator, ScriptedChatModel([chat_failure()]))
  run = facade.start_query("When should I sow wheat?")
  steps = [step async for step in run.stream]
  result = await run.result()

  assert not result.success
  assert result.answer == CHAT_FAILURE_ANSWER
  assert [step.id for step in steps].count("error") == 1
  assert steps[-1].status is StepStatus.ERROR
  assert ("response", "active") in [(step.id, step.status.value) for step in steps]
  assert ("response", "completed") not in [(step.id, step.status.value) for step in steps]
  assert max(step.progress for step in steps) < 100
  assert run.stream.outcome is not None
  assert run.stream.outcome.status == "error"


@pytest.mark.anyio
async def test_empty_query_prompts_for_a_question(translator: TranslationResilienceClient) -> None:
  chat = ScriptedChatModel()
  steps: list[Step] = []
  result = await _facade(translator, chat).ask("   ", on_step=steps.append)

  assert result.success
  assert result.answer == EMPTY_QUERY_ANSWER
  assert steps == []
  assert chat.requests == []


@pytest.mark.anyio
async def test_tool_failure_stops_before_chat(translator: TranslationResilienceClient) -> None:
  async def broken(_call: ToolCall) -> None:
    raise TimeoutError("mandi feed timed out")

  chat = ScriptedChatModel()
  facade = _facade(translator, chat, ToolRegistry({"get_market_prices": broken}))
  result = await facade.ask("What is the market price of onion")

  assert not result.success
  assert result.answer == TOOL_FAILURE_ANSWER
  assert result.error == "mandi feed timed out"
  assert chat.requests == []


@pytest.mark.anyio
async def test_tool_data_reaches_the_prompt(translator: TranslationResilienceClient) -> None:
  async def prices(_call: ToolCall) -> dict[str, int]:
    return {"modal_price": 2100}

  chat = ScriptedChatModel(["Prices are steady at 2100."])
  facade = _facade(translator, chat, ToolRegistry({"get_market_prices": prices}))
  result = await facade.ask("What is the market price of onion")

  assert result.tools_used == ["get_market_prices"]
  assert "modal_price" in chat.requests[0][1]["content"]


@pytest.mark.anyio
async def test_abandoned_run_starts_no_new_phase(translator: TranslationResilienceClient) -> None:
  chat = ScriptedChatModel()
  run = _facade(translator, chat).start_query("When should I sow wheat?")
  run.cancel()
  steps = [step async for step in run.stream]
  result = await run.result()

  assert steps == []
  assert not result.success
  assert result.error == CANCELLED_ERROR
  assert chat.requests == []


@pytest.mark.anyio
async def test_unsafe_answer_is_withheld(translator: TranslationResilienceClient) -> None:
  result = await _facade(translator, ScriptedChatModel(["You should end my life advice"])).ask("help")
  assert result.answer == WITHHELD_MESSAGE
  assert result.safety is not None and result.safety["action"] == "block"


@pytest.mark.anyio
async def test_voice_query_transcribes_answers_and_speaks(translator: TranslationResilienceClient, translation_backend: FakeTranslationBackend) -> None:
  result = await _facade(translator, ScriptedChatModel(["Sow in November."])).process_voice_query(b"RIFF....", language="en-IN")

  assert result.success
  assert result.transcript == translation_backend.transcript
  assert result.answer == "Sow in November."
  assert result.audio == translation_backend.audio
  assert translation_backend.tts_calls[0][0] == "Sow in November."


@pytest.mark.anyio
async def test_voice_query_reports_transcription_failure(translator: TranslationResilienceClient) -> None:
  result = await _facade(translator, ScriptedChatModel()).process_voice_query(b"")
  assert not result.success
  assert result.error == "Invalid audio data"


@pytest.mark.anyio
async def test_news_without_service_reports_configuration(translator: TranslationResilienceClient) -> None:
  result = await _facade(translator, ScriptedChatModel()).refresh_news()
  assert result.payload == []
  assert result.error == "News is not configured."


@pytest.mark.anyio
async def test_close_drains_cache_and_closes_clients(translator: TranslationResilienceClient, kv_store) -> None:
  chat = ScriptedChatModel()
  facade = OrchestrationFacade(chat_model=chat, translator=translator, sequencer=ReasoningSequencer(delay_scale=0), closeables=[chat])
  await facade.translate("Check for aphids", "en-IN", "hi-IN")
  await facade.close()

  assert chat.closed
  assert len(kv_store) == 1


def _price_service(request: httpx.Request) -> httpx.Response:
  if request.url.host == "api.data.gov.in":
    assert request.url.params["filters[commodity]"] == "Onion"
    record = {"state": "Maharashtra", "district": "Nashik", "market": "Lasalgaon", "commodity": "Onion", "modal_price": "2100"}
    return httpx.Response(200, json={"records": [record]})
  if request.url.host == "scraper.test":
    assert json.loads(request.content)["state"] == "Maharashtra"
    return httpx.Response(200, json={"success": True, "data": [{"market": "Pune", "modal_price": 2300}]})
  return httpx.Response(404)


@pytest.mark.anyio
async def test_settings_built_facade_calls_price_tools(kv_store) -> None:
  settings = dataclasses.replace(
    get_settings(),
    groq_api_key=None,
    openweather_api_key=None,
    data_gov_api_key="test-key",
    agmarknet_scraper_url="http://scraper.test/api/crop-prices",
    step_delay_scale=0,
  )
  client = httpx.AsyncClient(transport=httpx.MockTransport(_price_service))
  facade = OrchestrationFacade.from_settings(settings, kv_store, tools_client=client)
  steps: list[Step] = []

  result = await facade.ask("What is the market price of onion", context={"location": "Maharashtra"}, on_step=steps.append)

  trace = [(step.id, step.status.value) for step in steps]
  assert ("tool_0", "completed") in trace
  assert ("tool_1", "completed") in trace
  assert ("uncertainty", "uncertain") in trace
  # No chat key: the advisor fails inside the response phase.
  assert not result.success
  assert result.answer == CHAT_FAILURE_ANSWER
  assert steps[-1].status is StepStatus.ERROR
  await facade.close()
  assert client.is_closed


@pytest.mark.anyio
async def test_cancelled_task_still_ends_the_stream(translator: TranslationResilienceClient) -> None:
  started = asyncio.Event()

  async def slow(_call: ToolCall) -> dict[str, int]:
    started.set()
    await asyncio.sleep(30)
    return {"modal_price": 2100}

  facade = _facade(translator, ScriptedChatModel(), ToolRegistry({"get_market_prices": slow}))
  run = facade.start_query("What is the market price of onion")
  await started.wait()
  run.task.cancel()

  steps = [step async for step in run.stream]

  assert steps[-1].id == "tool_0"
  assert run.stream.outcome is not None
  assert run.stream.outcome.status == "error"
  assert run.stream.outcome.message == CANCELLED_ERROR
  with pytest.raises(asyncio.CancelledError):
    await run.result()
