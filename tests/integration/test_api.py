from __future__ import annotations

import json
from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

from khet.ai.orchestrator import OrchestrationFacade
from khet.ai.providers.base import BackendError
from khet.ai.sequencer import ReasoningSequencer
from khet.main import app
from khet.services.translation import TranslationResilienceClient
from khet.services.translation_cache import TranslationCache
from khet.storage.kv_store import InMemoryKeyValueStore
from tests.fakes import FakeTranslationBackend, ScriptedChatModel


@pytest.fixture
def backend() -> FakeTranslationBackend:
  return FakeTranslationBackend()


@pytest.fixture
async def client(backend: FakeTranslationBackend) -> AsyncIterator[AsyncClient]:
  translator = TranslationResilienceClient(backend, TranslationCache(InMemoryKeyValueStore()))
  facade = OrchestrationFacade(chat_model=ScriptedChatModel(["Sow wheat in early November."]), translator=translator, sequencer=ReasoningSequencer(delay_scale=0))
  app.state.facade = facade
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
    yield http_client
  await facade.close()
  del app.state.facade


def _records(body: str) -> list[dict[str, object]]:
  return [json.loads(line) for line in body.splitlines() if line.strip()]


@pytest.mark.anyio
async def test_health(client: AsyncClient) -> None:
  response = await client.get("/health")
  assert response.status_code == 200
  assert response.json() == {"status": "ok", "version": "0.1.0"}


@pytest.mark.anyio
async def test_ask_streams_steps_then_result(client: AsyncClient) -> None:
  response = await client.post("/v1/ask", json={"query": "When should I sow wheat?", "location": "Ludhiana", "crops": ["wheat"]})

  assert response.status_code == 200
  assert response.headers["content-type"].startswith("application/x-ndjson")
  records = _records(response.text)
  assert {record["type"] for record in records[:-1]} == {"step"}
  assert records[0]["id"] == "understand"
  final = records[-1]
  assert final["type"] == "result"
  assert final["success"] is True
  assert final["answer"] == "Sow wheat in early November."
  assert final["request_id"] == response.headers["x-request-id"]


@pytest.mark.anyio
async def test_ask_rejects_malformed_payload(client: AsyncClient) -> None:
  response = await client.post("/v1/ask", json={"question": "missing query field"})
  assert response.status_code == 400
  assert response.json()["detail"].startswith("Invalid request payload")


@pytest.mark.anyio
async def test_translate_endpoint(client: AsyncClient, backend: FakeTranslationBackend) -> None:
  response = await client.post("/v1/translate", json={"text": "Apply urea now", "source": "en-IN", "target": "hi-IN"})
  again = await client.post("/v1/translate", json={"text": "Apply urea now", "source": "en-IN", "target": "hi-IN"})

  assert response.status_code == 200
  assert response.json()["translatedText"] == "<hi-IN>Apply urea now"
  assert again.json()["cached"] is True
  assert len(backend.translate_calls) == 1


@pytest.mark.anyio
async def test_translate_failure_keeps_original_text(client: AsyncClient, backend: FakeTranslationBackend) -> None:
  backend.error = BackendError("Upstream 500", status_code=500)
  response = await client.post("/v1/translate", json={"text": "Apply urea now", "source": "en-IN", "target": "hi-IN"})

  body = response.json()
  assert response.status_code == 200
  assert body["success"] is False
  assert body["translatedText"] == "Apply urea now"


@pytest.mark.anyio
async def test_speak_endpoint(client: AsyncClient, backend: FakeTranslationBackend) -> None:
  response = await client.post("/v1/speak", json={"text": "Water early.", "language": "hi-IN"})
  assert response.status_code == 200
  assert response.json()["audio"] == backend.audio


@pytest.mark.anyio
async def test_news_without_service(client: AsyncClient) -> None:
  response = await client.get("/v1/news")
  assert response.status_code == 200
  assert response.json() == {"fromCache": False, "flashcards": [], "stale": False, "error": "News is not configured."}
