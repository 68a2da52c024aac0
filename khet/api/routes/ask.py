from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from khet.ai.orchestrator import OrchestrationFacade, QueryRun
from khet.api.deps import get_facade
from khet.api.models import MAX_QUERY_CHARS, AskRequest
from khet.api.msgspec_utils import decode_msgspec_request, encode_ndjson_line

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/ask")
async def ask(request: Request, facade: Annotated[OrchestrationFacade, Depends(get_facade)]) -> StreamingResponse:
  """
  Answer a farming question.
  Streams one `step` record per reasoning step, then a single `result` record.
  """
  payload = await decode_msgspec_request(request, AskRequest)
  query = payload.query[:MAX_QUERY_CHARS]
  run = facade.start_query(query, language=payload.language, context=payload.context())
  return StreamingResponse(_stream_run(run), media_type="application/x-ndjson", headers={"X-Request-Id": run.request_id})


async def _stream_run(run: QueryRun) -> AsyncIterator[bytes]:
  completed = False
  try:
    async for step in run.stream:
      yield encode_ndjson_line({"type": "step", **step.to_dict()})
    result = await run.result()
    completed = True
    yield encode_ndjson_line({"type": "result", **result.to_dict()})
  finally:
    # The client went away before the result was written.
    if not completed:
      logger.info("Client disconnected from query %s", run.request_id)
      run.cancel()
