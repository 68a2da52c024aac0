from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from starlette.responses import Response

from khet.ai.orchestrator import OrchestrationFacade
from khet.api.deps import get_facade
from khet.api.models import NewsResponse
from khet.api.msgspec_utils import encode_msgspec_response

router = APIRouter()


@router.get("/news")
async def get_news(facade: Annotated[OrchestrationFacade, Depends(get_facade)], force: bool = False) -> Response:
  """Return agriculture news flashcards, refreshed at most once per TTL window."""
  result = await facade.refresh_news(force=force)
  return encode_msgspec_response(NewsResponse(from_cache=result.from_cache, flashcards=list(result.payload), stale=result.stale, error=result.error))
