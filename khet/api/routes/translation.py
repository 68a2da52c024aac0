from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.responses import Response

from khet.ai.orchestrator import OrchestrationFacade
from khet.api.deps import get_facade
from khet.api.models import MAX_TRANSLATE_CHARS, SpeakRequest, SpeechResponse, TranslateRequest, TranslationResponse
from khet.api.msgspec_utils import decode_msgspec_request, encode_msgspec_response

router = APIRouter()


@router.post("/translate")
async def translate(request: Request, facade: Annotated[OrchestrationFacade, Depends(get_facade)]) -> Response:
  """Translate text; on failure the original text comes back with success=false."""
  payload = await decode_msgspec_request(request, TranslateRequest)
  if len(payload.text) > MAX_TRANSLATE_CHARS:
    raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=f"Text exceeds {MAX_TRANSLATE_CHARS} characters.")

  if "\n" in payload.text:
    result = await facade.translator.translate_formatted(payload.text, payload.source, payload.target)
  else:
    result = await facade.translate(payload.text, payload.source, payload.target)
  return encode_msgspec_response(
    TranslationResponse(
      success=result.success,
      translated_text=result.translated_text,
      source_language=result.source_language,
      target_language=result.target_language,
      mode=result.mode,
      cached=result.cached,
      preserved_formatting=result.preserved_formatting,
      error=result.error,
    )
  )


@router.post("/speak")
async def speak(request: Request, facade: Annotated[OrchestrationFacade, Depends(get_facade)]) -> Response:
  """Synthesize speech; audio is base64-encoded WAV."""
  payload = await decode_msgspec_request(request, SpeakRequest)
  result = await facade.speak(payload.text, payload.language, payload.speaker)
  return encode_msgspec_response(SpeechResponse(success=result.success, audio=result.audio, language=result.language, speaker=result.speaker, error=result.error))
