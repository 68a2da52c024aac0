from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from khet import __version__
from khet.ai.providers.base import BackendError
from khet.api.routes import ask, news, translation
from khet.config import get_settings
from khet.core.exceptions import backend_exception_handler, global_exception_handler, http_exception_handler, request_validation_exception_handler
from khet.core.lifespan import lifespan

settings = get_settings()

app = FastAPI(title="Khet advisory core", version=__version__, lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

app.add_middleware(CORSMiddleware, allow_origins=settings.allowed_origins, allow_credentials=True, allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["content-type", "authorization"], expose_headers=["content-length", "x-request-id"])


app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(BackendError, backend_exception_handler)


@app.get("/health")
async def health() -> dict[str, str]:
  return {"status": "ok", "version": __version__}


app.include_router(ask.router, prefix="/v1", tags=["ask"])
app.include_router(news.router, prefix="/v1", tags=["news"])
app.include_router(translation.router, prefix="/v1", tags=["translation"])
