"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from khet.ai.orchestrator import OrchestrationFacade


def get_facade(request: Request) -> OrchestrationFacade:
  """Return the facade built during startup."""
  facade = getattr(request.app.state, "facade", None)
  if facade is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is starting up.")
  return facade
