import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from khet.ai.orchestrator import OrchestrationFacade
from khet.config import Settings
from khet.core.database import dispose_engine, ensure_schema, get_session_factory
from khet.core.logging import initialize_logging
from khet.storage.kv_store import InMemoryKeyValueStore, KeyValueStore
from khet.storage.postgres_kv_store import PostgresKeyValueStore


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging, storage and the orchestration facade for the app's lifetime."""
  from khet.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("khet.core.lifespan")

  try:
    initialize_logging(settings)
    logger.info("Startup complete - logging verified.")
  except Exception:  # noqa: BLE001
    logger.warning("Initial logging setup failed; continuing with default handlers.", exc_info=True)

  store = await build_store(settings, logger=logger)
  facade = OrchestrationFacade.from_settings(settings, store)
  app.state.facade = facade

  try:
    yield
  finally:
    await facade.close()
    await dispose_engine()
    logger.info("Shutdown complete.")


async def build_store(settings: Settings, *, logger: logging.Logger) -> KeyValueStore:
  """Return the Postgres store when a DSN is configured and reachable, else an in-memory one."""
  if not settings.pg_dsn:
    logger.info("No database configured; caches are kept in memory only.")
    return InMemoryKeyValueStore()

  try:
    await ensure_schema()
    session_factory = get_session_factory()
    store = PostgresKeyValueStore(session_factory)
  except Exception as exc:  # noqa: BLE001
    logger.warning("Database unavailable at %s; falling back to in-memory caches: %s", _redact_dsn(settings.pg_dsn), exc)
    return InMemoryKeyValueStore()

  logger.info("Persistent cache store ready at %s", _redact_dsn(settings.pg_dsn))
  return store


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
