"""Postgres-backed key-value store using SQLAlchemy."""

from __future__ import annotations

from sqlalchemy import delete, func
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from khet.core.database import get_session_factory
from khet.schema.kv import KeyValueEntry
from khet.storage.kv_store import KeyValueStore


class PostgresKeyValueStore(KeyValueStore):
  """Persist cache entries to the kv_entries table."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def get(self, key: str) -> str | None:
    async with self._session_factory() as session:
      row = await session.get(KeyValueEntry, key)
      if row is None:
        return None
      return row.value

  async def set(self, key: str, value: str) -> None:
    async with self._session_factory() as session:
      stmt = insert(KeyValueEntry).values(key=key, value=value)
      stmt = stmt.on_conflict_do_update(index_elements=["key"], set_={"value": value, "updated_at": func.now()})
      await session.execute(stmt)
      await session.commit()

  async def delete(self, key: str) -> None:
    async with self._session_factory() as session:
      await session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
      await session.commit()
