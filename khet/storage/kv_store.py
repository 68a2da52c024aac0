"""Storage interface for the persistent key-value tier used by both caches."""

from __future__ import annotations

import asyncio
from typing import Protocol


class KeyValueStore(Protocol):
  """Repository contract for string key-value persistence."""

  async def get(self, key: str) -> str | None:
    """Fetch a value, or None when the key is absent."""

  async def set(self, key: str, value: str) -> None:
    """Insert or replace a value."""

  async def delete(self, key: str) -> None:
    """Remove a key if present."""


class InMemoryKeyValueStore(KeyValueStore):
  """Process-local store used when no database is configured."""

  def __init__(self) -> None:
    self._data: dict[str, str] = {}
    self._lock = asyncio.Lock()

  async def get(self, key: str) -> str | None:
    async with self._lock:
      return self._data.get(key)

  async def set(self, key: str, value: str) -> None:
    async with self._lock:
      self._data[key] = value

  async def delete(self, key: str) -> None:
    async with self._lock:
      self._data.pop(key, None)

  def __len__(self) -> int:
    return len(self._data)

  def __contains__(self, key: object) -> bool:
    return key in self._data
