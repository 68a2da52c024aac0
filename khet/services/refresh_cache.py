"""TTL cache for one externally sourced resource with single-flight refreshes."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import msgspec

from khet.storage.kv_store import KeyValueStore
from khet.utils.clock import now_ms

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_INFLIGHT_GRACE_SECONDS = 0.05


class RefreshEntry(msgspec.Struct, frozen=True):
  timestamp: int
  payload: Any


@dataclass(frozen=True)
class RefreshResult(Generic[T]):
  from_cache: bool
  payload: T
  timestamp: int


class RefreshCache(Generic[T]):
  """Cache the latest payload of one resource for `ttl_seconds`.

  At most one refresh runs at a time. Callers arriving while it runs await
  the same task instead of fetching again. The in-flight marker is kept for a
  short grace period after success so racing callers still observe it, and is
  dropped immediately when the fetch fails so the next call can retry.
  """

  def __init__(
    self,
    resource: str,
    *,
    ttl_seconds: float,
    store: KeyValueStore | None = None,
    payload_type: Any = None,
    clock: Callable[[], int] = now_ms,
    inflight_grace_seconds: float = DEFAULT_INFLIGHT_GRACE_SECONDS,
  ) -> None:
    self.resource = resource
    self._ttl_ms = int(ttl_seconds * 1000)
    self._store = store
    self._payload_type = payload_type
    self._clock = clock
    self._grace = inflight_grace_seconds
    self._memory: RefreshEntry | None = None
    self._inflight: asyncio.Task[RefreshEntry] | None = None
    self._lock = asyncio.Lock()
    self._clear_handle: asyncio.TimerHandle | None = None

  @property
  def storage_key(self) -> str:
    return f"refresh:{self.resource}"

  @property
  def refreshing(self) -> bool:
    return self._inflight is not None

  def is_fresh(self, entry: RefreshEntry) -> bool:
    return self._clock() - entry.timestamp < self._ttl_ms

  async def get_or_refresh(self, fetcher: Callable[[], Awaitable[T]], *, force: bool = False) -> RefreshResult[T]:
    if not force:
      entry = self._memory
      if entry is not None and self.is_fresh(entry):
        return RefreshResult(from_cache=True, payload=entry.payload, timestamp=entry.timestamp)

      stored = await self._load()
      if stored is not None and self.is_fresh(stored):
        self._memory = stored
        return RefreshResult(from_cache=True, payload=stored.payload, timestamp=stored.timestamp)

    async with self._lock:
      entry = self._memory
      if not force and entry is not None and self.is_fresh(entry):
        return RefreshResult(from_cache=True, payload=entry.payload, timestamp=entry.timestamp)

      task = self._inflight
      joined = task is not None and not force
      if not joined:
        task = asyncio.create_task(self._refresh(fetcher), name=f"refresh:{self.resource}")
        task.add_done_callback(_consume_exception)
        self._inflight = task

    assert task is not None
    if joined:
      logger.debug("Joining in-flight refresh resource=%s", self.resource)
    entry = await asyncio.shield(task)
    return RefreshResult(from_cache=joined, payload=entry.payload, timestamp=entry.timestamp)

  async def _refresh(self, fetcher: Callable[[], Awaitable[T]]) -> RefreshEntry:
    task = asyncio.current_task()
    try:
      payload = await fetcher()
    except Exception as exc:
      logger.error("Refresh failed resource=%s: %s", self.resource, exc)
      self._clear_inflight(task)
      raise

    entry = RefreshEntry(timestamp=self._clock(), payload=payload)
    self._memory = entry
    await self._save(entry)
    loop = asyncio.get_running_loop()
    self._clear_handle = loop.call_later(self._grace, self._clear_inflight, task)
    return entry

  def _clear_inflight(self, task: asyncio.Task[Any] | None) -> None:
    if self._inflight is task:
      self._inflight = None

  async def put(self, payload: T, *, timestamp: int | None = None) -> None:
    """Store a payload directly in both tiers."""
    entry = RefreshEntry(timestamp=self._clock() if timestamp is None else timestamp, payload=payload)
    self._memory = entry
    await self._save(entry)

  async def last_known(self) -> RefreshEntry | None:
    """Return the newest payload regardless of age, for stale fallbacks."""
    if self._memory is not None:
      return self._memory
    return await self._load()

  async def _load(self) -> RefreshEntry | None:
    if self._store is None:
      return None
    try:
      raw = await self._store.get(self.storage_key)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Refresh cache read failed resource=%s: %s", self.resource, exc)
      return None
    if raw is None:
      return None
    try:
      entry = msgspec.json.decode(raw, type=RefreshEntry)
      if self._payload_type is not None:
        entry = RefreshEntry(timestamp=entry.timestamp, payload=msgspec.convert(entry.payload, self._payload_type))
    except (msgspec.DecodeError, msgspec.ValidationError) as exc:
      logger.warning("Discarding unreadable refresh cache entry resource=%s: %s", self.resource, exc)
      return None
    return entry

  async def _save(self, entry: RefreshEntry) -> None:
    if self._store is None:
      return
    try:
      await self._store.set(self.storage_key, msgspec.json.encode(entry).decode("utf-8"))
    except Exception as exc:  # noqa: BLE001
      logger.warning("Refresh cache write failed resource=%s: %s", self.resource, exc)

  async def clear(self) -> None:
    self._memory = None
    if self._store is not None:
      try:
        await self._store.delete(self.storage_key)
      except Exception as exc:  # noqa: BLE001
        logger.warning("Refresh cache delete failed resource=%s: %s", self.resource, exc)

  async def close(self) -> None:
    """Wait for a running refresh and drop timers."""
    task = self._inflight
    if task is not None and not task.done():
      await asyncio.gather(task, return_exceptions=True)
    if self._clear_handle is not None:
      self._clear_handle.cancel()
      self._clear_handle = None
    self._inflight = None


def _consume_exception(task: asyncio.Task[Any]) -> None:
  if not task.cancelled():
    task.exception()
