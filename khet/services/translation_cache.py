"""Two-tier translation cache: bounded in-process map plus a persistent key-value store."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import threading

import msgspec

from khet.storage.kv_store import KeyValueStore
from khet.utils.clock import now_ms

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITEMS = 300
# Inputs longer than this are keyed on their head and tail only.
FULL_HASH_CHARS = 1200
HEAD_TAIL_CHARS = 600


class CacheEntry(msgspec.Struct, frozen=True):
  """A stored translation; immutable once written."""

  key: str
  text: str
  source_lang: str
  target_lang: str
  mode: str | None = None
  created_at: int = 0


def hash_basis(text: str) -> str:
  if len(text) <= FULL_HASH_CHARS:
    return text
  return f"{text[:HEAD_TAIL_CHARS]}§{text[-HEAD_TAIL_CHARS:]}"


def cache_key(text: str, source: str, target: str) -> str:
  """Return the content-addressed key `tx_{target}_{source}_{hash}`."""
  digest = hashlib.sha256(hash_basis(text).encode("utf-8")).hexdigest()[:16]
  return f"tx_{target}_{source}_{digest}"


def make_entry(text: str, source: str, target: str, translated: str, *, mode: str | None = None, detected_source: str | None = None) -> CacheEntry:
  """Build an entry keyed on the requested languages, recording the detected source."""
  return CacheEntry(key=cache_key(text, source, target), text=translated, source_lang=detected_source or source, target_lang=target, mode=mode, created_at=now_ms())


class TranslationCache:
  """Content-addressed translation cache.

  The memory tier evicts by insertion order (oldest inserted key first) once
  it holds more than `max_items` entries. This is a FIFO approximation of
  LRU: reads do not refresh an entry's position.

  The persistent tier is consulted on a memory miss and hits are promoted.
  Writes to it are fire-and-forget; failures are logged and the memory tier
  stays authoritative for the life of the process.
  """

  def __init__(self, store: KeyValueStore | None = None, *, max_items: int = DEFAULT_MAX_ITEMS) -> None:
    if max_items <= 0:
      raise ValueError("max_items must be positive.")
    self._store = store
    self._max_items = max_items
    self._memory: dict[str, CacheEntry] = {}
    self._lock = threading.Lock()
    self._pending: set[asyncio.Task[None]] = set()
    self._closed = False

  def __len__(self) -> int:
    return len(self._memory)

  def keys(self) -> list[str]:
    with self._lock:
      return list(self._memory)

  def get_memory(self, key: str) -> CacheEntry | None:
    with self._lock:
      return self._memory.get(key)

  async def get(self, text: str, source: str, target: str) -> CacheEntry | None:
    key = cache_key(text, source, target)
    entry = self.get_memory(key)
    if entry is not None:
      logger.debug("Translation cache hit (memory) key=%s", key)
      return entry

    if self._store is None:
      logger.debug("Translation cache miss key=%s", key)
      return None

    try:
      raw = await self._store.get(key)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Translation cache read failed key=%s: %s", key, exc)
      return None
    if raw is None:
      logger.debug("Translation cache miss key=%s", key)
      return None

    try:
      entry = msgspec.json.decode(raw, type=CacheEntry)
    except msgspec.DecodeError as exc:
      logger.warning("Discarding unreadable translation cache entry key=%s: %s", key, exc)
      return None

    logger.debug("Translation cache hit (persistent) key=%s", key)
    self._remember(key, entry)
    return entry

  def put(self, key: str, entry: CacheEntry) -> None:
    """Insert or replace an entry; the memory tier is updated before returning."""
    self._remember(key, entry)
    if self._store is None or self._closed:
      return
    try:
      loop = asyncio.get_running_loop()
    except RuntimeError:
      logger.debug("No running loop; skipping persistent write key=%s", key)
      return
    task = loop.create_task(self._persist(key, entry))
    self._pending.add(task)
    task.add_done_callback(self._pending.discard)

  def _remember(self, key: str, entry: CacheEntry) -> None:
    with self._lock:
      self._memory[key] = entry
      while len(self._memory) > self._max_items:
        oldest = next(iter(self._memory))
        del self._memory[oldest]

  async def _persist(self, key: str, entry: CacheEntry) -> None:
    assert self._store is not None
    try:
      await self._store.set(key, msgspec.json.encode(entry).decode("utf-8"))
    except Exception as exc:  # noqa: BLE001
      logger.warning("Translation cache write failed key=%s: %s", key, exc)

  async def flush(self) -> None:
    """Wait for scheduled persistent writes to finish."""
    if self._pending:
      await asyncio.gather(*list(self._pending))

  def clear(self) -> None:
    with self._lock:
      self._memory.clear()

  async def close(self) -> None:
    await self.flush()
    self._closed = True
