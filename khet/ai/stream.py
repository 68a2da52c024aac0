"""Per-query channel carrying validated steps from producers to a single consumer."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Literal

from khet.ai.steps import Step

StreamStatus = Literal["done", "error"]


@dataclass(frozen=True)
class StreamEnd:
  """Sentinel closing a step stream."""

  status: StreamStatus
  message: str | None = None


class StepStream:
  """Finite, non-restartable async sequence of steps for one query."""

  def __init__(self) -> None:
    self._queue: asyncio.Queue[Step | StreamEnd] = asyncio.Queue()
    self._abandoned = asyncio.Event()
    self._finished = False
    self._consumed = False
    self.outcome: StreamEnd | None = None

  def push(self, step: Step) -> None:
    """Queue a step unless the stream is finished or abandoned."""
    if self._finished or self._abandoned.is_set():
      return
    self._queue.put_nowait(step)

  def finish(self, *, error: str | None = None) -> None:
    """Close the stream with a done or error sentinel; later calls are ignored."""
    if self._finished:
      return
    self._finished = True
    end = StreamEnd(status="error", message=error) if error else StreamEnd(status="done")
    self.outcome = end
    self._queue.put_nowait(end)

  def abandon(self) -> None:
    """Consumer-side cancellation; producers observe it through `cancel_event`."""
    self._abandoned.set()

  @property
  def cancel_event(self) -> asyncio.Event:
    return self._abandoned

  @property
  def abandoned(self) -> bool:
    return self._abandoned.is_set()

  @property
  def finished(self) -> bool:
    return self._finished

  def __aiter__(self) -> AsyncIterator[Step]:
    if self._consumed:
      raise RuntimeError("Step stream can only be consumed once.")
    self._consumed = True
    return self._iterate()

  async def _iterate(self) -> AsyncIterator[Step]:
    while True:
      item = await self._queue.get()
      if isinstance(item, StreamEnd):
        return
      yield item
