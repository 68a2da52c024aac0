"""Tool invocation boundary for the reasoning sequencer."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


class ToolError(Exception):
  """Raised when a registered tool fails; terminal for the current sequence."""

  def __init__(self, tool: str, message: str) -> None:
    super().__init__(f"{tool}: {message}")
    self.tool = tool
    self.message = message


class ToolSkipped(Exception):
  """Raised by a tool that cannot run for this query, e.g. weather without a location."""

  def __init__(self, tool: str, reason: str) -> None:
    super().__init__(f"{tool}: {reason}")
    self.tool = tool
    self.reason = reason


@dataclass(frozen=True)
class ToolCall:
  """Inputs handed to a tool handler."""

  name: str
  query: str
  location: str | None = None
  crops: tuple[str, ...] = ()


@dataclass(frozen=True)
class ToolResult:
  tool: str
  data: Any
  duration_ms: int = 0
  metadata: dict[str, Any] = field(default_factory=dict)


ToolHandler = Callable[[ToolCall], Awaitable[Any]]


class ToolRegistry:
  """Name-indexed tool handlers; unknown names are simply not available."""

  def __init__(self, handlers: dict[str, ToolHandler] | None = None) -> None:
    self._handlers: dict[str, ToolHandler] = dict(handlers or {})

  def register(self, name: str, handler: ToolHandler) -> None:
    self._handlers[name] = handler

  def has(self, name: str) -> bool:
    return name in self._handlers

  @property
  def names(self) -> tuple[str, ...]:
    return tuple(self._handlers)

  async def invoke(self, call: ToolCall) -> ToolResult:
    """Run a registered tool, wrapping any failure in ToolError."""
    handler = self._handlers.get(call.name)
    if handler is None:
      raise ToolError(call.name, "Tool is not registered.")

    started = time.monotonic()
    try:
      data = await handler(call)
    except (ToolError, ToolSkipped):
      raise
    except Exception as exc:  # noqa: BLE001
      logger.error("Tool %s failed: %s", call.name, exc, exc_info=True)
      raise ToolError(call.name, str(exc) or type(exc).__name__) from exc

    elapsed = int((time.monotonic() - started) * 1000)
    return ToolResult(tool=call.name, data=data, duration_ms=elapsed)


# Returns a conflict type such as "price_conflict", or None when results agree.
UncertaintyPolicy = Callable[[Sequence[ToolResult]], str | None]


def price_source_policy(results: Sequence[ToolResult]) -> str | None:
  """Report a price conflict whenever two or more price/market sources answered.

  This is a detection heuristic only; it does not compare the values.
  """
  if len(results) < 2:
    return None
  price_sources = [result for result in results if "price" in result.tool or "market" in result.tool]
  if len(price_sources) >= 2:
    return "price_conflict"
  return None


def never_uncertain(_results: Sequence[ToolResult]) -> str | None:
  return None
