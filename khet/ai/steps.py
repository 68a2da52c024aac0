"""Reasoning step protocol: validation, icons, and timing for progress reports."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from khet.utils.clock import now_ms

logger = logging.getLogger(__name__)

# Plausible epoch-millisecond window for step timestamps (2020-01-01 .. 2100-01-01).
MIN_TIMESTAMP_MS = 1_577_836_800_000
MAX_TIMESTAMP_MS = 4_102_444_800_000

DEFAULT_TITLE = "Processing"
DEFAULT_DESCRIPTION = "Working..."
DEFAULT_STEP_ID = "unknown"
DEFAULT_ICON = "settings"
SUCCESS_ICON = "checkmark-circle"


class StepStatus(str, Enum):
  PENDING = "pending"
  STARTING = "starting"
  ACTIVE = "active"
  PROCESSING = "processing"
  FINISHING = "finishing"
  COMPLETED = "completed"
  ERROR = "error"
  UNCERTAIN = "uncertain"
  SKIPPED = "skipped"


class StepId:
  """Standard step identifiers shared by every producer."""

  UNDERSTAND = "understand"
  TOOLS = "tools"
  KNOWLEDGE = "knowledge"
  UNCERTAINTY = "uncertainty"
  ANALYSIS = "analysis"
  REASONING = "reasoning"
  SYNTHESIS = "synthesis"
  RESPONSE = "response"
  QUERY_TRANSLATE = "query-translate"
  TRANSLATE = "translate"
  TTS = "tts"
  STT = "stt"
  COMPLETE = "complete"
  ERROR = "error"


ICONS: dict[str, str] = {
  "UNDERSTAND": "brain",
  "TOOLS": "settings",
  "KNOWLEDGE": "library",
  "UNCERTAINTY": "help-circle",
  "ANALYSIS": "search",
  "REASONING": "bulb",
  "SYNTHESIS": "link",
  "RESPONSE": "chatbubble",
  "QUERY-TRANSLATE": "globe",
  "TRANSLATE": "globe",
  "TTS": "volume-high",
  "STT": "mic",
  "COMPLETE": SUCCESS_ICON,
  "ERROR": "close-circle",
}

# Order used to derive overall progress from completed phases.
PROGRESS_ORDER = (StepId.UNDERSTAND, StepId.TOOLS, StepId.ANALYSIS, StepId.REASONING, StepId.RESPONSE)


@dataclass(frozen=True)
class Step:
  """A normalized unit of progress reported during query processing."""

  id: str
  title: str
  description: str
  status: StepStatus
  icon: str
  timestamp: int
  duration: int | None = None
  progress: int | None = None
  metadata: dict[str, Any] | None = field(default=None, hash=False, compare=False)

  def to_dict(self) -> dict[str, Any]:
    """Return a JSON-ready mapping with the status as its wire string."""
    payload: dict[str, Any] = {
      "id": self.id,
      "title": self.title,
      "description": self.description,
      "status": self.status.value,
      "icon": self.icon,
      "timestamp": self.timestamp,
      "duration": self.duration,
      "progress": self.progress,
    }
    if self.metadata:
      payload["metadata"] = self.metadata
    return payload


def icon_for_step(step_id: str) -> str:
  """Return the standard icon for a step id, falling back to a generic one."""
  return ICONS.get(step_id.upper(), DEFAULT_ICON)


def format_duration(ms: int) -> str:
  """Format a duration for display: 850ms below one second, 1.2s otherwise."""
  if ms < 1000:
    return f"{ms}ms"
  return f"{ms / 1000:.1f}s"


def _is_number(value: Any) -> bool:
  if isinstance(value, bool) or not isinstance(value, int | float):
    return False
  return math.isfinite(value)


def _text(value: Any, default: str) -> str:
  if value is None:
    return default
  try:
    text = str(value).strip()
  except Exception:  # noqa: BLE001
    return default
  return text or default


def _coerce_status(value: Any) -> StepStatus:
  if isinstance(value, StepStatus):
    return value
  if isinstance(value, str):
    try:
      return StepStatus(value.strip().lower())
    except ValueError:
      pass
  return StepStatus.ACTIVE


def _coerce_timestamp(value: Any) -> int:
  candidate: Any = value
  if isinstance(candidate, str):
    try:
      candidate = int(candidate.strip())
    except ValueError:
      candidate = None
  if _is_number(candidate) and MIN_TIMESTAMP_MS <= candidate < MAX_TIMESTAMP_MS:
    return int(candidate)
  if value is not None:
    logger.warning("Invalid step timestamp %r replaced with current time", value)
  return now_ms()


def validate_step(raw: Any) -> Step:
  """Normalize an arbitrary step report into a well-formed Step; never raises."""
  if isinstance(raw, Step):
    return raw
  data: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}

  step_id = _text(data.get("id"), DEFAULT_STEP_ID)
  # Some producers misspell the title key.
  title = _text(data.get("title", data.get("tittle")), DEFAULT_TITLE)
  description = _text(data.get("description"), DEFAULT_DESCRIPTION)

  duration = data.get("duration")
  progress = data.get("progress")
  icon = data.get("icon")
  metadata = data.get("metadata")

  return Step(
    id=step_id,
    title=title,
    description=description,
    status=_coerce_status(data.get("status")),
    icon=icon.strip() if isinstance(icon, str) and icon.strip() else icon_for_step(step_id),
    timestamp=_coerce_timestamp(data.get("timestamp")),
    duration=int(duration) if _is_number(duration) and duration >= 0 else None,
    progress=int(progress) if _is_number(progress) and 0 <= progress <= 100 else None,
    metadata=dict(metadata) if isinstance(metadata, Mapping) else None,
  )


StepSink = Callable[[Step], None]


class StepEmitter:
  """Validate raw step reports, fill in timing, and forward them to a sink.

  One emitter is created per query. It remembers when each step id last went
  active so a later `completed` report without a duration gets the elapsed
  wall-clock time. The active-timer map is cleared by `close()`.
  """

  def __init__(self, sink: StepSink, *, clock: Callable[[], int] = now_ms) -> None:
    self._sink = sink
    self._clock = clock
    self._active_started: dict[str, int] = {}

  def __call__(self, raw: Any) -> Step:
    step = validate_step(raw)
    now = self._clock()

    if step.status is StepStatus.ACTIVE:
      # Last active report wins for duration purposes.
      self._active_started[step.id] = now
    elif step.status in {StepStatus.STARTING, StepStatus.PROCESSING}:
      self._active_started.setdefault(step.id, now)
    elif step.status is StepStatus.COMPLETED:
      started = self._active_started.pop(step.id, None)
      if step.duration is None and started is not None:
        step = replace(step, duration=max(now - started, 0))

    step = replace(step, timestamp=now)
    self._sink(step)
    return step

  @property
  def tracked_ids(self) -> tuple[str, ...]:
    """Return ids that are currently active."""
    return tuple(self._active_started)

  def close(self) -> None:
    """Forget all tracked start times."""
    self._active_started.clear()


def create_callback(sink: StepSink) -> StepEmitter:
  """Return a validating emitter that forwards normalized steps to `sink`."""
  return StepEmitter(sink)


class ProgressTracker:
  """Annotate steps with overall progress derived from completed standard phases."""

  def __init__(self, sink: StepSink, *, total_steps: int = len(PROGRESS_ORDER)) -> None:
    self._sink = sink
    self._total_steps = max(total_steps, 1)
    self._completed = 0

  def __call__(self, step: Step) -> None:
    if step.status is StepStatus.COMPLETED and step.id in PROGRESS_ORDER:
      self._completed = max(self._completed, PROGRESS_ORDER.index(step.id) + 1)
    self._sink(replace(step, progress=self.percent))

  @property
  def percent(self) -> int:
    """Return completion as a 0-100 integer; never decreases."""
    return min(round(self._completed / self._total_steps * 100), 100)
