"""Wall-clock helpers shared by step timing and cache entries."""

from __future__ import annotations

import time


def now_ms() -> int:
  """Return the current epoch time in milliseconds."""
  return time.time_ns() // 1_000_000
