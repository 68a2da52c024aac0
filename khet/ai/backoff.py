"""Retry logic with specific backoff strategy."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

DEFAULT_DELAYS: tuple[float, ...] = (5, 20, 50)


def is_rate_limited(error: BaseException) -> bool:
  """Return True for 429 / quota style failures from the chat backend."""
  status_code = getattr(error, "status_code", None)
  if status_code == 429:
    return True
  message = str(error)
  is_quota_error = "Resource Exhausted" in message or "Quota Exceeded" in message or "rate_limit_exceeded" in message
  is_rate_limit = "429" in message or "Too Many Requests" in message
  return is_quota_error or is_rate_limit


async def retry_with_backoff(
  func: Callable[..., Awaitable[T]],
  *args: Any,
  delays: Sequence[float] = DEFAULT_DELAYS,
  sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
  **kwargs: Any,
) -> T:
  """
  Execute a function with retries for specific 429/Quota errors.

  Delays: 5s, 20s, 50s.
  """
  for attempt, delay in enumerate(delays):
    try:
      return await func(*args, **kwargs)
    except Exception as e:
      if not is_rate_limited(e):
        # Non-retryable error, raise immediately
        raise
      logger.warning("Retry attempt %s/%s needed. Error: %s. Retrying in %ss...", attempt + 1, len(delays), e, delay)
      await sleep(delay)

  # Final attempt
  return await func(*args, **kwargs)
