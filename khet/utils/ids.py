"""Identifier utilities."""

from __future__ import annotations

import uuid


def generate_request_id() -> str:
  """Return a new query request identifier."""
  return str(uuid.uuid4())
