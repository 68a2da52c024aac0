"""Load local configuration from a .env file before settings are read."""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

ENV_FILE_VARIABLE = "KHET_ENV_FILE"


def resolve_env_path() -> Path:
  """Return the .env file to load: `KHET_ENV_FILE` when set, else the project root's .env."""
  explicit = os.getenv(ENV_FILE_VARIABLE, "").strip()
  if explicit:
    return Path(explicit).expanduser()
  return Path(__file__).resolve().parents[2] / ".env"


def parse_env_line(raw_line: str) -> tuple[str, str] | None:
  """Parse one `KEY=value` line; comments, blanks and malformed lines give None."""
  line = raw_line.strip()
  if not line or line.startswith("#"):
    return None
  line = line.removeprefix("export ").lstrip()
  key, sep, value = line.partition("=")
  key = key.strip()
  if not sep or not key:
    return None

  value = value.strip()
  if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
    return key, value[1:-1]
  # Unquoted values may carry a trailing comment.
  comment = value.find(" #")
  if comment != -1:
    value = value[:comment].rstrip()
  return key, value


def load_env_file(path: Path, *, override: bool = False) -> list[str]:
  """Export the file's variables into the process environment and return the keys applied.

  Variables already present in the environment win unless `override` is set.
  A missing file is not an error.
  """
  if not path.is_file():
    return []

  applied: list[str] = []
  for raw_line in path.read_text(encoding="utf-8").splitlines():
    parsed = parse_env_line(raw_line)
    if parsed is None:
      continue
    key, value = parsed
    if not override and key in os.environ:
      continue
    os.environ[key] = value
    applied.append(key)

  logger.debug("Loaded %d variables from %s", len(applied), path)
  return applied
