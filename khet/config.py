"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from khet.utils.env import load_env_file, resolve_env_path

load_env_file(resolve_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the Khet advisory core."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  pg_dsn: str | None
  pg_connect_timeout: int
  sarvam_api_key: str | None
  sarvam_base_url: str
  sarvam_timeout_seconds: float
  groq_api_key: str | None
  groq_base_url: str
  chat_model: str
  summary_model: str
  news_api_key: str | None
  news_base_url: str
  news_cache_ttl_seconds: int
  openweather_api_key: str | None
  openweather_base_url: str
  data_gov_api_key: str | None
  data_gov_prices_url: str
  agmarknet_scraper_url: str | None
  tool_timeout_seconds: float
  translation_cache_max_items: int
  translation_char_limit: int
  translation_batch_size: int
  tts_char_limit: int
  step_delay_scale: float


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    return ("http://localhost",)

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("KHET_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("KHET_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("KHET_ENV", "development").lower()
  debug = _parse_bool(os.getenv("KHET_DEBUG"))

  log_dir = (os.getenv("KHET_LOG_DIR") or str(Path(__file__).resolve().parent.parent / "logs")).strip()
  log_max_bytes = _positive_int("KHET_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("KHET_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("KHET_LOG_BACKUP_COUNT must be zero or a positive integer.")

  sarvam_timeout_seconds = float(os.getenv("KHET_SARVAM_TIMEOUT_SECONDS", "30"))
  if sarvam_timeout_seconds <= 0:
    raise ValueError("KHET_SARVAM_TIMEOUT_SECONDS must be positive.")

  tool_timeout_seconds = float(os.getenv("KHET_TOOL_TIMEOUT_SECONDS", "10"))
  if tool_timeout_seconds <= 0:
    raise ValueError("KHET_TOOL_TIMEOUT_SECONDS must be positive.")

  # Zero disables the paced waits between reasoning phases (used by tests).
  step_delay_scale = float(os.getenv("KHET_STEP_DELAY_SCALE", "1.0"))
  if step_delay_scale < 0:
    raise ValueError("KHET_STEP_DELAY_SCALE must be zero or positive.")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("KHET_ALLOWED_ORIGINS")),
    log_dir=log_dir,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    pg_dsn=_optional_str(os.getenv("KHET_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL")),
    pg_connect_timeout=_positive_int("KHET_PG_CONNECT_TIMEOUT", "5"),
    sarvam_api_key=_optional_str(os.getenv("SARVAM_API_KEY")),
    sarvam_base_url=(os.getenv("KHET_SARVAM_BASE_URL") or "https://api.sarvam.ai").strip().rstrip("/"),
    sarvam_timeout_seconds=sarvam_timeout_seconds,
    groq_api_key=_optional_str(os.getenv("GROQ_API_KEY")),
    groq_base_url=(os.getenv("KHET_GROQ_BASE_URL") or "https://api.groq.com/openai/v1").strip(),
    chat_model=os.getenv("KHET_CHAT_MODEL", "openai/gpt-oss-20b"),
    summary_model=os.getenv("KHET_SUMMARY_MODEL", "llama-3.1-8b-instant"),
    news_api_key=_optional_str(os.getenv("NEWS_API_KEY")),
    news_base_url=(os.getenv("KHET_NEWS_BASE_URL") or "https://newsapi.org/v2/everything").strip(),
    news_cache_ttl_seconds=_positive_int("KHET_NEWS_CACHE_TTL_SECONDS", "900"),
    openweather_api_key=_optional_str(os.getenv("OPENWEATHER_API_KEY")),
    openweather_base_url=(os.getenv("KHET_OPENWEATHER_BASE_URL") or "https://api.openweathermap.org").strip().rstrip("/"),
    data_gov_api_key=_optional_str(os.getenv("DATA_GOV_API_KEY")),
    data_gov_prices_url=(os.getenv("KHET_DATA_GOV_PRICES_URL") or "https://api.data.gov.in/resource/9ef84268-d588-465a-a308-a864a43d0070").strip(),
    agmarknet_scraper_url=_optional_str(os.getenv("KHET_AGMARKNET_SCRAPER_URL")),
    tool_timeout_seconds=tool_timeout_seconds,
    translation_cache_max_items=_positive_int("KHET_TRANSLATION_CACHE_MAX_ITEMS", "300"),
    translation_char_limit=_positive_int("KHET_TRANSLATION_CHAR_LIMIT", "1000"),
    translation_batch_size=_positive_int("KHET_TRANSLATION_BATCH_SIZE", "5"),
    tts_char_limit=_positive_int("KHET_TTS_CHAR_LIMIT", "500"),
    step_delay_scale=step_delay_scale,
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  debug = _parse_bool(os.getenv("KHET_DEBUG"))
  pg_connect_timeout = _positive_int("KHET_PG_CONNECT_TIMEOUT", "5")
  # Support fallback to DATABASE_URL for hosted environments.
  pg_dsn = _optional_str(os.getenv("KHET_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL"))

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)
