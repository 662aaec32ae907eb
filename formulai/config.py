from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv


PROJECT_ROOT = Path(__file__).resolve().parents[1]


def load_env_files() -> None:
  """
  Load .env-style files from the package and repository roots.

  Values already present in the process environment always win.
  """
  backend_root = Path(__file__).resolve().parent
  for env_path in (
    backend_root / ".env.local",
    backend_root / ".env",
    PROJECT_ROOT / ".env.local",
    PROJECT_ROOT / ".env",
  ):
    if env_path.is_file():
      load_dotenv(env_path, override=False)


def _int_env(name: str, default: int) -> int:
  raw = os.getenv(name)
  if raw is None or not raw.strip():
    return default
  try:
    return int(raw)
  except ValueError:
    raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Settings:
  google_client_id: Optional[str] = None
  google_client_secret: Optional[str] = None
  google_redirect_uri: str = "http://localhost:8000/auth/google/callback"
  openai_api_key: Optional[str] = None
  openai_base_url: str = "https://api.openai.com/v1"
  llm_model: str = "gpt-4"
  llm_timeout_seconds: int = 30
  sheets_timeout_seconds: int = 15
  cache_ttl_seconds: int = 600
  history_limit: int = 100
  environment: str = "production"
  app_url: str = "http://localhost:5173"
  cors_allowed_origins: List[str] = field(default_factory=list)

  @property
  def is_production(self) -> bool:
    return self.environment.lower() == "production"

  @property
  def google_oauth_configured(self) -> bool:
    return bool(self.google_client_id and self.google_client_secret)

  def missing_keys(self) -> List[str]:
    missing = []
    if not self.google_client_id:
      missing.append("GOOGLE_CLIENT_ID")
    if not self.google_client_secret:
      missing.append("GOOGLE_CLIENT_SECRET")
    if not self.openai_api_key:
      missing.append("OPENAI_API_KEY")
    return missing


def load_settings() -> Settings:
  load_env_files()

  origins = [
    origin.strip()
    for origin in (os.getenv("CORS_ALLOWED_ORIGINS") or "").split(",")
    if origin.strip()
  ]

  return Settings(
    google_client_id=os.getenv("GOOGLE_CLIENT_ID"),
    google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET"),
    google_redirect_uri=os.getenv(
      "GOOGLE_REDIRECT_URI", "http://localhost:8000/auth/google/callback"
    ),
    openai_api_key=os.getenv("OPENAI_API_KEY") or None,
    openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"),
    llm_model=os.getenv("DEFAULT_LLM_MODEL", "gpt-4"),
    llm_timeout_seconds=_int_env("LLM_TIMEOUT_SECONDS", 30),
    sheets_timeout_seconds=_int_env("SHEETS_TIMEOUT_SECONDS", 15),
    cache_ttl_seconds=_int_env("CACHE_TTL_SECONDS", 600),
    history_limit=_int_env("HISTORY_LIMIT", 100),
    environment=os.getenv("ENVIRONMENT", "production"),
    app_url=os.getenv("APP_URL", "http://localhost:5173"),
    cors_allowed_origins=origins,
  )
