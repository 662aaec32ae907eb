from __future__ import annotations

import os

import uvicorn

from .api import create_app
from .config import Settings, load_settings
from .logging_config import get_logger

logger = get_logger(__name__)


def log_startup(settings: Settings, port: int) -> None:
  logger.info("=" * 60)
  logger.info("Starting FormulAi API")
  logger.info("=" * 60)
  logger.info(f"Port: {port}")
  logger.info(f"Environment: {settings.environment}")
  logger.info(f"Log Level: {os.getenv('LOG_LEVEL', 'INFO')}")
  logger.info(f"Log Format: {os.getenv('LOG_FORMAT', 'json (auto-detected)')}")
  logger.info(f"LLM model: {settings.llm_model} via {settings.openai_base_url}")

  missing = settings.missing_keys()
  if missing:
    logger.error("=" * 60)
    logger.error("❌ CRITICAL: Missing required environment variables!")
    for var in missing:
      logger.error(f"   - {var}")
    logger.error("=" * 60)
    logger.error("Please set these variables in .env file or environment.")

  logger.info("Feature availability:")
  logger.info(f"  - Google sign-in: {'✓' if settings.google_oauth_configured else '✗'}")
  logger.info(f"  - AI analysis: {'✓' if settings.openai_api_key else '✗'}")

  if not settings.google_oauth_configured:
    logger.warning("⚠️  Google OAuth not configured - /auth/google will return 500")
  if not settings.openai_api_key:
    logger.warning("⚠️  OPENAI_API_KEY not set - analyze endpoints will return 503")

  logger.info("=" * 60)


def run() -> None:
  settings = load_settings()
  port = int(os.getenv("PORT", "8000"))
  log_startup(settings, port)
  uvicorn.run(create_app(settings), host="0.0.0.0", port=port)


if __name__ == "__main__":
  run()
