import logging
from functools import lru_cache

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://postgres:postgres@db:5432/clinic"
    DATABASE_URL_SYNC: str = "postgresql+psycopg2://postgres:postgres@db:5432/clinic"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Base URL of the patient-facing frontend (medical history form links)
    FRONTEND_URL: str = "http://localhost:3001"

    # Reminder scheduler
    REMINDER_SCHEDULER_ENABLED: bool = True
    REMINDER_TICK_INTERVAL_SECONDS: int = 300
    REMINDER_MATCH_WINDOW_MINUTES: int = 5
    REMINDER_DEDUP_LOOKBACK_MINUTES: int = 120
    REMINDER_ORG_CONCURRENCY: int = 1
    REMINDER_ADVISORY_LOCK_ID: int = 723405118

    # Messaging gateway (WAHA). URL and API key are stored per organization.
    GATEWAY_TIMEOUT_SECONDS: float = 15.0
    GATEWAY_SESSION: str = "default"
    GATEWAY_CHAT_ID_SUFFIX: str = "@c.us"

    # Database connection pool (tune per environment via env vars)
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30

    model_config = {"env_file": "../.env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache()
def get_settings() -> Settings:
    settings = Settings()

    # Dedup lookback must cover at least two scheduler ticks
    tick_minutes = settings.REMINDER_TICK_INTERVAL_SECONDS / 60
    if settings.REMINDER_DEDUP_LOOKBACK_MINUTES < 2 * tick_minutes:
        raise RuntimeError(
            "FATAL: REMINDER_DEDUP_LOOKBACK_MINUTES "
            f"({settings.REMINDER_DEDUP_LOOKBACK_MINUTES}) must be at least twice "
            f"the tick interval ({tick_minutes:g} minutes)."
        )

    if settings.REMINDER_TICK_INTERVAL_SECONDS <= 0:
        raise RuntimeError("FATAL: REMINDER_TICK_INTERVAL_SECONDS must be positive.")

    if settings.REMINDER_ORG_CONCURRENCY < 1:
        logger.warning(
            "REMINDER_ORG_CONCURRENCY=%s is invalid, organizations will be processed one at a time",
            settings.REMINDER_ORG_CONCURRENCY,
        )
        settings.REMINDER_ORG_CONCURRENCY = 1

    if settings.APP_ENV == "production" and not settings.REMINDER_SCHEDULER_ENABLED:
        logger.warning(
            "REMINDER_SCHEDULER_ENABLED is false; appointment reminders will not be sent."
        )

    return settings


def clear_settings_cache() -> None:
    """Clear the cached Settings so the next call to ``get_settings()``
    re-reads environment variables.
    """
    get_settings.cache_clear()
