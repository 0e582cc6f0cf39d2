"""Runtime settings for the guild feature flags service.

Values come from the environment (case-insensitive) or an optional `.env` file.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    REDIS_URL: str = "redis://localhost:6379/0"

    # Reconciliation lock, one per guild across the fleet
    FLAGS_LOCK_TTL_SECONDS: float = 60.0
    FLAGS_LOCK_WAIT_SECONDS: float = 60.0
    FLAGS_LOCK_RETRY_INTERVAL: float = 0.1

    # Drop the local cache entry once a guild has been reconciled
    FLAGS_INVALIDATE_ON_UPDATE: bool = True

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
    }


_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings()
    return _settings_cache


def reset_settings() -> None:
    """Forget cached settings so the next call re-reads the environment."""
    global _settings_cache
    _settings_cache = None
