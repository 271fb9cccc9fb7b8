"""FieldSync configuration module.

Provides centralized configuration management using pydantic-settings.

Usage:
    from fieldsync.config import get_settings

    settings = get_settings()
    print(settings.api_base_url)
    print(settings.load_failure_signatures())
"""

from functools import lru_cache

from fieldsync.config.settings import FailureSignature, Settings

__all__ = ["FailureSignature", "Settings", "get_settings"]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    To reload settings, call get_settings.cache_clear() first.

    Returns:
        Settings instance loaded from environment variables.
    """
    return Settings()
