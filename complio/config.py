"""
Runtime configuration for complio.

Settings are loaded from ``COMPLIO_*`` environment variables (or a local
``.env`` file) using Pydantic Settings, with defaults that work for local
development.  ``get_settings`` returns one cached instance.
"""

from __future__ import annotations

import logging
import sys
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="COMPLIO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    data_dir: str = "data"
    secret_key: str = "dev-key-change-in-production"
    autosave_delay_seconds: float = 2.0
    log_level: str = "INFO"

    # Used when the store holds no threshold row yet
    default_high_threshold: int = 60
    default_medium_threshold: int = 30

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single stream handler to the ``complio`` logger."""
    logger = logging.getLogger("complio")
    logger.setLevel(level)
    if not any(getattr(h, "_complio_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._complio_handler = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
