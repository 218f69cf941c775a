"""
Configuration for the arcade card service.

Values come from environment variables (or a local ``.env`` file) through
pydantic-settings. ``DATABASE_URL`` is kept as a module constant because the
database module builds its default engine from it at import time.
"""
from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    database_url: str = Field("sqlite:///./arcade.db", alias="DATABASE_URL")
    db_echo: bool = Field(False, alias="DB_ECHO")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], alias="CORS_ORIGINS")

    # Ledger behaviour
    history_limit: int = Field(200, alias="HISTORY_LIMIT", ge=1)
    enforce_catalog_prices: bool = Field(False, alias="ENFORCE_CATALOG_PRICES")

    # Development helpers
    allow_reset: bool = Field(True, alias="ALLOW_RESET")
    seed_demo_card: bool = Field(True, alias="SEED_DEMO_CARD")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


DATABASE_URL = get_settings().database_url

__all__ = ["Settings", "get_settings", "DATABASE_URL"]
