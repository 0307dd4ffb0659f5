"""Runtime settings, read from the environment and an optional .env file."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # --- Storage ---
    DATABASE_URL: str = "sqlite:///./data/firealarm.db"

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # --- Identity ---
    # Header set by the upstream session layer with the authenticated user id
    IDENTITY_HEADER: str = "X-User-Id"

    # --- Incidents ---
    EXPORT_TIMEZONE: str = "Asia/Manila"
    PENDING_LIMIT_DEFAULT: int = 100

    # --- Chat ---
    MESSAGE_PAGE_SIZE: int = 50

    # --- Server ---
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    model_config = SettingsConfigDict(
        env_file=os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
