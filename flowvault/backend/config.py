"""
backend/config.py

Application configuration via Pydantic Settings.
All values can be overridden with environment variables or a .env file.

Quick start — create a .env file in your project root:
    NFCAPD_DIRECTORY=/var/cache/nfdump
    SCAN_INTERVAL_SECONDS=300
    DB_PATH=data/flows.db
"""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Ingestion
    NFCAPD_DIRECTORY: str = "/var/cache/nfdump"
    NFCAPD_FILE_PREFIX: str = "nfcapd."
    SCAN_INTERVAL_SECONDS: int = 300
    INGEST_ENABLED: bool = True

    # External nfdump tool
    NFDUMP_BINARY: str = "nfdump"
    NFDUMP_TIMEOUT_SECONDS: int = 120

    # Storage
    DB_PATH: str = "data/flows.db"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Search pagination
    SEARCH_DEFAULT_PAGE_SIZE: int = 25
    SEARCH_MAX_PAGE_SIZE: int = 500

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator(
        "SCAN_INTERVAL_SECONDS",
        "NFDUMP_TIMEOUT_SECONDS",
        "SEARCH_DEFAULT_PAGE_SIZE",
        "SEARCH_MAX_PAGE_SIZE",
    )
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("NFCAPD_FILE_PREFIX")
    @classmethod
    def prefix_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("file prefix must not be empty")
        return v


settings = Settings()
