from __future__ import annotations

import datetime as dt
from decimal import Decimal
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="LB_", case_sensitive=False)
    """Application runtime configuration."""

    app_name: str = "Fahrtenbuch"
    environment: str = "development"
    host: str = "127.0.0.1"
    port: int = 8080
    log_level: str = "INFO"

    storage_backend: str = "sqlite"
    sqlite_path: Path = Path("./data/logbook.db")
    json_dir: Path = Path("./data/state")

    export_dir: Path = Path("./data/exports")

    locale: str = "de-DE"
    timezone: str = "Europe/Berlin"

    private_price: Decimal = Decimal("251.00")
    start_date: dt.date = dt.date(2025, 1, 1)

    @field_validator("storage_backend", mode="before")
    @classmethod
    def _normalize_backend(cls, value: str) -> str:
        return str(value).strip().lower()

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return str(value).strip().upper()


settings = Settings()

# Ensure essential directories exist
settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
settings.export_dir.mkdir(parents=True, exist_ok=True)
settings.json_dir.mkdir(parents=True, exist_ok=True)
