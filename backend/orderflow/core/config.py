"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database - relative path for local runs, override via env in deployment
    database_url: str = "sqlite:///./data/orderflow.db"

    # Seconds the driver may wait for a connection or a row lock before the
    # unit of work gives up with StorageUnavailable
    storage_timeout_seconds: int = 10

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # Kitchen
    default_prep_minutes: int = 6
    min_prep_minutes: int = 1
    max_prep_minutes: int = 120

    # Kitchen ticket printer
    printer_mode: Literal["file", "network", "disabled"] = "file"
    printer_spool_dir: str = "./data/tickets"
    printer_host: Optional[str] = None
    printer_port: int = 9100
    printer_timeout_seconds: float = 5.0
    ticket_width_chars: int = 42  # POS-80

    # Reconciliation
    reconciliation_batch_size: int = 200

    @field_validator("reconciliation_batch_size")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("reconciliation_batch_size must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_printer_settings(self) -> "Settings":
        """Network printing needs a host; prep time bounds must be ordered."""
        if self.printer_mode == "network" and not self.printer_host:
            raise ValueError("PRINTER_HOST is required when PRINTER_MODE=network")
        if self.min_prep_minutes > self.max_prep_minutes:
            raise ValueError("MIN_PREP_MINUTES must not exceed MAX_PREP_MINUTES")
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
