"""
Application configuration management.

Uses pydantic-settings for type-safe environment variable parsing.
All configuration is centralized here so the extract, transform and load
daemons read their defaults from one place instead of scattering
os.getenv() calls throughout the codebase.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with validation and type coercion.

    Values are loaded from DOLYSIS_* environment variables or a .env file.
    All fields have sensible defaults for local development; command line
    options override them per invocation.
    """

    model_config = SettingsConfigDict(
        env_prefix="DOLYSIS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Extract
    extract_root: str = "."
    extract_max_concurrency: int = 32
    extract_interval_seconds: Optional[int] = None
    extract_max_line_bytes: int = 1024 * 1024

    # Transform
    transform_bind: str = "0.0.0.0"
    transform_port: int = 49999
    transform_idle_timeout_seconds: float = 30.0
    transform_loader_queue_size: int = 1024

    # Load
    load_bind: str = "0.0.0.0"
    load_port: int = 50000

    # Wire
    max_frame_bytes: int = 8 * 1024 * 1024

    # Status API (disabled unless a port is set)
    status_host: str = "127.0.0.1"
    status_port: Optional[int] = None

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings singleton.

    Use this function to get settings instance throughout the application.
    The @lru_cache ensures we only parse environment once.
    """
    return Settings()


# Convenience export for direct import
settings = get_settings()
