"""
Application settings using Pydantic.

Provides environment-based configuration loading with TENANTOPS_ prefix.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Target environment (dev, staging, prod)
    environment: str = "dev"

    # Deployment log and restore points
    state_dir: Path = Path(".tenantops")
    backup_retention_days: int = 30

    # Directory service (token is issued by an external auth flow)
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    graph_token: str | None = None

    # HTTP client settings
    http_timeout: float = 30.0
    max_retries: int = 4
    retry_backoff_factor: float = 0.5
    retry_max_wait: float = 8.0

    # Apply concurrency within a wave (1 = strictly sequential)
    max_workers: int = 1

    # Break-glass designation
    break_glass_groups: list[str] = []
    break_glass_group_ids: list[str] = []

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "TENANTOPS_"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
