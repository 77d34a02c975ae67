"""
tenantops configuration.

Pydantic-based settings read from TENANTOPS_* environment variables
and an optional .env file.
"""

from tenantops.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
