"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from schema_guard.config import load_db_config, DatabaseProfile, DatabaseConfig
"""

from schema_guard.config.loader import load_db_config
from schema_guard.config.models import (
    DatabaseConfig,
    DatabaseProfile,
    SafetyDefaults,
    ServerSettings,
    TrackingSettings,
)

__all__ = [
    "load_db_config",
    "DatabaseConfig",
    "DatabaseProfile",
    "SafetyDefaults",
    "ServerSettings",
    "TrackingSettings",
]
