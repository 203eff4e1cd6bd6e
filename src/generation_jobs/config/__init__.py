"""
Configuration system for generation jobs.

This package provides typed configuration classes with:
- Dataclass-based settings with validation
- Environment variable loading
- YAML/TOML file loading validated against a JSON schema
"""

from .base import LogFormat, LogLevel, ScopeType, StorageBackendType
from .jobs import JobsConfig
from .logging import LoggingConfig
from .settings import Settings, configure, get_settings, load_env
from .storage import StorageConfig

__all__ = [
    # Types
    "StorageBackendType",
    "ScopeType",
    "LogLevel",
    "LogFormat",
    # Sections
    "JobsConfig",
    "StorageConfig",
    "LoggingConfig",
    # Master config
    "Settings",
    # Global functions
    "get_settings",
    "configure",
    "load_env",
]
