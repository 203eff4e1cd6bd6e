"""
Settings master configuration and global helpers.
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
from dotenv import find_dotenv, load_dotenv

from ..config_schema import CONFIG_SCHEMA
from ..errors import ConfigError
from .jobs import JobsConfig
from .logging import LoggingConfig
from .storage import StorageConfig


def _parse_scope_overrides(raw: str) -> dict[str, str]:
    """Parse ``kind=scope,kind=scope`` into a dict."""
    overrides: dict[str, str] = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        if "=" not in item:
            raise ConfigError(f"Invalid scope override entry: {item!r} (expected kind=scope)")
        kind, scope = (part.strip() for part in item.split("=", 1))
        overrides[kind] = scope
    return overrides


@dataclass
class Settings:
    """
    Master configuration for generation jobs.

    This aggregates all configuration sections into a single object
    that can be loaded from environment variables, files, or constructed
    programmatically.
    """

    jobs: JobsConfig = field(default_factory=JobsConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls, prefix: str = "GENJOBS_") -> Settings:
        """
        Load settings from environment variables.

        Example:
            GENJOBS_STORAGE_BACKEND=postgres
            GENJOBS_PG_DSN=postgresql://...
            GENJOBS_STUCK_THRESHOLD_SECONDS=360
            GENJOBS_SCOPE_OVERRIDES=cover_image=owner,icon=subject
        """
        settings = cls()

        try:
            # Sweeps
            if value := os.getenv(f"{prefix}STUCK_THRESHOLD_SECONDS"):
                settings.jobs.stuck_threshold_seconds = float(value)
            if value := os.getenv(f"{prefix}RETENTION_SECONDS"):
                settings.jobs.retention_seconds = float(value)
            if value := os.getenv(f"{prefix}STUCK_SWEEP_INTERVAL_SECONDS"):
                settings.jobs.stuck_sweep_interval_seconds = float(value)
            if value := os.getenv(f"{prefix}CLEANUP_SWEEP_INTERVAL_SECONDS"):
                settings.jobs.cleanup_sweep_interval_seconds = float(value)
            if value := os.getenv(f"{prefix}SWEEP_BATCH_SIZE"):
                settings.jobs.sweep_batch_size = int(value)
            if value := os.getenv(f"{prefix}SCOPE_OVERRIDES"):
                settings.jobs.scope_overrides = _parse_scope_overrides(value)  # type: ignore[assignment]

            # Storage
            if value := os.getenv(f"{prefix}STORAGE_BACKEND"):
                settings.storage.backend = value.lower()  # type: ignore[assignment]
            if value := os.getenv(f"{prefix}PG_DSN"):
                settings.storage.pg_dsn = value
            if value := os.getenv(f"{prefix}TABLE_NAME"):
                settings.storage.table_name = value
            if value := os.getenv(f"{prefix}REDIS_URL"):
                settings.storage.redis_url = value
            if value := os.getenv(f"{prefix}KEY_PREFIX"):
                settings.storage.key_prefix = value

            # Logging
            if value := os.getenv(f"{prefix}LOG_LEVEL"):
                settings.logging.level = value.upper()  # type: ignore[assignment]
            if value := os.getenv(f"{prefix}LOG_FORMAT"):
                settings.logging.format = value.lower()  # type: ignore[assignment]
        except ValueError as e:
            raise ConfigError(f"Invalid environment configuration: {e}", cause=e) from e

        settings.validate()
        return settings

    @classmethod
    def from_file(cls, path: str | Path) -> Settings:
        """
        Load settings from a YAML or TOML file.

        Args:
            path: Path to configuration file (.yaml, .yml, or .toml)
        """
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        suffix = path.suffix.lower()

        if suffix in (".yaml", ".yml"):
            import yaml

            with open(path) as f:
                data = yaml.safe_load(f) or {}
        elif suffix == ".toml":
            import tomllib

            with open(path, "rb") as f:
                data = tomllib.load(f)
        else:
            raise ValueError(f"Unsupported config file format: {suffix}")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        """
        Create Settings from a dictionary.

        The input is validated against the configuration schema
        before the Settings object is created.
        """
        try:
            jsonschema.validate(instance=data, schema=CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            raise ConfigError(f"Configuration validation failed: {e.message}", cause=e) from e

        try:
            return cls(
                jobs=JobsConfig(**data.get("jobs", {})),
                storage=StorageConfig(**data.get("storage", {})),
                logging=LoggingConfig(**data.get("logging", {})),
            )
        except ValueError as e:
            raise ConfigError(f"Configuration validation failed: {e}", cause=e) from e

    def validate(self) -> None:
        """Re-run section validation after in-place edits."""
        try:
            for section in (self.jobs, self.storage, self.logging):
                section.__post_init__()
        except ValueError as e:
            raise ConfigError(str(e), cause=e) from e

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary."""
        return dataclasses.asdict(self)


# =============================================================================
# Global Settings & Helpers
# =============================================================================

_global_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance, creating from the environment if needed."""
    global _global_settings
    if _global_settings is None:
        _global_settings = Settings.from_env()
    return _global_settings


def configure(settings: Settings | None = None, **kwargs) -> Settings:
    """
    Configure global settings.

    Args:
        settings: Settings object to use globally
        **kwargs: Override whole sections (jobs=..., storage=..., logging=...)
    """
    global _global_settings

    if settings is not None:
        _global_settings = settings
    elif _global_settings is None:
        _global_settings = Settings.from_env()

    for key, value in kwargs.items():
        if hasattr(_global_settings, key):
            setattr(_global_settings, key, value)

    return _global_settings


def load_env(path: str | None = None, *, override: bool = False) -> bool:
    """
    Load environment variables from a .env file.

    Returns:
        True if a .env file was found and loaded, False otherwise.
    """
    env_path = path or find_dotenv(usecwd=True)
    if not env_path:
        return False
    return load_dotenv(env_path, override=override)


__all__ = ["Settings", "get_settings", "configure", "load_env"]
