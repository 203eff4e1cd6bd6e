"""
Job store configuration.
"""

from __future__ import annotations

from dataclasses import dataclass

from .base import StorageBackendType


@dataclass
class StorageConfig:
    """Where job records live."""

    backend: StorageBackendType = "memory"

    # Postgres
    pg_dsn: str | None = None
    table_name: str = "generation_jobs"
    pool_min_size: int = 1
    pool_max_size: int = 10

    # Redis
    redis_url: str | None = None
    key_prefix: str = "genjobs"
    max_watch_retries: int = 20

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.backend not in ("memory", "postgres", "redis"):
            raise ValueError(f"Invalid storage backend: {self.backend}")
        if self.pool_min_size < 0:
            raise ValueError("pool_min_size cannot be negative")
        if self.pool_max_size < max(1, self.pool_min_size):
            raise ValueError("pool_max_size must be >= pool_min_size and positive")
        if self.max_watch_retries < 1:
            raise ValueError("max_watch_retries must be positive")
        if self.redis_url and not self.redis_url.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("redis_url must be a redis://, rediss:// or unix:// URL")


__all__ = ["StorageConfig"]
