"""
Store selection from configuration.
"""

from __future__ import annotations

from ..config import Settings, StorageConfig
from ..errors import ConfigError
from ..jobs.store import InMemoryJobStore, JobStore
from ..logging import get_logger, redact_dsn


async def build_store(config: Settings | StorageConfig | None = None) -> JobStore:
    """Create the job store named by ``config.backend``.

    Postgres pools are opened here; call ``store.close()`` on shutdown.
    """
    if isinstance(config, Settings):
        config = config.storage
    config = config or StorageConfig()
    logger = get_logger()

    if config.backend == "memory":
        logger.info("Using in-memory job store")
        return InMemoryJobStore()

    if config.backend == "postgres":
        if not config.pg_dsn:
            raise ConfigError("storage.pg_dsn is required for the postgres backend")
        from .postgres import PostgresJobStore

        logger.info("Using Postgres job store", dsn=redact_dsn(config.pg_dsn), table=config.table_name)
        return await PostgresJobStore.connect(
            config.pg_dsn,
            config.table_name,
            min_size=config.pool_min_size,
            max_size=config.pool_max_size,
        )

    if config.backend == "redis":
        if not config.redis_url:
            raise ConfigError("storage.redis_url is required for the redis backend")
        from .redis import RedisJobStore

        logger.info("Using Redis job store", url=redact_dsn(config.redis_url), prefix=config.key_prefix)
        return RedisJobStore.from_url(
            config.redis_url,
            config.key_prefix,
            max_watch_retries=config.max_watch_retries,
        )

    raise ConfigError(f"Unknown storage backend: {config.backend}")


__all__ = ["build_store"]
