"""Tests for store selection."""

import pytest

from generation_jobs.config import Settings, StorageConfig
from generation_jobs.errors import ConfigError
from generation_jobs.jobs import InMemoryJobStore
from generation_jobs.storage import RedisJobStore, build_store


class TestBuildStore:
    @pytest.mark.asyncio
    async def test_defaults_to_memory(self):
        assert isinstance(await build_store(), InMemoryJobStore)

    @pytest.mark.asyncio
    async def test_accepts_settings(self):
        assert isinstance(await build_store(Settings()), InMemoryJobStore)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("backend,missing", [("postgres", "pg_dsn"), ("redis", "redis_url")])
    async def test_backend_requires_location(self, backend, missing):
        with pytest.raises(ConfigError, match=missing):
            await build_store(StorageConfig(backend=backend))

    @pytest.mark.asyncio
    async def test_redis_client_is_lazy(self):
        # redis.asyncio connects on first command, so no server is needed here.
        store = await build_store(StorageConfig(backend="redis", redis_url="redis://localhost:6399/0"))

        assert isinstance(store, RedisJobStore)
        assert store._prefix == "genjobs"
        await store.close()
