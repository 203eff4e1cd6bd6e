"""
Persistent job store back ends.

- PostgresJobStore: durable store on asyncpg
- RedisJobStore: fast store on redis.asyncio
- build_store: pick a back end from configuration
"""

from .factory import build_store
from .postgres import PostgresJobStore
from .redis import RedisJobStore

__all__ = [
    "PostgresJobStore",
    "RedisJobStore",
    "build_store",
]
