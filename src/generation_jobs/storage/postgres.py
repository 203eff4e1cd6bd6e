"""
PostgreSQL job store.

One table holds every job kind. Progress counters are plain columns; the
payload, item collection, result, partial failures and metadata are JSONB.

Atomicity:
- ``mutate`` reads the row with ``SELECT ... FOR UPDATE`` inside a
  transaction, so concurrent increments on one job serialize on the row lock
- ``create_superseding`` takes a transaction-scoped advisory lock keyed by
  the supersession scope, so two creations for the same scope cannot both
  see "no active job" and insert side by side
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import asyncpg

from ..errors import DuplicateJobError, JobNotFoundError, StoreError
from ..jobs.store import JobFilter, JobStore, Mutation
from ..jobs.types import ItemFailure, JobKind, JobRecord, JobResult, JobStatus
from ..logging import StructuredLogger, get_logger, redact_dsn


def _sanitize_table_name(name: str) -> str:
    """Ensure the table name is safe for SQL interpolation."""
    if not name:
        raise ValueError("table_name cannot be empty")
    if not re.fullmatch(r"[a-zA-Z0-9_]+", name):
        raise ValueError(f"Invalid table name: {name!r}")
    return name


def _to_timestamptz(value: Any) -> Any:
    """Convert epoch seconds into timezone-aware datetimes for TIMESTAMPTZ columns."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    return value


def _to_epoch(value: Any) -> float | None:
    if value is None:
        return None
    if hasattr(value, "timestamp"):
        return value.timestamp()
    return float(value)


def _json_load(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


COLUMNS = (
    "job_id",
    "owner_id",
    "subject_id",
    "kind",
    "status",
    "progress_percentage",
    "completed_count",
    "failed_count",
    "total_count",
    "current_step",
    "payload",
    "items",
    "result",
    "partial_failures",
    "error",
    "error_code",
    "created_at",
    "updated_at",
    "completed_at",
    "metadata",
    "schema_version",
)


class PostgresJobStore(JobStore):
    """PostgreSQL implementation of JobStore.

    Table schema:
    - job_id (TEXT PRIMARY KEY)
    - owner_id, subject_id, kind, status (TEXT)
    - progress_percentage (DOUBLE PRECISION)
    - completed_count, failed_count, total_count (INTEGER)
    - current_step, error, error_code (TEXT)
    - payload, items, result, partial_failures, metadata (JSONB)
    - created_at, updated_at, completed_at (TIMESTAMPTZ)
    """

    TABLE_NAME = "generation_jobs"

    def __init__(
        self,
        pool: Any,  # asyncpg.Pool
        table_name: str | None = None,
        *,
        owns_pool: bool = False,
        logger: StructuredLogger | None = None,
    ):
        self._pool = pool
        self._table = _sanitize_table_name(table_name or self.TABLE_NAME)
        self._owns_pool = owns_pool
        self._logger = logger or get_logger()
        self._ensured = False
        self._lock = asyncio.Lock()

    @classmethod
    async def connect(
        cls,
        dsn: str,
        table_name: str | None = None,
        *,
        min_size: int = 1,
        max_size: int = 10,
    ) -> PostgresJobStore:
        """Create a pool for ``dsn`` and a store that closes it on ``close()``."""
        try:
            pool = await asyncpg.create_pool(dsn=dsn, min_size=min_size, max_size=max_size)
        except (OSError, asyncpg.PostgresError) as e:
            raise StoreError(f"Could not connect to Postgres at {redact_dsn(dsn)}", cause=e) from e
        return cls(pool, table_name, owns_pool=True)

    async def close(self) -> None:
        if self._owns_pool and self._pool is not None:
            await self._pool.close()

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[Any]:
        """Acquire a connection, mapping driver failures onto StoreError."""
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except asyncpg.UniqueViolationError:
            raise
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            self._logger.log_error(e, "Postgres job store failure", table=self._table)
            raise StoreError(f"Postgres job store failure: {e}", cause=e) from e

    async def _ensure_table(self) -> None:
        """Create the jobs table if it doesn't exist."""
        async with self._lock:
            if self._ensured:
                return

            ddl = f'''
            CREATE TABLE IF NOT EXISTS "{self._table}" (
                job_id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                subject_id TEXT,
                kind TEXT NOT NULL,
                status TEXT NOT NULL,
                progress_percentage DOUBLE PRECISION NOT NULL DEFAULT 0,
                completed_count INTEGER NOT NULL DEFAULT 0,
                failed_count INTEGER NOT NULL DEFAULT 0,
                total_count INTEGER,
                current_step TEXT,
                payload JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                items JSONB,
                result JSONB,
                partial_failures JSONB NOT NULL DEFAULT '[]'::jsonb,
                error TEXT,
                error_code TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                completed_at TIMESTAMPTZ,
                metadata JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                schema_version INTEGER NOT NULL DEFAULT 1
            );
            CREATE INDEX IF NOT EXISTS "{self._table}_owner_idx" ON "{self._table}" (owner_id, kind, created_at);
            CREATE INDEX IF NOT EXISTS "{self._table}_subject_idx" ON "{self._table}" (subject_id, kind, created_at);
            CREATE INDEX IF NOT EXISTS "{self._table}_status_idx" ON "{self._table}" (status, created_at);
            CREATE INDEX IF NOT EXISTS "{self._table}_created_at_idx" ON "{self._table}" (created_at, job_id)
            '''

            async with self._connection() as conn:
                for stmt in [s.strip() for s in ddl.split(";") if s.strip()]:
                    await conn.execute(stmt)

            self._ensured = True

    def _job_to_row(self, job: JobRecord) -> dict[str, Any]:
        """Convert JobRecord to database row."""
        return {
            "job_id": job.job_id,
            "owner_id": job.owner_id,
            "subject_id": job.subject_id,
            "kind": job.kind.value,
            "status": job.status.value,
            "progress_percentage": float(job.progress_percentage),
            "completed_count": job.completed_count,
            "failed_count": job.failed_count,
            "total_count": job.total_count,
            "current_step": job.current_step,
            "payload": json.dumps(job.payload),
            "items": json.dumps(job.items) if job.items is not None else None,
            "result": json.dumps(job.result.to_dict()) if job.result else None,
            "partial_failures": json.dumps([f.to_dict() for f in job.partial_failures]),
            "error": job.error,
            "error_code": job.error_code,
            "created_at": _to_timestamptz(job.created_at),
            "updated_at": _to_timestamptz(job.updated_at),
            "completed_at": _to_timestamptz(job.completed_at),
            "metadata": json.dumps(job.metadata),
            "schema_version": job.schema_version,
        }

    def _row_to_job(self, row: Any) -> JobRecord:
        """Convert database row to JobRecord."""
        result = _json_load(row["result"], None)
        items = _json_load(row["items"], None)
        return JobRecord(
            job_id=row["job_id"],
            owner_id=row["owner_id"],
            subject_id=row["subject_id"],
            kind=JobKind(row["kind"]),
            status=JobStatus(row["status"]),
            progress_percentage=float(row["progress_percentage"] or 0.0),
            completed_count=row["completed_count"] or 0,
            failed_count=row["failed_count"] or 0,
            total_count=row["total_count"],
            current_step=row["current_step"],
            payload=_json_load(row["payload"], {}),
            items=items,
            result=JobResult.from_dict(result) if result else None,
            partial_failures=[ItemFailure.from_dict(f) for f in _json_load(row["partial_failures"], [])],
            error=row["error"],
            error_code=row["error_code"],
            created_at=_to_epoch(row["created_at"]),
            updated_at=_to_epoch(row["updated_at"]),
            completed_at=_to_epoch(row["completed_at"]),
            metadata=_json_load(row["metadata"], {}),
            schema_version=row["schema_version"] or 1,
        )

    def _where(self, filter: JobFilter | None, start: int = 1) -> tuple[str, list[Any]]:
        """Build a WHERE clause (possibly empty) and its parameters."""
        if filter is None:
            return "", []

        conditions: list[str] = []
        params: list[Any] = []

        def add(condition: str, value: Any) -> None:
            params.append(value)
            conditions.append(condition.format(p=f"${start + len(params) - 1}"))

        if filter.owner_id:
            add("owner_id = {p}", filter.owner_id)
        if filter.subject_id:
            add("subject_id = {p}", filter.subject_id)
        if filter.kinds is not None:
            add("kind = ANY({p}::text[])", sorted(k.value for k in filter.kinds))
        if filter.statuses is not None:
            add("status = ANY({p}::text[])", sorted(s.value for s in filter.statuses))
        if filter.created_before is not None:
            add("created_at < {p}", _to_timestamptz(filter.created_before))
        if filter.created_after is not None:
            add("created_at > {p}", _to_timestamptz(filter.created_after))

        if not conditions:
            return "", params
        return " WHERE " + " AND ".join(conditions), params

    async def create(self, job: JobRecord) -> JobRecord:
        await self._ensure_table()
        async with self._connection() as conn:
            await self._insert(conn, job)
        return job

    async def _insert(self, conn: Any, job: JobRecord) -> None:
        row = self._job_to_row(job)
        placeholders = [f"${i + 1}" for i in range(len(COLUMNS))]
        q = f'''
        INSERT INTO "{self._table}" ({", ".join(COLUMNS)})
        VALUES ({", ".join(placeholders)})
        '''
        try:
            await conn.execute(q, *(row[col] for col in COLUMNS))
        except asyncpg.UniqueViolationError as e:
            raise DuplicateJobError(job.job_id, cause=e) from e

    async def _write(self, conn: Any, job: JobRecord) -> str:
        row = self._job_to_row(job)
        update_cols = [col for col in COLUMNS if col != "job_id"]
        set_clause = ", ".join(f"{col} = ${i + 2}" for i, col in enumerate(update_cols))
        q = f'UPDATE "{self._table}" SET {set_clause} WHERE job_id = $1'
        return await conn.execute(q, job.job_id, *(row[col] for col in update_cols))

    async def get(self, job_id: str) -> JobRecord | None:
        await self._ensure_table()
        q = f'SELECT * FROM "{self._table}" WHERE job_id = $1'
        async with self._connection() as conn:
            row = await conn.fetchrow(q, job_id)
        return self._row_to_job(row) if row is not None else None

    async def update(self, job: JobRecord) -> JobRecord:
        await self._ensure_table()
        async with self._connection() as conn:
            result = await self._write(conn, job)
        if result == "UPDATE 0":
            raise JobNotFoundError(job_id=job.job_id)
        return job

    async def delete(self, job_id: str) -> bool:
        await self._ensure_table()
        q = f'DELETE FROM "{self._table}" WHERE job_id = $1'
        async with self._connection() as conn:
            result = await conn.execute(q, job_id)
        return result != "DELETE 0"

    async def list(self, filter: JobFilter | None = None) -> list[JobRecord]:
        await self._ensure_table()
        filter = filter or JobFilter(limit=None)
        where, params = self._where(filter)

        order_dir = "DESC" if filter.order_desc else "ASC"
        q = f'SELECT * FROM "{self._table}"{where} ORDER BY {filter.order_by} {order_dir}, job_id {order_dir}'
        if filter.limit is not None:
            params.append(filter.limit)
            q += f" LIMIT ${len(params)}"
        if filter.offset:
            params.append(filter.offset)
            q += f" OFFSET ${len(params)}"

        async with self._connection() as conn:
            rows = await conn.fetch(q, *params)
        return [self._row_to_job(row) for row in rows]

    async def count(self, filter: JobFilter | None = None) -> int:
        await self._ensure_table()
        where, params = self._where(filter)
        q = f'SELECT COUNT(*) FROM "{self._table}"{where}'
        async with self._connection() as conn:
            return await conn.fetchval(q, *params)

    async def iter_ids(
        self,
        filter: JobFilter | None = None,
        *,
        batch_size: int = 100,
    ) -> AsyncIterator[str]:
        """Keyset-paginate over (created_at, job_id) so each batch is a short query."""
        await self._ensure_table()
        where, params = self._where(filter)
        cursor: tuple[Any, str] | None = None

        while True:
            batch_params = list(params)
            q = f'SELECT job_id, created_at FROM "{self._table}"{where}'
            if cursor is not None:
                batch_params.extend(cursor)
                keyset = f"(created_at, job_id) > (${len(batch_params) - 1}, ${len(batch_params)})"
                q += (" AND " if where else " WHERE ") + keyset
            batch_params.append(batch_size)
            q += f" ORDER BY created_at ASC, job_id ASC LIMIT ${len(batch_params)}"

            async with self._connection() as conn:
                rows = await conn.fetch(q, *batch_params)
            for row in rows:
                yield row["job_id"]
            if len(rows) < batch_size:
                return
            cursor = (rows[-1]["created_at"], rows[-1]["job_id"])

    async def mutate(self, job_id: str, fn: Mutation) -> JobRecord:
        await self._ensure_table()
        q = f'SELECT * FROM "{self._table}" WHERE job_id = $1 FOR UPDATE'
        async with self._connection() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(q, job_id)
                if row is None:
                    raise JobNotFoundError(job_id=job_id)
                current = self._row_to_job(row)
                updated = fn(current)
                if updated is None:
                    return current
                await self._write(conn, updated)
        return updated

    async def create_superseding(
        self,
        job: JobRecord,
        scope: JobFilter,
        supersede: Callable[[JobRecord], JobRecord],
    ) -> tuple[JobRecord, list[JobRecord]]:
        await self._ensure_table()
        where, params = self._where(scope, start=1)
        q = f'SELECT * FROM "{self._table}"{where} ORDER BY created_at ASC FOR UPDATE'

        superseded: list[JobRecord] = []
        async with self._connection() as conn:
            async with conn.transaction():
                await conn.execute(
                    "SELECT pg_advisory_xact_lock(hashtext($1))",
                    f"{self._table}:{scope.scope_key()}",
                )
                for row in await conn.fetch(q, *params):
                    retired = supersede(self._row_to_job(row))
                    await self._write(conn, retired)
                    superseded.append(retired)
                await self._insert(conn, job)
        return job, superseded


__all__ = ["PostgresJobStore"]
