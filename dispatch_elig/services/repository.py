from __future__ import annotations

import json
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import date
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from dispatch_elig.core.config import get_settings
from dispatch_elig.eligibility.compiler import CompiledQuery
from dispatch_elig.eligibility.models import DispatchJobRecord, EligibilityFact, JobEligibilityConfig


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates integrity rules."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


class PostgresRepository:
    """Fact store plus the upstream reads the eligibility plugins depend on.

    The fact store half has no business logic: plugins decide what to write,
    this class only persists it.
    """

    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        command_timeout_seconds: float = 15.0,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.command_timeout_seconds = command_timeout_seconds
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def list_component_states(self) -> dict[str, bool]:
        pool = await self._get_pool()
        rows = await pool.fetch("select component_id, enabled from components")
        return {row["component_id"]: bool(row["enabled"]) for row in rows}

    @asynccontextmanager
    async def recompute_transaction(self, worker_id: str, category: str) -> AsyncIterator[asyncpg.Connection]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                # Serializes concurrent replaces of the same (worker, category) slice across processes.
                await conn.execute(
                    "select pg_advisory_xact_lock(hashtextextended($1, 0))",
                    f"dispatch_elig:{worker_id}:{category}",
                )
                yield conn

    async def delete_facts_by_worker_and_category(
        self,
        worker_id: str,
        category: str,
        *,
        conn: asyncpg.Connection | None = None,
    ) -> list[str]:
        executor = conn or await self._get_pool()
        try:
            rows = await executor.fetch(
                """
                delete from worker_dispatch_elig_denorm
                where worker_id = $1::uuid
                  and category = $2
                returning value
                """,
                worker_id,
                category,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError(f"invalid worker id: {worker_id}") from exc
        return [row["value"] for row in rows]

    async def create_facts(
        self,
        facts: Sequence[EligibilityFact],
        *,
        conn: asyncpg.Connection | None = None,
    ) -> int:
        if not facts:
            return 0
        executor = conn or await self._get_pool()
        try:
            inserted = await executor.fetchval(
                """
                with inserted as (
                  insert into worker_dispatch_elig_denorm (worker_id, category, value)
                  select worker_id::uuid, category, value
                  from unnest($1::text[], $2::text[], $3::text[]) as fact(worker_id, category, value)
                  on conflict (worker_id, category, value) do nothing
                  returning 1
                )
                select count(*) from inserted
                """,
                [fact.worker_id for fact in facts],
                [fact.category for fact in facts],
                [fact.value for fact in facts],
            )
        except pg_exc.ForeignKeyViolationError as exc:
            raise RepositoryConflictError("fact references an unknown worker") from exc
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError("invalid worker id in facts") from exc
        return int(inserted or 0)

    async def list_facts_by_worker(self, worker_id: str) -> list[EligibilityFact]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select worker_id::text as worker_id, category, value
                from worker_dispatch_elig_denorm
                where worker_id = $1::uuid
                order by category asc, value asc
                """,
                worker_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("worker not found") from exc
        return [self._fact_row_to_fact(row) for row in rows]

    async def list_fact_worker_ids(self, category: str) -> list[str]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select distinct worker_id::text as worker_id
            from worker_dispatch_elig_denorm
            where category = $1
            """,
            category,
        )
        return [row["worker_id"] for row in rows]

    async def delete_facts_by_category(self, category: str) -> int:
        pool = await self._get_pool()
        removed = await pool.fetchval(
            """
            with removed as (
              delete from worker_dispatch_elig_denorm
              where category = $1
              returning 1
            )
            select count(*) from removed
            """,
            category,
        )
        return int(removed or 0)

    async def list_worker_bans(self, worker_id: str, *, conn: asyncpg.Connection | None = None) -> list[dict[str, Any]]:
        executor = conn or await self._get_pool()
        rows = await executor.fetch(
            """
            select
              id::text as id,
              worker_id::text as worker_id,
              type,
              start_date,
              end_date
            from worker_bans
            where worker_id = $1::uuid
            """,
            worker_id,
        )
        return [dict(row) for row in rows]

    async def list_active_ban_worker_ids(self, *, ban_type: str, today: date) -> list[str]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select distinct worker_id::text as worker_id
            from worker_bans
            where type = $1
              and start_date::date <= $2::date
              and (end_date is null or end_date::date >= $2::date)
            """,
            ban_type,
            today,
        )
        return [row["worker_id"] for row in rows]

    async def list_worker_dnc(self, worker_id: str, *, conn: asyncpg.Connection | None = None) -> list[dict[str, Any]]:
        executor = conn or await self._get_pool()
        rows = await executor.fetch(
            """
            select
              id::text as id,
              worker_id::text as worker_id,
              employer_id::text as employer_id,
              type
            from worker_dispatch_dnc
            where worker_id = $1::uuid
            """,
            worker_id,
        )
        return [dict(row) for row in rows]

    async def list_dnc_worker_ids(self) -> list[str]:
        pool = await self._get_pool()
        rows = await pool.fetch("select distinct worker_id::text as worker_id from worker_dispatch_dnc")
        return [row["worker_id"] for row in rows]

    async def list_worker_holds(self, worker_id: str, *, conn: asyncpg.Connection | None = None) -> list[dict[str, Any]]:
        executor = conn or await self._get_pool()
        rows = await executor.fetch(
            """
            select
              id::text as id,
              worker_id::text as worker_id,
              employer_id::text as employer_id,
              hold_until
            from worker_dispatch_hfe
            where worker_id = $1::uuid
            """,
            worker_id,
        )
        return [dict(row) for row in rows]

    async def list_active_hold_worker_ids(self, *, today: date) -> list[str]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select distinct worker_id::text as worker_id
            from worker_dispatch_hfe
            where hold_until::date >= $1::date
            """,
            today,
        )
        return [row["worker_id"] for row in rows]

    async def get_worker_dispatch_status(
        self,
        worker_id: str,
        *,
        conn: asyncpg.Connection | None = None,
    ) -> str | None:
        executor = conn or await self._get_pool()
        value = await executor.fetchval(
            "select status from worker_dispatch_status where worker_id = $1::uuid",
            worker_id,
        )
        return self._coerce_text(value)

    async def list_unavailable_worker_ids(self) -> list[str]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select distinct worker_id::text as worker_id
            from worker_dispatch_status
            where status <> 'available'
            """
        )
        return [row["worker_id"] for row in rows]

    async def get_worker_status_id(self, worker_id: str, *, conn: asyncpg.Connection | None = None) -> str | None:
        executor = conn or await self._get_pool()
        value = await executor.fetchval(
            "select denorm_ws_id::text from workers where id = $1::uuid",
            worker_id,
        )
        return self._coerce_text(value)

    async def list_worker_ids_with_status(self) -> list[str]:
        pool = await self._get_pool()
        rows = await pool.fetch("select id::text as worker_id from workers where denorm_ws_id is not null")
        return [row["worker_id"] for row in rows]

    async def get_dispatch_job(self, job_id: str) -> DispatchJobRecord:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                select
                  j.id::text as id,
                  j.employer_id::text as employer_id,
                  j.job_type_id::text as job_type_id,
                  j.title,
                  jt.data -> 'eligibility' as eligibility
                from dispatch_jobs j
                left join options_dispatch_job_type jt on jt.id = j.job_type_id
                where j.id = $1::uuid
                """,
                job_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("dispatch job not found") from exc
        if not row:
            raise RepositoryNotFoundError("dispatch job not found")

        return DispatchJobRecord(
            id=row["id"],
            employer_id=self._coerce_text(row["employer_id"]),
            job_type_id=self._coerce_text(row["job_type_id"]),
            title=self._coerce_text(row["title"]),
            eligibility=JobEligibilityConfig.from_json(self._coerce_json_dict(row["eligibility"])),
        )

    async def fetch_eligible_workers(self, query: CompiledQuery) -> tuple[list[dict[str, Any]], int]:
        pool = await self._get_pool()
        rows = await pool.fetch(query.sql, *query.params)
        total = int(rows[0]["total"]) if rows else 0
        return [self._eligible_worker_row_to_dict(row) for row in rows], total

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("DE_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=self.command_timeout_seconds,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _fact_row_to_fact(row: asyncpg.Record) -> EligibilityFact:
        return EligibilityFact(worker_id=row["worker_id"], category=row["category"], value=row["value"])

    @staticmethod
    def _eligible_worker_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "display_name": row["display_name"],
            "work_status_id": row["work_status_id"],
        }

    @staticmethod
    def _coerce_text(value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @staticmethod
    def _coerce_json_dict(value: Any) -> dict[str, Any]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return {}
        return value if isinstance(value, dict) else {}


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        command_timeout_seconds=settings.database_command_timeout_seconds,
    )
