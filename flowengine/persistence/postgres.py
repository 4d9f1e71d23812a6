"""PostgreSQL implementation of the execution repository."""

from __future__ import annotations

import json
from typing import Any, Iterable, Optional

import asyncpg

from ..errors import ConcurrencyConflict, ExecutionNotFoundError
from .models import Execution, ExecutionStatus, LogEntry
from .repository import ExecutionRepository, check_changes

_COLUMNS = (
    "id, flow_id, status, created_at, started_at, completed_at, context, "
    "execution_log, error_message, parent_execution_id, resume_context, run_id"
)
_JSON_FIELDS = {"context", "execution_log"}


def _encode_change(key: str, value: Any) -> Any:
    if key == "execution_log":
        return json.dumps([e.model_dump(mode="json") for e in value])
    if key == "context":
        return json.dumps(value)
    return value


def _loads(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


class PostgresExecutionRepository(ExecutionRepository):
    """Persist execution state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS flow_executions (
                id TEXT PRIMARY KEY,
                flow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                context JSONB NOT NULL DEFAULT '{}'::jsonb,
                execution_log JSONB NOT NULL DEFAULT '[]'::jsonb,
                error_message TEXT,
                parent_execution_id TEXT,
                resume_context JSONB,
                run_id TEXT
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_flow_executions_status ON flow_executions (status)"
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_flow_executions_parent "
            "ON flow_executions (parent_execution_id)"
        )

    @staticmethod
    def _to_execution(row: asyncpg.Record) -> Execution:
        resume = _loads(row["resume_context"])
        return Execution(
            id=row["id"],
            flow_id=row["flow_id"],
            status=ExecutionStatus(row["status"]),
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            context=_loads(row["context"]) or {},
            execution_log=_loads(row["execution_log"]) or [],
            error_message=row["error_message"],
            parent_execution_id=row["parent_execution_id"],
            resume_context=resume,
            run_id=row["run_id"],
        )

    # ------------------------------------------------------------------
    async def create_execution(self, execution: Execution) -> Execution:
        conn = await self._connect()
        try:
            await conn.execute(
                f"""
                INSERT INTO flow_executions ({_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8::jsonb, $9, $10, $11::jsonb, $12)
                """,
                execution.id,
                execution.flow_id,
                execution.status.value,
                execution.created_at,
                execution.started_at,
                execution.completed_at,
                json.dumps(execution.context),
                _encode_change("execution_log", execution.execution_log),
                execution.error_message,
                execution.parent_execution_id,
                json.dumps(execution.resume_context) if execution.resume_context is not None else None,
                execution.run_id,
            )
        finally:
            await conn.close()
        return execution

    async def get_execution(self, execution_id: str) -> Execution | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM flow_executions WHERE id = $1", execution_id
            )
        finally:
            await conn.close()
        return self._to_execution(row) if row else None

    async def list_executions(
        self,
        statuses: Optional[Iterable[ExecutionStatus]] = None,
        flow_id: Optional[str] = None,
        parent_execution_id: Optional[str] = None,
    ) -> list[Execution]:
        clauses: list[str] = []
        params: list[Any] = []
        if statuses is not None:
            params.append([ExecutionStatus(s).value for s in statuses])
            clauses.append(f"status = ANY(${len(params)}::text[])")
        if flow_id is not None:
            params.append(flow_id)
            clauses.append(f"flow_id = ${len(params)}")
        if parent_execution_id is not None:
            params.append(parent_execution_id)
            clauses.append(f"parent_execution_id = ${len(params)}")

        query = f"SELECT {_COLUMNS} FROM flow_executions"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at"

        conn = await self._connect()
        try:
            rows = await conn.fetch(query, *params)
        finally:
            await conn.close()
        return [self._to_execution(r) for r in rows]

    async def compare_and_set_status(
        self,
        execution_id: str,
        expected: Iterable[ExecutionStatus],
        status: ExecutionStatus,
        *,
        expected_run_id: Optional[str] = None,
        **changes: Any,
    ) -> Execution:
        check_changes(changes)
        expected_values = [ExecutionStatus(s).value for s in expected]
        params: list[Any] = [status.value]
        assignments = ["status = $1"]
        for key, value in changes.items():
            params.append(_encode_change(key, value))
            cast = "::jsonb" if key in _JSON_FIELDS else ""
            assignments.append(f"{key} = ${len(params)}{cast}")
        params.extend([execution_id, expected_values])
        where = f"id = ${len(params) - 1} AND status = ANY(${len(params)}::text[])"
        if expected_run_id is not None:
            params.append(expected_run_id)
            where += f" AND run_id = ${len(params)}"

        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"""
                UPDATE flow_executions SET {', '.join(assignments)}
                WHERE {where}
                RETURNING {_COLUMNS}
                """,
                *params,
            )
            if row is None:
                current = await conn.fetchval(
                    "SELECT status FROM flow_executions WHERE id = $1", execution_id
                )
        finally:
            await conn.close()

        if row is None:
            if current is None:
                raise ExecutionNotFoundError(execution_id)
            raise ConcurrencyConflict(execution_id, expected_values, current)
        return self._to_execution(row)

    async def append_log(
        self,
        execution_id: str,
        entry: LogEntry,
        context: Optional[dict[str, Any]] = None,
        run_id: Optional[str] = None,
    ) -> bool:
        conn = await self._connect()
        try:
            result = await conn.execute(
                """
                UPDATE flow_executions
                SET execution_log = execution_log || jsonb_build_array($1::jsonb),
                    context = COALESCE($2::jsonb, context)
                WHERE id = $3 AND status = $4 AND ($5::text IS NULL OR run_id = $5)
                """,
                entry.model_dump_json(),
                json.dumps(context) if context is not None else None,
                execution_id,
                ExecutionStatus.RUNNING.value,
                run_id,
            )
        finally:
            await conn.close()
        return result.split()[-1] != "0"
