"""SQLite implementation of the execution repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from ..errors import ConcurrencyConflict, ExecutionNotFoundError
from .models import Execution, ExecutionStatus, LogEntry
from .repository import ExecutionRepository, check_changes

_COLUMNS = (
    "id, flow_id, status, created_at, started_at, completed_at, context, "
    "execution_log, error_message, parent_execution_id, resume_context, run_id"
)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _encode_change(key: str, value: Any) -> Any:
    if key in ("created_at", "started_at", "completed_at"):
        return _ts(value)
    if key == "execution_log":
        return json.dumps([e.model_dump(mode="json") for e in value])
    if key == "context":
        return json.dumps(value)
    return value


class SQLiteExecutionRepository(ExecutionRepository):
    """Persist execution state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS flow_executions (
                id TEXT PRIMARY KEY,
                flow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT,
                context TEXT NOT NULL DEFAULT '{}',
                execution_log TEXT NOT NULL DEFAULT '[]',
                error_message TEXT,
                parent_execution_id TEXT,
                resume_context TEXT,
                run_id TEXT
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_flow_executions_status ON flow_executions (status)"
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_flow_executions_parent "
            "ON flow_executions (parent_execution_id)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    @staticmethod
    def _to_execution(row: sqlite3.Row) -> Execution:
        return Execution(
            id=row["id"],
            flow_id=row["flow_id"],
            status=ExecutionStatus(row["status"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            started_at=datetime.fromisoformat(row["started_at"]) if row["started_at"] else None,
            completed_at=(
                datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None
            ),
            context=json.loads(row["context"]) if row["context"] else {},
            execution_log=json.loads(row["execution_log"]) if row["execution_log"] else [],
            error_message=row["error_message"],
            parent_execution_id=row["parent_execution_id"],
            resume_context=json.loads(row["resume_context"]) if row["resume_context"] else None,
            run_id=row["run_id"],
        )

    # ------------------------------------------------------------------
    # Repository API
    async def create_execution(self, execution: Execution) -> Execution:
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO flow_executions ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            execution.id,
            execution.flow_id,
            execution.status.value,
            _ts(execution.created_at),
            _ts(execution.started_at),
            _ts(execution.completed_at),
            json.dumps(execution.context),
            _encode_change("execution_log", execution.execution_log),
            execution.error_message,
            execution.parent_execution_id,
            json.dumps(execution.resume_context) if execution.resume_context is not None else None,
            execution.run_id,
        )
        return execution

    async def get_execution(self, execution_id: str) -> Execution | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_COLUMNS} FROM flow_executions WHERE id = ?",
            execution_id,
        )
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
            values = [ExecutionStatus(s).value for s in statuses]
            if not values:
                return []
            clauses.append(f"status IN ({', '.join('?' for _ in values)})")
            params.extend(values)
        if flow_id is not None:
            clauses.append("flow_id = ?")
            params.append(flow_id)
        if parent_execution_id is not None:
            clauses.append("parent_execution_id = ?")
            params.append(parent_execution_id)

        query = f"SELECT {_COLUMNS} FROM flow_executions"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [self._to_execution(row) for row in rows]

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
        assignments = ["status = ?"] + [f"{key} = ?" for key in changes]
        params = [status.value] + [_encode_change(k, v) for k, v in changes.items()]
        placeholders = ", ".join("?" for _ in expected_values)
        where = f"id = ? AND status IN ({placeholders})"
        where_params: list[Any] = [execution_id, *expected_values]
        if expected_run_id is not None:
            where += " AND run_id = ?"
            where_params.append(expected_run_id)

        updated = await asyncio.to_thread(
            self._execute,
            f"UPDATE flow_executions SET {', '.join(assignments)} WHERE {where}",
            *params,
            *where_params,
        )
        current = await self.get_execution(execution_id)
        if current is None:
            raise ExecutionNotFoundError(execution_id)
        if updated == 0:
            raise ConcurrencyConflict(execution_id, expected_values, current.status.value)
        return current

    async def append_log(
        self,
        execution_id: str,
        entry: LogEntry,
        context: Optional[dict[str, Any]] = None,
        run_id: Optional[str] = None,
    ) -> bool:
        updated = await asyncio.to_thread(
            self._execute,
            """
            UPDATE flow_executions
            SET execution_log = json_insert(execution_log, '$[#]', json(?)),
                context = COALESCE(?, context)
            WHERE id = ? AND status = ? AND (? IS NULL OR run_id = ?)
            """,
            entry.model_dump_json(),
            json.dumps(context) if context is not None else None,
            execution_id,
            ExecutionStatus.RUNNING.value,
            run_id,
            run_id,
        )
        return updated > 0

    def close(self) -> None:
        self._conn.close()
