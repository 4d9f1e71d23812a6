"""In-memory implementation of the execution repository."""

from __future__ import annotations

import copy
from typing import Any, Dict, Iterable, Optional

from ..errors import ConcurrencyConflict, ExecutionNotFoundError
from .models import Execution, ExecutionStatus, LogEntry
from .repository import ExecutionRepository, check_changes


class InMemoryExecutionRepository(ExecutionRepository):
    """Store execution state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._executions: Dict[str, Execution] = {}

    # ------------------------------------------------------------------
    async def create_execution(self, execution: Execution) -> Execution:
        if execution.id in self._executions:
            raise ValueError(f"Execution already exists: {execution.id}")
        self._executions[execution.id] = execution.model_copy(deep=True)
        return execution.model_copy(deep=True)

    async def get_execution(self, execution_id: str) -> Execution | None:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def list_executions(
        self,
        statuses: Optional[Iterable[ExecutionStatus]] = None,
        flow_id: Optional[str] = None,
        parent_execution_id: Optional[str] = None,
    ) -> list[Execution]:
        wanted = set(statuses) if statuses is not None else None
        found = [
            ex.model_copy(deep=True)
            for ex in self._executions.values()
            if (wanted is None or ex.status in wanted)
            and (flow_id is None or ex.flow_id == flow_id)
            and (parent_execution_id is None or ex.parent_execution_id == parent_execution_id)
        ]
        return sorted(found, key=lambda ex: ex.created_at)

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
        expected = set(expected)
        execution = self._executions.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        if execution.status not in expected or (
            expected_run_id is not None and execution.run_id != expected_run_id
        ):
            raise ConcurrencyConflict(
                execution_id, [s.value for s in expected], execution.status.value
            )
        updated = execution.model_copy(update={"status": status, **copy.deepcopy(changes)}, deep=True)
        self._executions[execution_id] = updated
        return updated.model_copy(deep=True)

    async def append_log(
        self,
        execution_id: str,
        entry: LogEntry,
        context: Optional[dict[str, Any]] = None,
        run_id: Optional[str] = None,
    ) -> bool:
        execution = self._executions.get(execution_id)
        if execution is None or execution.status is not ExecutionStatus.RUNNING:
            return False
        if run_id is not None and execution.run_id != run_id:
            return False
        execution.execution_log.append(entry.model_copy(deep=True))
        if context is not None:
            execution.context = copy.deepcopy(context)
        return True
