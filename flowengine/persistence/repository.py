"""Repository abstraction for execution state persistence."""

from __future__ import annotations

from typing import Any, Iterable, Optional, Protocol

from .models import Execution, ExecutionStatus, LogEntry

# Columns a compare-and-set transition may change alongside ``status``.
UPDATABLE_FIELDS = frozenset(
    {
        "created_at",
        "started_at",
        "completed_at",
        "error_message",
        "context",
        "execution_log",
        "run_id",
    }
)


def check_changes(changes: dict[str, Any]) -> None:
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update execution fields: {sorted(unknown)}")


class ExecutionRepository(Protocol):
    """Protocol for execution state persistence backends.

    Status changes go through :meth:`compare_and_set_status` only, and log
    entries are appended with :meth:`append_log`; neither overwrites a whole
    record, so the scheduler, user cancellation and the supervisor can act
    on the same execution concurrently.
    """

    async def create_execution(self, execution: Execution) -> Execution:
        """Persist a new execution record."""

    async def get_execution(self, execution_id: str) -> Execution | None:
        """Retrieve an execution by id, including its log."""

    async def list_executions(
        self,
        statuses: Optional[Iterable[ExecutionStatus]] = None,
        flow_id: Optional[str] = None,
        parent_execution_id: Optional[str] = None,
    ) -> list[Execution]:
        """Return executions matching every given filter, oldest first."""

    async def compare_and_set_status(
        self,
        execution_id: str,
        expected: Iterable[ExecutionStatus],
        status: ExecutionStatus,
        *,
        expected_run_id: Optional[str] = None,
        **changes: Any,
    ) -> Execution:
        """Move ``execution_id`` to ``status`` if its current status is in ``expected``.

        When ``expected_run_id`` is given the execution must also still be
        owned by that run.

        Raises:
            ExecutionNotFoundError: If no such execution exists.
            ConcurrencyConflict: If the current status is not in ``expected``
                or another run owns the execution.
        """

    async def append_log(
        self,
        execution_id: str,
        entry: LogEntry,
        context: Optional[dict[str, Any]] = None,
        run_id: Optional[str] = None,
    ) -> bool:
        """Append ``entry`` (and replace the context) while the execution is running.

        Returns ``False`` without writing when the execution is not running,
        or when ``run_id`` is given and another run has claimed it since.
        """
