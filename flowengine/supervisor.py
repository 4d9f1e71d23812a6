"""Stuck-execution reaper and manual cancellation."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from .constants import DEFAULT_STUCK_THRESHOLD, DEFAULT_SWEEP_INTERVAL
from .errors import ConcurrencyConflict, ExecutionNotFoundError
from .persistence import ACTIVE_STATUSES, Execution, ExecutionRepository, ExecutionStatus
from .persistence.models import utcnow
from .scheduler import cancel_execution

logger = logging.getLogger(__name__)

Threshold = Union[float, timedelta]


def _as_timedelta(value: Threshold) -> timedelta:
    return value if isinstance(value, timedelta) else timedelta(seconds=value)


class Supervisor:
    """Cancel executions that have been pending or running for too long.

    The clock of a running execution is its ``started_at``; a pending
    execution is measured from ``created_at``. Reaping is a compare-and-set
    on the status the sweep observed, so an execution that completes, or is
    claimed by a worker, during the sweep is left alone.
    """

    def __init__(
        self,
        repository: ExecutionRepository,
        stuck_threshold: Threshold = DEFAULT_STUCK_THRESHOLD,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self.stuck_threshold = _as_timedelta(stuck_threshold)
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._running = False
        self._task: Optional[asyncio.Task] = None

    def _age(self, execution: Execution, now: datetime) -> timedelta:
        if execution.status is ExecutionStatus.RUNNING and execution.started_at:
            return now - execution.started_at
        return now - execution.created_at

    async def sweep(self, threshold: Optional[Threshold] = None) -> int:
        """Cancel every active execution at least ``threshold`` old.

        Returns the number of executions cancelled by this sweep.
        """
        limit = _as_timedelta(threshold) if threshold is not None else self.stuck_threshold
        now = self._clock()
        killed = 0
        for execution in await self._repository.list_executions(statuses=ACTIVE_STATUSES):
            age = self._age(execution, now)
            if age < limit:
                continue
            try:
                await self._repository.compare_and_set_status(
                    execution.id,
                    [execution.status],
                    ExecutionStatus.CANCELLED,
                    expected_run_id=execution.run_id,
                    completed_at=now,
                )
            except (ConcurrencyConflict, ExecutionNotFoundError) as exc:
                logger.debug(f"Skipping execution {execution.id}: {exc}")
                continue
            killed += 1
            logger.warning(
                f"Execution {execution.id} timed out after {int(age.total_seconds())}s "
                f"{execution.status.value} and has been cancelled"
            )
        if killed:
            logger.info(f"Stuck sweep cancelled {killed} executions")
        return killed

    async def cancel(self, execution_id: str) -> Execution:
        """Cancel ``execution_id`` on behalf of a user."""
        return await cancel_execution(self._repository, execution_id)

    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Start the periodic sweep in a background task."""
        if self._running:
            logger.warning("Supervisor already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(
            f"Supervisor started (threshold={self.stuck_threshold}, "
            f"interval={self.sweep_interval}s)"
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Supervisor stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await self.sweep()
            except Exception as exc:
                logger.error(f"Stuck sweep failed: {exc}")
            await asyncio.sleep(self.sweep_interval)
