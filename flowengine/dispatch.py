"""Entry points for starting, cancelling and retrying flow executions."""

from __future__ import annotations

import asyncio
import copy
import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from .config import FlowEngineConfig
from .errors import ExecutionNotFoundError, FlowInactiveError
from .flows import FlowStore
from .persistence import Execution, ExecutionRepository, ExecutionStatus
from .registry import HandlerRegistry
from .scheduler import ExecutionScheduler, reset_for_retry
from .supervisor import Supervisor
from .transports import BaseTransport
from .validation import validate_flow

logger = logging.getLogger(__name__)


class FlowDispatcher:
    """Service used by callers (REST layer, CLI) to drive executions.

    When a transport is configured new executions are published as
    :class:`ExecutionRequest` messages for a :class:`~flowengine.worker.FlowWorker`;
    otherwise they run as tasks on the current event loop.
    """

    def __init__(
        self,
        flows: FlowStore,
        repository: ExecutionRepository,
        registry: Optional[HandlerRegistry] = None,
        transport: Optional[BaseTransport] = None,
        config: Optional[FlowEngineConfig] = None,
    ) -> None:
        self._config = config or FlowEngineConfig()
        self._flows = flows
        self._repository = repository
        self._transport = transport
        self.scheduler = ExecutionScheduler(
            flows, repository, registry, config=self._config.scheduler
        )
        self.supervisor = Supervisor(
            repository,
            stuck_threshold=self._config.supervisor.stuck_threshold,
            sweep_interval=self._config.supervisor.sweep_interval,
        )
        self._tasks: Set[asyncio.Task] = set()

    async def _create(self, flow_id: str, initial_context: Optional[Dict[str, Any]]) -> Execution:
        flow = await self._flows.get_flow(flow_id)
        if not flow.active:
            raise FlowInactiveError(flow_id)
        validate_flow(flow)
        execution = Execution(flow_id=flow.id, context=copy.deepcopy(dict(initial_context or {})))
        return await self._repository.create_execution(execution)

    async def _schedule(self, execution: Execution) -> None:
        if self._transport is not None:
            await self._transport.request_execution(execution.id, execution.flow_id)
            logger.info(f"Published execution {execution.id} for flow {execution.flow_id}")
            return
        task = asyncio.create_task(self._run_local(execution.id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_local(self, execution_id: str) -> None:
        try:
            await self.scheduler.run(execution_id)
        except Exception:
            logger.exception(f"Local run of execution {execution_id} failed")

    # ------------------------------------------------------------------
    async def start_execution(
        self, flow_id: str, initial_context: Optional[Dict[str, Any]] = None
    ) -> str:
        """Create a pending root execution of ``flow_id`` and schedule it.

        Raises ``FlowNotFoundError``, ``FlowInactiveError`` or
        ``ValidationError`` before anything is persisted.
        """
        execution = await self._create(flow_id, initial_context)
        await self._schedule(execution)
        return execution.id

    async def run_execution(
        self, flow_id: str, initial_context: Optional[Dict[str, Any]] = None
    ) -> Execution:
        """Create an execution and run it to completion on this event loop."""
        execution = await self._create(flow_id, initial_context)
        return await self.scheduler.run(execution.id)

    async def cancel_execution(self, execution_id: str) -> Execution:
        return await self.supervisor.cancel(execution_id)

    async def retry_execution(self, execution_id: str) -> Execution:
        """Reset a failed or cancelled root execution and schedule it again."""
        execution = await reset_for_retry(self._repository, execution_id)
        await self._schedule(execution)
        return execution

    async def kill_stuck(self, threshold: Union[float, timedelta, None] = None) -> int:
        return await self.supervisor.sweep(threshold)

    async def get_execution(self, execution_id: str) -> Execution:
        execution = await self._repository.get_execution(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    async def list_executions(
        self,
        statuses: Optional[Iterable[ExecutionStatus]] = None,
        flow_id: Optional[str] = None,
    ) -> List[Execution]:
        return await self._repository.list_executions(statuses=statuses, flow_id=flow_id)

    async def list_children(self, execution_id: str) -> List[Execution]:
        return await self._repository.list_executions(parent_execution_id=execution_id)

    async def join(self) -> None:
        """Wait for every locally scheduled execution to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
