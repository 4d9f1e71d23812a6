"""Execution state machine: walks a flow graph for one execution."""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from typing import Any, Dict, List, Optional

from .config import SchedulerConfig
from .constants import ALIAS_KEY, BRANCH_KEY, CHILDREN_KEY, DEFAULT_LOOP_ALIAS, ITEMS_KEY
from .contracts import Flow, Node, NodeKind
from .errors import (
    ConcurrencyConflict,
    ConditionUnresolvedError,
    ExecutionNotFoundError,
    FlowNotFoundError,
    InvalidStateError,
    NodeExecutionError,
    ValidationError,
)
from .execute import NodeExecutor, merge_output
from .flows import FlowStore
from .persistence import (
    ACTIVE_STATUSES,
    RETRYABLE_STATUSES,
    Execution,
    ExecutionRepository,
    ExecutionStatus,
    LogEntry,
    LogStatus,
)
from .persistence.models import utcnow
from .registry import HandlerRegistry
from .validation import split_fanout_edges, validate_flow

logger = logging.getLogger(__name__)

FANOUT_KINDS = (NodeKind.PARALLEL, NodeKind.LOOP)


async def cancel_execution(repository: ExecutionRepository, execution_id: str) -> Execution:
    """Move a pending or running execution to ``cancelled``.

    Raises ``InvalidStateError`` when it is already terminal and
    ``ConcurrencyConflict`` when it became terminal concurrently.
    """
    execution = await repository.get_execution(execution_id)
    if execution is None:
        raise ExecutionNotFoundError(execution_id)
    if execution.is_terminal:
        raise InvalidStateError(
            f"Execution {execution_id} is already {execution.status.value}"
        )
    cancelled = await repository.compare_and_set_status(
        execution_id,
        ACTIVE_STATUSES,
        ExecutionStatus.CANCELLED,
        completed_at=utcnow(),
    )
    logger.info(f"Cancelled execution {execution_id}")
    return cancelled


async def reset_for_retry(repository: ExecutionRepository, execution_id: str) -> Execution:
    """Return a failed or cancelled root execution to ``pending``.

    The log, error and timestamps are cleared and the context is restored to
    what the run was originally started with. The id and flow are kept.
    """
    execution = await repository.get_execution(execution_id)
    if execution is None:
        raise ExecutionNotFoundError(execution_id)
    if not execution.is_root:
        raise InvalidStateError(f"Execution {execution_id} is a child and cannot be retried")
    if execution.status not in RETRYABLE_STATUSES:
        raise InvalidStateError(
            f"Execution {execution_id} is {execution.status.value}; "
            "only failed or cancelled executions can be retried"
        )
    reset = await repository.compare_and_set_status(
        execution_id,
        [execution.status],
        ExecutionStatus.PENDING,
        created_at=utcnow(),
        started_at=None,
        completed_at=None,
        error_message=None,
        execution_log=[],
        context=execution.seed_context(),
        run_id=None,
    )
    logger.info(f"Reset execution {execution_id} for retry")
    return reset


class ExecutionScheduler:
    """Drive executions from ``pending`` to a terminal status.

    One call to :meth:`run` owns one execution. Parallel and Loop nodes spawn
    child executions which are run concurrently by the same scheduler and
    joined before the parent moves on.
    """

    def __init__(
        self,
        flows: FlowStore,
        repository: ExecutionRepository,
        registry: Optional[HandlerRegistry] = None,
        config: Optional[SchedulerConfig] = None,
        executor: Optional[NodeExecutor] = None,
    ) -> None:
        self._flows = flows
        self._repository = repository
        self._registry = registry or HandlerRegistry.with_builtins()
        self._executor = executor or NodeExecutor(repository, self._registry)
        self.config = config or SchedulerConfig()

    async def run(self, execution_id: str, flow: Optional[Flow] = None) -> Execution:
        """Claim ``execution_id`` and run it until it is terminal or stops.

        Each claim gets a fresh ``run_id``; every later write of this run is
        conditional on it, so a run superseded by a retry cannot touch the
        new attempt. ``flow`` is the parent's snapshot when running a child.
        """
        try:
            execution = await self._repository.compare_and_set_status(
                execution_id,
                [ExecutionStatus.PENDING],
                ExecutionStatus.RUNNING,
                started_at=utcnow(),
                run_id=uuid.uuid4().hex,
            )
        except ConcurrencyConflict as exc:
            logger.info(f"Not claiming execution {execution_id}: {exc}")
            return await self._get(execution_id)

        logger.info(f"Running execution {execution_id} of flow {execution.flow_id}")
        try:
            await self._drive(execution, flow)
        except Exception as exc:
            logger.exception(f"Execution {execution_id} crashed")
            await self._finish(
                execution, ExecutionStatus.FAILED, error_message=f"Unexpected error: {exc}"
            )
            raise
        return await self._get(execution_id)

    # ------------------------------------------------------------------
    async def _get(self, execution_id: str) -> Execution:
        execution = await self._repository.get_execution(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    async def _finish(
        self, execution: Execution, status: ExecutionStatus, **changes: Any
    ) -> Optional[Execution]:
        """CAS ``running -> status`` for this run; a lost race leaves the other actor's status."""
        execution_id = execution.id
        try:
            finished = await self._repository.compare_and_set_status(
                execution_id,
                [ExecutionStatus.RUNNING],
                status,
                expected_run_id=execution.run_id,
                completed_at=utcnow(),
                **changes,
            )
        except (ConcurrencyConflict, ExecutionNotFoundError) as exc:
            logger.info(f"Could not mark execution {execution_id} {status.value}: {exc}")
            return None
        if status is ExecutionStatus.FAILED:
            logger.warning(f"Execution {execution_id} failed: {changes.get('error_message')}")
        else:
            logger.info(f"Execution {execution_id} {status.value}")
        return finished

    async def _load_flow(self, execution: Execution) -> Flow:
        flow = await self._flows.get_flow(execution.flow_id)
        validate_flow(flow)
        return flow

    def _start_node(self, flow: Flow, execution: Execution) -> Node:
        if execution.is_root or not execution.resume_context:
            return flow.trigger_nodes()[0]
        start_id = execution.resume_context.get("start_node_id")
        node = flow.get_node(start_id) if start_id else None
        if node is None:
            raise NodeExecutionError(f"Resume node {start_id} not found in flow {flow.id}")
        return node

    async def _drive(self, execution: Execution, flow: Optional[Flow] = None) -> None:
        execution_id = execution.id
        if flow is None:
            try:
                flow = await self._load_flow(execution)
            except (FlowNotFoundError, ValidationError) as exc:
                await self._finish(execution, ExecutionStatus.FAILED, error_message=str(exc))
                return

        try:
            node: Optional[Node] = self._start_node(flow, execution)
            while node is not None:
                current = await self._get(execution_id)
                if current.run_id != execution.run_id:
                    logger.info(
                        f"Execution {execution_id} was claimed by another run; "
                        f"not dispatching node {node.id}"
                    )
                    return
                if current.status is not ExecutionStatus.RUNNING:
                    logger.info(
                        f"Execution {execution_id} is {current.status.value}; "
                        f"not dispatching node {node.id}"
                    )
                    return

                entry = await self._executor.execute(current, node, current.context)
                if entry is None:
                    return
                if entry.failed:
                    await self._finish(
                        execution,
                        ExecutionStatus.FAILED,
                        error_message=f"Node {node.id} failed: {entry.error}",
                    )
                    return

                kind = node.kind
                if node.disabled:
                    target = self._pass_through(flow, node)
                elif kind is NodeKind.CONDITION:
                    target = self._follow_condition(flow, node, entry)
                elif kind in FANOUT_KINDS:
                    context = merge_output(current.context, entry.output)
                    if not await self._fan_out(current, flow, node, entry, context):
                        return
                    target = self._follow_done(flow, node)
                elif kind is NodeKind.TERMINAL:
                    target = None
                else:
                    target = self._follow_single(flow, node)
                node = self._advance(flow, execution, target)
        except NodeExecutionError as exc:
            await self._finish(execution, ExecutionStatus.FAILED, error_message=str(exc))
            return

        await self._finish(execution, ExecutionStatus.COMPLETED)

    # ------------------------------------------------------------------
    # Transitions
    def _advance(self, flow: Flow, execution: Execution, target_id: Optional[str]) -> Optional[Node]:
        """Resolve the next node, or ``None`` when the run ends here.

        A loop child whose path returns to its spawning loop node has
        finished its iteration, whichever kind of edge leads back.
        """
        if target_id is None:
            return None
        resume = execution.resume_context or {}
        if "loop_alias" in resume and target_id == resume.get("spawned_by"):
            return None
        return flow.get_node(target_id)

    def _follow_condition(self, flow: Flow, node: Node, entry: LogEntry) -> str:
        label = entry.output.get(BRANCH_KEY)
        for edge in flow.outgoing(node.id):
            if label is not None and edge.condition_label == label:
                return edge.to_node_id
        raise ConditionUnresolvedError(
            f"Condition node {node.id} selected '{label}' but no outgoing edge has that label",
            node_id=node.id,
        )

    def _follow_done(self, flow: Flow, node: Node) -> Optional[str]:
        _, done = split_fanout_edges(flow, node.id)
        return done[0].to_node_id if done else None

    def _follow_single(self, flow: Flow, node: Node) -> Optional[str]:
        outgoing = flow.outgoing(node.id)
        return outgoing[0].to_node_id if outgoing else None

    def _pass_through(self, flow: Flow, node: Node) -> Optional[str]:
        # Disabled fan-out nodes skip their branches and continue via `done`.
        if node.kind in FANOUT_KINDS:
            return self._follow_done(flow, node)
        return self._follow_single(flow, node)

    # ------------------------------------------------------------------
    # Fan-out / join
    def _child_specs(
        self, execution: Execution, flow: Flow, node: Node, entry: LogEntry
    ) -> List[Dict[str, Any]]:
        depth = (execution.resume_context or {}).get("depth", 0) + 1
        if depth > self.config.max_fanout_depth:
            raise NodeExecutionError(
                f"Fan-out at node {node.id} exceeds the maximum nesting depth "
                f"of {self.config.max_fanout_depth}",
                node_id=node.id,
            )

        branches, _ = split_fanout_edges(flow, node.id)
        if node.kind is NodeKind.PARALLEL:
            return [
                {
                    "start_node_id": edge.to_node_id,
                    "spawned_by": node.id,
                    "branch_index": index,
                    "depth": depth,
                }
                for index, edge in enumerate(branches)
            ]

        items = entry.output.get(ITEMS_KEY) or []
        if len(items) > self.config.max_loop_iterations:
            raise NodeExecutionError(
                f"Loop node {node.id} has {len(items)} items, more than the limit of "
                f"{self.config.max_loop_iterations}",
                node_id=node.id,
            )
        alias = entry.output.get(ALIAS_KEY) or DEFAULT_LOOP_ALIAS
        body = branches[0]
        return [
            {
                "start_node_id": body.to_node_id,
                "spawned_by": node.id,
                "loop_item": item,
                "loop_alias": alias,
                "loop_index": index,
                "loop_total": len(items),
                "depth": depth,
            }
            for index, item in enumerate(items)
        ]

    async def _fan_out(
        self,
        execution: Execution,
        flow: Flow,
        node: Node,
        entry: LogEntry,
        context: Dict[str, Any],
    ) -> bool:
        """Spawn and join the children of ``node``.

        Returns ``False`` when the parent stopped running; raises
        ``NodeExecutionError`` when any child did not complete.
        """
        specs = self._child_specs(execution, flow, node, entry)

        parent = await self._get(execution.id)
        if parent.status is not ExecutionStatus.RUNNING or parent.run_id != execution.run_id:
            return False

        children: List[Execution] = []
        for spec in specs:
            child = Execution(
                flow_id=execution.flow_id,
                parent_execution_id=execution.id,
                resume_context=spec,
                context=copy.deepcopy(context),
            )
            children.append(await self._repository.create_execution(child))
        logger.info(f"Execution {execution.id} spawned {len(children)} children at node {node.id}")

        semaphore = asyncio.Semaphore(self.config.max_parallel_children)

        async def run_child(child_id: str) -> Execution:
            async with semaphore:
                return await self.run(child_id, flow=flow)

        results = await asyncio.gather(
            *(run_child(child.id) for child in children), return_exceptions=True
        )
        for child, result in zip(children, results):
            if isinstance(result, Exception):
                logger.error(f"Child execution {child.id} raised: {result}")

        statuses: Dict[str, str] = {}
        for child in children:
            refreshed = await self._repository.get_execution(child.id)
            statuses[child.id] = refreshed.status.value if refreshed else "missing"

        unfinished = {
            child_id: status
            for child_id, status in statuses.items()
            if status != ExecutionStatus.COMPLETED.value
        }
        error = None
        if unfinished:
            error = "Children failed: " + ", ".join(
                f"{child_id}:{status}" for child_id, status in unfinished.items()
            )
        join_entry = LogEntry(
            node_id=node.id,
            output={CHILDREN_KEY: statuses},
            status=LogStatus.FAILED if error else LogStatus.COMPLETED,
            error=error,
            completed_at=utcnow(),
        )
        if not await self._repository.append_log(
            execution.id, join_entry, run_id=execution.run_id
        ):
            return False
        if error:
            raise NodeExecutionError(error, node_id=node.id)
        return True
