"""Dispatcher entry points over local tasks, a transport, and SQLite."""

import asyncio
from datetime import timedelta

import pytest

from flowengine.config import FlowEngineConfig
from flowengine.contracts import Edge, Flow, Node
from flowengine.dispatch import FlowDispatcher
from flowengine.errors import (
    ExecutionNotFoundError,
    FlowInactiveError,
    FlowNotFoundError,
    InvalidStateError,
    ValidationError,
)
from flowengine.flows import InMemoryFlowStore
from flowengine.persistence import ExecutionStatus, SQLiteExecutionRepository
from flowengine.persistence.models import utcnow
from flowengine.transports.inmemory import InMemoryTransport
from flowengine.worker import FlowWorker

MONITOR = Flow(
    id="monitor",
    name="Monitor mentions",
    nodes=[Node(id="trigger", type="trigger"), Node(id="classify", type="classify"), Node(id="notify", type="notify")],
    edges=[Edge(from_node_id="trigger", to_node_id="classify"), Edge(from_node_id="classify", to_node_id="notify")],
)
PAUSED = MONITOR.model_copy(update={"id": "paused", "active": False})
BROKEN = Flow(id="broken", nodes=[Node(id="trigger", type="trigger")], edges=[Edge(from_node_id="trigger", to_node_id="gone")])


def _store():
    return InMemoryFlowStore([MONITOR, PAUSED, BROKEN])


@pytest.mark.asyncio
async def test_start_execution_runs_locally(repository, registry):
    dispatcher = FlowDispatcher(_store(), repository, registry)

    execution_id = await dispatcher.start_execution("monitor", {"text": "vote"})
    await dispatcher.join()

    execution = await dispatcher.get_execution(execution_id)
    assert execution.status is ExecutionStatus.COMPLETED
    assert execution.context["category"] == "politics"
    assert len(execution.execution_log) == 3


@pytest.mark.asyncio
async def test_start_execution_rejects_before_creating(repository, registry):
    dispatcher = FlowDispatcher(_store(), repository, registry)

    with pytest.raises(FlowNotFoundError):
        await dispatcher.start_execution("nope")
    with pytest.raises(FlowInactiveError):
        await dispatcher.start_execution("paused")
    with pytest.raises(ValidationError):
        await dispatcher.start_execution("broken")
    assert await repository.list_executions() == []


@pytest.mark.asyncio
async def test_start_execution_publishes_to_transport(repository, registry):
    transport = InMemoryTransport()
    dispatcher = FlowDispatcher(_store(), repository, registry, transport=transport)

    execution_id = await dispatcher.start_execution("monitor", {"text": "budget"})
    assert transport.pending("executions") == 1
    assert (await dispatcher.get_execution(execution_id)).status is ExecutionStatus.PENDING

    worker = FlowWorker(transport, dispatcher.scheduler)
    await worker.start(lifespan=0.2)

    execution = await dispatcher.get_execution(execution_id)
    assert execution.status is ExecutionStatus.COMPLETED
    assert execution.context["category"] == "other"


@pytest.mark.asyncio
async def test_cancel_and_retry(repository, registry):
    dispatcher = FlowDispatcher(_store(), repository, registry, transport=InMemoryTransport())
    execution_id = await dispatcher.start_execution("monitor", {"text": "vote"})

    cancelled = await dispatcher.cancel_execution(execution_id)
    assert cancelled.status is ExecutionStatus.CANCELLED
    with pytest.raises(InvalidStateError):
        await dispatcher.cancel_execution(execution_id)

    local = FlowDispatcher(_store(), repository, registry)
    retried = await local.retry_execution(execution_id)
    assert retried.status is ExecutionStatus.PENDING
    await local.join()

    execution = await local.get_execution(execution_id)
    assert execution.status is ExecutionStatus.COMPLETED
    assert execution.context["text"] == "vote"

    with pytest.raises(InvalidStateError):
        await local.retry_execution(execution_id)
    with pytest.raises(ExecutionNotFoundError):
        await local.get_execution("missing")


@pytest.mark.asyncio
async def test_kill_stuck_uses_configured_threshold(repository, registry):
    config = FlowEngineConfig(supervisor={"stuck_threshold": 60})
    dispatcher = FlowDispatcher(_store(), repository, registry, transport=InMemoryTransport(), config=config)

    execution_id = await dispatcher.start_execution("monitor")
    assert await dispatcher.kill_stuck() == 0
    assert await dispatcher.kill_stuck(timedelta(0)) == 1
    assert (await dispatcher.get_execution(execution_id)).status is ExecutionStatus.CANCELLED


@pytest.mark.asyncio
async def test_parallel_flow_on_sqlite(tmp_path, registry):
    repository = SQLiteExecutionRepository(tmp_path / "executions.db")
    flow = Flow(
        id="fanout",
        nodes=[
            Node(id="t", type="trigger"),
            Node(id="p", type="parallel"),
            Node(id="a", type="classify"),
            Node(id="b", type="notify"),
            Node(id="z", type="terminal"),
        ],
        edges=[
            Edge(from_node_id="t", to_node_id="p"),
            Edge(from_node_id="p", to_node_id="a"),
            Edge(from_node_id="p", to_node_id="b"),
            Edge(from_node_id="p", to_node_id="z", condition_label="done"),
        ],
    )
    dispatcher = FlowDispatcher(InMemoryFlowStore([flow]), repository, registry)

    execution = await dispatcher.run_execution("fanout", {"text": "vote"})

    assert execution.status is ExecutionStatus.COMPLETED
    children = await dispatcher.list_children(execution.id)
    assert len(children) == 2
    assert {c.status for c in children} == {ExecutionStatus.COMPLETED}
    assert [e.node_id for e in execution.execution_log] == ["t", "p", "p", "z"]

    reopened = SQLiteExecutionRepository(tmp_path / "executions.db")
    stored = await reopened.get_execution(execution.id)
    assert stored.status is ExecutionStatus.COMPLETED
    assert stored.execution_log[2].output["_children"] == {c.id: "completed" for c in children}
    reopened.close()
    repository.close()


@pytest.mark.asyncio
async def test_concurrent_roots_are_independent(repository, registry):
    dispatcher = FlowDispatcher(_store(), repository, registry)
    ids = [await dispatcher.start_execution("monitor", {"text": f"vote {i}"}) for i in range(5)]
    await dispatcher.join()

    executions = await asyncio.gather(*(dispatcher.get_execution(i) for i in ids))
    assert all(e.status is ExecutionStatus.COMPLETED for e in executions)
    assert [e.context["text"] for e in executions] == [f"vote {i}" for i in range(5)]
    assert all(e.started_at <= utcnow() for e in executions)
