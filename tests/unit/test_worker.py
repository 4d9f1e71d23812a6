"""Tests for the transport-driven worker."""

import pytest

from flowengine.contracts import Edge, ExecutionRequest, Flow, Node
from flowengine.flows import InMemoryFlowStore
from flowengine.persistence import Execution, ExecutionStatus
from flowengine.scheduler import ExecutionScheduler
from flowengine.transports.inmemory import InMemoryTransport
from flowengine.worker import FlowWorker

FLOW = Flow(
    id="classify-feed",
    nodes=[Node(id="t", type="trigger"), Node(id="c", type="classify")],
    edges=[Edge(from_node_id="t", to_node_id="c")],
)


@pytest.mark.asyncio
async def test_worker_runs_published_executions(repository, registry):
    transport = InMemoryTransport()
    scheduler = ExecutionScheduler(InMemoryFlowStore([FLOW]), repository, registry)
    ids = []
    for text in ("vote today", "weather"):
        execution = await repository.create_execution(Execution(flow_id=FLOW.id, context={"text": text}))
        await transport.publish("executions", ExecutionRequest(execution_id=execution.id))
        ids.append(execution.id)

    worker = FlowWorker(transport, scheduler, max_concurrent=1)
    await worker.start(lifespan=0.3)

    assert worker.processed == 2
    assert worker.crashed == 0
    categories = []
    for execution_id in ids:
        execution = await repository.get_execution(execution_id)
        assert execution.status is ExecutionStatus.COMPLETED
        categories.append(execution.context["category"])
    assert categories == ["politics", "other"]


@pytest.mark.asyncio
async def test_worker_drops_unknown_executions(repository, registry):
    transport = InMemoryTransport()
    scheduler = ExecutionScheduler(InMemoryFlowStore([FLOW]), repository, registry)
    await transport.publish("executions", ExecutionRequest(execution_id="ghost"))

    worker = FlowWorker(transport, scheduler)
    await worker.start(lifespan=0.2)

    assert worker.processed == 1
    assert worker.crashed == 0
    assert transport.pending("executions") == 0


class UnreachableFlowStore:
    async def get_flow(self, flow_id):
        raise ConnectionError("flow store down")

    async def list_flows(self):
        return []


@pytest.mark.asyncio
async def test_worker_counts_crashed_runs_and_keeps_going(repository, registry):
    transport = InMemoryTransport()
    scheduler = ExecutionScheduler(UnreachableFlowStore(), repository, registry)
    execution = await repository.create_execution(Execution(flow_id=FLOW.id))
    await transport.request_execution(execution.id, FLOW.id)

    worker = FlowWorker(transport, scheduler)
    await worker.start(lifespan=0.2)

    assert (worker.processed, worker.crashed) == (1, 1)
    assert (await repository.get_execution(execution.id)).status is ExecutionStatus.FAILED
    assert transport.pending("executions") == 0
