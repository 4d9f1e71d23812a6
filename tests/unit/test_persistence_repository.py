from datetime import timedelta

import pytest

from flowengine.errors import ConcurrencyConflict, ExecutionNotFoundError
from flowengine.persistence import (
    Execution,
    ExecutionStatus,
    InMemoryExecutionRepository,
    LogEntry,
    LogStatus,
    SQLiteExecutionRepository,
)
from flowengine.persistence.models import utcnow


@pytest.fixture(params=["inmemory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "inmemory":
        yield InMemoryExecutionRepository()
    else:
        repo = SQLiteExecutionRepository(tmp_path / "executions.db")
        yield repo
        repo.close()


@pytest.mark.asyncio
async def test_create_and_get(repo):
    execution = Execution(flow_id="flow-1", context={"text": "foo"})
    await repo.create_execution(execution)

    loaded = await repo.get_execution(execution.id)
    assert loaded is not None
    assert loaded.flow_id == "flow-1"
    assert loaded.status is ExecutionStatus.PENDING
    assert loaded.context == {"text": "foo"}
    assert loaded.execution_log == []
    assert loaded.created_at == execution.created_at
    assert await repo.get_execution("missing") is None


@pytest.mark.asyncio
async def test_compare_and_set_status(repo):
    execution = await repo.create_execution(Execution(flow_id="flow-1"))
    started = utcnow()

    running = await repo.compare_and_set_status(
        execution.id, [ExecutionStatus.PENDING], ExecutionStatus.RUNNING, started_at=started
    )
    assert running.status is ExecutionStatus.RUNNING
    assert running.started_at == started

    with pytest.raises(ConcurrencyConflict) as exc_info:
        await repo.compare_and_set_status(
            execution.id, [ExecutionStatus.PENDING], ExecutionStatus.RUNNING
        )
    assert exc_info.value.actual == "running"

    with pytest.raises(ExecutionNotFoundError):
        await repo.compare_and_set_status("missing", [ExecutionStatus.PENDING], ExecutionStatus.RUNNING)

    with pytest.raises(ValueError):
        await repo.compare_and_set_status(
            execution.id, [ExecutionStatus.RUNNING], ExecutionStatus.FAILED, flow_id="other"
        )


@pytest.mark.asyncio
async def test_append_log_only_while_running(repo):
    execution = await repo.create_execution(Execution(flow_id="flow-1"))
    entry = LogEntry(node_id="trigger", input={"a": 1}, status=LogStatus.COMPLETED)

    assert await repo.append_log(execution.id, entry) is False

    await repo.compare_and_set_status(execution.id, [ExecutionStatus.PENDING], ExecutionStatus.RUNNING)
    assert await repo.append_log(execution.id, entry, {"a": 1, "b": 2}) is True
    second = LogEntry(node_id="classify", output={"c": 3}, status=LogStatus.COMPLETED)
    assert await repo.append_log(execution.id, second) is True

    loaded = await repo.get_execution(execution.id)
    assert [e.node_id for e in loaded.execution_log] == ["trigger", "classify"]
    assert loaded.execution_log[0].input == {"a": 1}
    assert loaded.context == {"a": 1, "b": 2}

    await repo.compare_and_set_status(
        execution.id, [ExecutionStatus.RUNNING], ExecutionStatus.CANCELLED, completed_at=utcnow()
    )
    late = LogEntry(node_id="notify", status=LogStatus.COMPLETED)
    assert await repo.append_log(execution.id, late) is False
    loaded = await repo.get_execution(execution.id)
    assert len(loaded.execution_log) == 2


@pytest.mark.asyncio
async def test_list_executions_filters(repo):
    now = utcnow()
    root = await repo.create_execution(
        Execution(flow_id="flow-1", created_at=now - timedelta(minutes=2))
    )
    child = await repo.create_execution(
        Execution(flow_id="flow-1", parent_execution_id=root.id, created_at=now - timedelta(minutes=1))
    )
    other = await repo.create_execution(Execution(flow_id="flow-2", created_at=now))
    await repo.compare_and_set_status(other.id, [ExecutionStatus.PENDING], ExecutionStatus.RUNNING)

    assert [e.id for e in await repo.list_executions()] == [root.id, child.id, other.id]
    assert [e.id for e in await repo.list_executions(flow_id="flow-1")] == [root.id, child.id]
    assert [e.id for e in await repo.list_executions(parent_execution_id=root.id)] == [child.id]
    running = await repo.list_executions(statuses=[ExecutionStatus.RUNNING])
    assert [e.id for e in running] == [other.id]


@pytest.mark.asyncio
async def test_retry_style_reset(repo):
    execution = await repo.create_execution(Execution(flow_id="flow-1", context={"seed": 1}))
    await repo.compare_and_set_status(execution.id, [ExecutionStatus.PENDING], ExecutionStatus.RUNNING)
    await repo.append_log(execution.id, LogEntry(node_id="t", status=LogStatus.FAILED, error="x"))
    await repo.compare_and_set_status(
        execution.id, [ExecutionStatus.RUNNING], ExecutionStatus.FAILED, error_message="x"
    )

    reset = await repo.compare_and_set_status(
        execution.id,
        [ExecutionStatus.FAILED],
        ExecutionStatus.PENDING,
        error_message=None,
        execution_log=[],
        started_at=None,
        context={"seed": 1},
    )
    assert reset.status is ExecutionStatus.PENDING
    assert reset.execution_log == []
    assert reset.error_message is None


@pytest.mark.asyncio
async def test_writes_are_fenced_by_run_id(repo):
    execution = await repo.create_execution(Execution(flow_id="flow-1"))
    claimed = await repo.compare_and_set_status(
        execution.id, [ExecutionStatus.PENDING], ExecutionStatus.RUNNING, run_id="run-1"
    )
    assert claimed.run_id == "run-1"

    entry = LogEntry(node_id="t", status=LogStatus.COMPLETED)
    assert await repo.append_log(execution.id, entry, run_id="run-1") is True
    assert await repo.append_log(execution.id, entry, {"stale": True}, run_id="run-0") is False

    with pytest.raises(ConcurrencyConflict):
        await repo.compare_and_set_status(
            execution.id,
            [ExecutionStatus.RUNNING],
            ExecutionStatus.COMPLETED,
            expected_run_id="run-0",
        )

    done = await repo.compare_and_set_status(
        execution.id,
        [ExecutionStatus.RUNNING],
        ExecutionStatus.COMPLETED,
        expected_run_id="run-1",
    )
    assert done.status is ExecutionStatus.COMPLETED
    assert [e.node_id for e in done.execution_log] == ["t"]
    assert "stale" not in done.context


@pytest.mark.asyncio
async def test_inmemory_returns_copies():
    repo = InMemoryExecutionRepository()
    execution = await repo.create_execution(Execution(flow_id="flow-1", context={"k": [1]}))
    execution.context["k"].append(2)

    loaded = await repo.get_execution(execution.id)
    loaded.context["k"].append(3)
    assert (await repo.get_execution(execution.id)).context == {"k": [1]}
