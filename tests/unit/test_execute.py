"""Tests for the node executor."""

import copy

import pytest

from flowengine.contracts import Node
from flowengine.execute import NodeExecutor, merge_output
from flowengine.persistence import Execution, ExecutionStatus, LogStatus
from flowengine.registry import HandlerResult


async def _running(repository, **kwargs):
    execution = await repository.create_execution(Execution(flow_id="flow-1", **kwargs))
    return await repository.compare_and_set_status(
        execution.id, [ExecutionStatus.PENDING], ExecutionStatus.RUNNING
    )


def test_merge_output_skips_directives():
    merged = merge_output({"a": 1}, {"b": 2, "_branch": "true", "a": 3})
    assert merged == {"a": 3, "b": 2}


@pytest.mark.asyncio
async def test_successful_node_merges_context(repository, registry):
    execution = await _running(repository, context={"text": "vote tomorrow"})
    executor = NodeExecutor(repository, registry)

    entry = await executor.execute(execution, Node(id="classify", type="classify"), execution.context)

    assert entry.status is LogStatus.COMPLETED
    assert entry.input == {"text": "vote tomorrow"}
    assert entry.output == {"category": "politics", "classified": True}
    stored = await repository.get_execution(execution.id)
    assert stored.context == {"text": "vote tomorrow", "category": "politics", "classified": True}
    assert [e.node_id for e in stored.execution_log] == ["classify"]


@pytest.mark.asyncio
async def test_async_handler_and_config(repository, registry):
    execution = await _running(repository)
    executor = NodeExecutor(repository, registry)

    node = Node(id="n", type="notify", config={"channel": "slack"})
    entry = await executor.execute(execution, node, {})
    assert entry.output == {"notified": True, "channel": "slack"}


@pytest.mark.asyncio
async def test_handler_exception_is_recorded(repository, registry):
    execution = await _running(repository, context={"x": 1})
    executor = NodeExecutor(repository, registry)

    entry = await executor.execute(execution, Node(id="boom", type="explode"), execution.context)

    assert entry.status is LogStatus.FAILED
    assert entry.error == "boom"
    stored = await repository.get_execution(execution.id)
    assert stored.context == {"x": 1}
    assert stored.execution_log[0].failed


@pytest.mark.asyncio
async def test_unknown_node_type_is_recorded(repository, registry):
    execution = await _running(repository)
    entry = await NodeExecutor(repository, registry).execute(
        execution, Node(id="s", type="scrape"), {}
    )
    assert entry.status is LogStatus.FAILED
    assert "No handler registered for node type 'scrape'" in entry.error


@pytest.mark.asyncio
async def test_invalid_output_is_rejected(repository, registry):
    registry.register("listy", lambda ctx, cfg: ["not", "a", "mapping"])
    registry.register("opaque", lambda ctx, cfg: {"handle": object()})
    execution = await _running(repository)
    executor = NodeExecutor(repository, registry)

    listy = await executor.execute(execution, Node(id="l", type="listy"), {})
    opaque = await executor.execute(execution, Node(id="o", type="opaque"), {})

    assert listy.status is LogStatus.FAILED
    assert listy.error.startswith("invalid handler output")
    assert opaque.status is LogStatus.FAILED
    assert opaque.error.startswith("invalid handler output")


@pytest.mark.asyncio
async def test_handler_result_failure(repository, registry):
    registry.register("soft_fail", lambda ctx, cfg: HandlerResult.failure("feed unavailable"))
    registry.register("bare_fail", lambda ctx, cfg: HandlerResult(status=LogStatus.FAILED))
    execution = await _running(repository)
    executor = NodeExecutor(repository, registry)

    soft = await executor.execute(execution, Node(id="s", type="soft_fail"), {})
    bare = await executor.execute(execution, Node(id="b", type="bare_fail"), {})
    assert (soft.status, soft.error) == (LogStatus.FAILED, "feed unavailable")
    assert bare.error == "handler reported failure"


@pytest.mark.asyncio
async def test_loop_item_is_exposed_to_handler(repository, registry):
    seen = {}

    def capture(context, config):
        seen.update(copy.deepcopy(context))
        context["article"]["title"] = "mutated"
        return {}

    registry.register("capture", capture)
    execution = await _running(
        repository,
        context={"source": "rss"},
        parent_execution_id="parent",
        resume_context={"start_node_id": "c", "loop_item": {"title": "a"}, "loop_alias": "article", "loop_index": 2},
    )

    entry = await NodeExecutor(repository, registry).execute(
        execution, Node(id="c", type="capture"), execution.context
    )

    assert seen == {"source": "rss", "article": {"title": "a"}, "loop_index": 2}
    assert entry.input["article"] == {"title": "a"}


@pytest.mark.asyncio
async def test_result_discarded_when_execution_not_running(repository, registry):
    execution = await repository.create_execution(Execution(flow_id="flow-1"))
    entry = await NodeExecutor(repository, registry).execute(
        execution, Node(id="classify", type="classify"), {}
    )
    assert entry is None
    assert (await repository.get_execution(execution.id)).execution_log == []
