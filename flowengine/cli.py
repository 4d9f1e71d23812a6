"""Command line interface for running and operating flow executions."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import typer

from .config import FlowEngineConfig, load_config
from .dispatch import FlowDispatcher
from .errors import FlowEngineError
from .flows import get_flow_store, load_flow_file
from .persistence import Execution, ExecutionStatus, get_repository
from .registry import HandlerRegistry
from .scheduler import ExecutionScheduler
from .supervisor import Supervisor
from .transports import get_transport
from .validation import validate_flow
from .worker import FlowWorker

app = typer.Typer(help="CLI for the flow execution engine")

# Command groups
flow_app = typer.Typer(help="Commands for inspecting flow definitions")
execution_app = typer.Typer(help="Commands for managing executions")

app.add_typer(flow_app, name="flow")
app.add_typer(execution_app, name="execution")

FlowsOption = typer.Option(None, "--flows", help="Flow file or directory (default: flows_path)")
PluginOption = typer.Option(
    None, "--plugin", help="Module with a register(registry) function; may be repeated"
)


@app.callback()
def main() -> None:
    """Flow engine CLI entry point."""
    pass


def _setup(plugins: Optional[List[str]] = None) -> tuple[FlowEngineConfig, HandlerRegistry]:
    config = load_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    registry = HandlerRegistry.with_builtins()
    for plugin in plugins or []:
        registry.load_plugin(plugin)
    return config, registry


def _dispatcher(
    flows_path: Optional[Path] = None, plugins: Optional[List[str]] = None
) -> FlowDispatcher:
    config, registry = _setup(plugins)
    flows = get_flow_store(str(flows_path) if flows_path else None, config)
    transport = None
    if config.transport.backend != "inmemory":
        transport = get_transport(config=config)
    return FlowDispatcher(
        flows, get_repository(), registry, transport=transport, config=config
    )


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _print_execution(execution: Execution) -> None:
    typer.echo(f"Execution {execution.id}: {execution.status.value}")
    typer.echo(f"Flow: {execution.flow_id}")
    if execution.parent_execution_id:
        typer.echo(f"Parent: {execution.parent_execution_id}")
    if execution.error_message:
        typer.echo(f"Error: {execution.error_message}")
    typer.echo(f"Context: {json.dumps(execution.context, default=str)}")
    for entry in execution.execution_log:
        line = f"- {entry.node_id}: {entry.status.value}"
        if entry.error:
            line += f" ({entry.error})"
        typer.echo(line)


@app.command("run")
def run(
    flow_id: str,
    context: Optional[str] = typer.Option(None, help="Initial context as a JSON object"),
    flows: Optional[Path] = FlowsOption,
    plugin: Optional[List[str]] = PluginOption,
) -> None:
    """
    Run a flow to completion in this process and print the result.

    Example:
        flowengine run monitor-feeds --flows ./flows --context '{"text": "foo"}'
    """
    try:
        initial = json.loads(context) if context else {}
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"context is not valid JSON: {exc}") from exc
    if not isinstance(initial, dict):
        raise typer.BadParameter("context must be a JSON object")

    dispatcher = _dispatcher(flows, plugin)
    try:
        execution = asyncio.run(dispatcher.run_execution(flow_id, initial))
    except FlowEngineError as exc:
        _fail(str(exc))
    _print_execution(execution)
    if execution.status is not ExecutionStatus.COMPLETED:
        raise typer.Exit(code=1)


@app.command("worker")
def worker(
    lifespan: Optional[float] = typer.Option(None, help="Stop after this many seconds"),
    flows: Optional[Path] = FlowsOption,
    plugin: Optional[List[str]] = PluginOption,
    sweep: bool = typer.Option(True, help="Run the stuck-execution sweep alongside"),
) -> None:
    """
    Run a worker that executes requests from the configured transport.

    Example:
        flowengine worker --flows ./flows --plugin myhandlers
    """
    config, registry = _setup(plugin)
    repository = get_repository()
    scheduler = ExecutionScheduler(
        get_flow_store(str(flows) if flows else None, config),
        repository,
        registry,
        config=config.scheduler,
    )
    flow_worker = FlowWorker(
        get_transport(config=config),
        scheduler,
        max_concurrent=config.worker.max_concurrent_executions,
    )
    supervisor = Supervisor(
        repository,
        stuck_threshold=config.supervisor.stuck_threshold,
        sweep_interval=config.supervisor.sweep_interval,
    )

    async def _serve() -> None:
        if sweep:
            await supervisor.start()
        try:
            await flow_worker.start(lifespan=lifespan)
        finally:
            if sweep:
                await supervisor.stop()

    typer.echo(f"Starting worker (transport: {config.transport.backend})")
    asyncio.run(_serve())


@app.command("kill-stuck")
def kill_stuck(
    threshold: Optional[float] = typer.Option(
        None, help="Age in seconds (default: supervisor.stuck_threshold)"
    ),
) -> None:
    """Cancel every pending or running execution older than the threshold."""
    dispatcher = _dispatcher()
    killed = asyncio.run(dispatcher.kill_stuck(threshold))
    typer.echo(f"Cancelled {killed} stuck executions")


@flow_app.command("validate")
def flow_validate(path: Path) -> None:
    """Check the flows in a YAML/JSON file for structural problems."""
    if not path.exists():
        _fail("Specified path does not exist")
    try:
        loaded = load_flow_file(path)
    except FlowEngineError as exc:
        _fail(f"Could not load {path}: {exc}")

    invalid = False
    for flow in loaded:
        try:
            validate_flow(flow)
        except FlowEngineError as exc:
            invalid = True
            typer.secho(f"{flow.id}: {exc}", fg=typer.colors.RED)
        else:
            typer.echo(f"{flow.id}: ok")
    if invalid:
        raise typer.Exit(code=1)


@flow_app.command("list")
def flow_list(flows: Optional[Path] = FlowsOption) -> None:
    """List flows available in the flow store."""
    config, _ = _setup()
    store = get_flow_store(str(flows) if flows else None, config)
    try:
        found = asyncio.run(store.list_flows())
    except FlowEngineError as exc:
        _fail(str(exc))
    if not found:
        typer.echo("No flows found")
        return
    for flow in found:
        state = "active" if flow.active else "inactive"
        typer.echo(f"{flow.id}\t{flow.name}\t{state}\t{len(flow.nodes)} nodes")


@execution_app.command("list")
def execution_list(
    status: Optional[List[ExecutionStatus]] = typer.Option(None, help="Filter by status"),
    flow: Optional[str] = typer.Option(None, help="Filter by flow id"),
) -> None:
    """List executions, oldest first."""
    dispatcher = _dispatcher()
    executions = asyncio.run(dispatcher.list_executions(statuses=status or None, flow_id=flow))
    if not executions:
        typer.echo("No executions found")
        return
    for execution in executions:
        parent = execution.parent_execution_id or "-"
        typer.echo(f"{execution.id}\t{execution.flow_id}\t{execution.status.value}\t{parent}")


@execution_app.command("show")
def execution_show(execution_id: str) -> None:
    """Show an execution with its node log and child executions."""
    dispatcher = _dispatcher()

    async def _load() -> tuple[Execution, List[Execution]]:
        execution = await dispatcher.get_execution(execution_id)
        return execution, await dispatcher.list_children(execution_id)

    try:
        execution, children = asyncio.run(_load())
    except FlowEngineError as exc:
        _fail(str(exc))
    _print_execution(execution)
    for child in children:
        typer.echo(f"  child {child.id}: {child.status.value}")


@execution_app.command("cancel")
def execution_cancel(execution_id: str) -> None:
    """Request cancellation of a pending or running execution."""
    dispatcher = _dispatcher()
    try:
        execution = asyncio.run(dispatcher.cancel_execution(execution_id))
    except FlowEngineError as exc:
        _fail(str(exc))
    typer.echo(f"Execution {execution.id}: {execution.status.value}")


@execution_app.command("retry")
def execution_retry(
    execution_id: str,
    flows: Optional[Path] = FlowsOption,
    plugin: Optional[List[str]] = PluginOption,
) -> None:
    """Restart a failed or cancelled root execution from its trigger."""
    dispatcher = _dispatcher(flows, plugin)

    async def _retry() -> Execution:
        await dispatcher.retry_execution(execution_id)
        await dispatcher.join()
        return await dispatcher.get_execution(execution_id)

    try:
        execution = asyncio.run(_retry())
    except FlowEngineError as exc:
        _fail(str(exc))
    typer.echo(f"Execution {execution.id}: {execution.status.value}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
