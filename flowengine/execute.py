"""Node execution for flow runs."""

from __future__ import annotations

import copy
import inspect
import logging
from typing import Any, Dict, Mapping, Optional

from pydantic_core import PydanticSerializationError, to_jsonable_python

from .constants import DIRECTIVE_PREFIX, SKIPPED_KEY
from .contracts import Node
from .errors import UnknownNodeTypeError
from .persistence import ExecutionRepository
from .persistence.models import Execution, LogEntry, LogStatus, utcnow
from .registry import HandlerRegistry, HandlerResult

logger = logging.getLogger(__name__)


class InvalidHandlerOutput(ValueError):
    """A handler returned something that is not a JSON mapping."""


def build_handler_input(execution: Execution, context: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy ``context`` and expose the current loop item to loop children."""
    handler_input = copy.deepcopy(dict(context))
    resume = execution.resume_context or {}
    if "loop_alias" in resume:
        handler_input[resume["loop_alias"]] = copy.deepcopy(resume.get("loop_item"))
        handler_input["loop_index"] = resume.get("loop_index", 0)
    return handler_input


def merge_output(context: Mapping[str, Any], output: Mapping[str, Any]) -> Dict[str, Any]:
    """Return ``context`` updated with ``output``, skipping engine directives."""
    merged = dict(context)
    for key, value in output.items():
        if not key.startswith(DIRECTIVE_PREFIX):
            merged[key] = value
    return merged


def _normalize_result(result: Any) -> HandlerResult:
    if result is None:
        return HandlerResult()
    if isinstance(result, HandlerResult):
        output: Any = result.output
    elif isinstance(result, Mapping):
        output = result
    else:
        raise InvalidHandlerOutput(f"expected a mapping, got {type(result).__name__}")

    try:
        output = to_jsonable_python(output)
    except PydanticSerializationError as exc:
        raise InvalidHandlerOutput(str(exc)) from exc
    if not isinstance(output, dict) or not all(isinstance(k, str) for k in output):
        raise InvalidHandlerOutput("output keys must be strings")

    if isinstance(result, HandlerResult):
        update: Dict[str, Any] = {"output": output}
        if result.status is LogStatus.FAILED and not result.error:
            update["error"] = "handler reported failure"
        return result.model_copy(update=update)
    return HandlerResult(output=output)


class NodeExecutor:
    """Invoke one node's handler and record the outcome."""

    def __init__(self, repository: ExecutionRepository, registry: HandlerRegistry) -> None:
        self._repository = repository
        self._registry = registry

    async def invoke(self, node: Node, handler_input: Dict[str, Any]) -> HandlerResult:
        """Run the handler for ``node``; never raises for handler problems."""
        try:
            handler = self._registry.resolve(node.type)
        except UnknownNodeTypeError as exc:
            return HandlerResult.failure(str(exc))

        try:
            result = handler(copy.deepcopy(handler_input), dict(node.config))
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            logger.warning(f"Handler for node {node.id} ({node.type}) raised: {exc}")
            return HandlerResult.failure(str(exc) or type(exc).__name__)

        try:
            return _normalize_result(result)
        except InvalidHandlerOutput as exc:
            return HandlerResult.failure(f"invalid handler output: {exc}")

    async def execute(
        self,
        execution: Execution,
        node: Node,
        context: Mapping[str, Any],
    ) -> Optional[LogEntry]:
        """Execute ``node`` and append its log entry.

        A disabled node is not invoked; it is logged as completed with a
        ``_skipped`` output. Returns the entry, or ``None`` when the
        execution left ``running`` (or was claimed by another run) while the
        handler was in flight and the write was refused.
        """
        started_at = utcnow()
        handler_input = build_handler_input(execution, context)
        if node.disabled:
            logger.info(f"Skipping disabled node {node.id} in execution {execution.id}")
            result = HandlerResult(output={SKIPPED_KEY: True, "_reason": "node disabled"})
        else:
            result = await self.invoke(node, handler_input)

        entry = LogEntry(
            node_id=node.id,
            input=handler_input,
            output=result.output,
            status=result.status,
            error=result.error,
            started_at=started_at,
            completed_at=utcnow(),
        )
        new_context = None
        if result.status is LogStatus.COMPLETED:
            new_context = merge_output(context, result.output)

        written = await self._repository.append_log(
            execution.id, entry, new_context, run_id=execution.run_id
        )
        if not written:
            logger.info(
                f"Discarded result of node {node.id}: execution {execution.id} is no longer running"
            )
            return None
        return entry
