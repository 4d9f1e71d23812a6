"""Error taxonomy for the flow execution engine."""

from __future__ import annotations

from typing import Iterable, Optional


class FlowEngineError(Exception):
    """Base class for all engine errors."""


class ValidationError(FlowEngineError):
    """Raised when a flow graph is structurally malformed."""

    def __init__(self, flow_id: str, problems: Iterable[str]) -> None:
        self.flow_id = flow_id
        self.problems = list(problems)
        super().__init__(f"Flow {flow_id} is invalid: " + "; ".join(self.problems))


class UnknownNodeTypeError(FlowEngineError):
    """No handler is registered for a node type tag."""

    def __init__(self, node_type: str) -> None:
        self.node_type = node_type
        super().__init__(f"No handler registered for node type '{node_type}'")


class NodeExecutionError(FlowEngineError):
    """A node handler raised or reported an error."""

    def __init__(self, message: str, node_id: Optional[str] = None) -> None:
        self.node_id = node_id
        super().__init__(message)


class ConditionUnresolvedError(NodeExecutionError):
    """A condition node could not select an outgoing edge."""


class ConcurrencyConflict(FlowEngineError):
    """A compare-and-set status transition lost a race."""

    def __init__(self, execution_id: str, expected: Iterable[str], actual: Optional[str]) -> None:
        self.execution_id = execution_id
        self.expected = sorted(expected)
        self.actual = actual
        super().__init__(
            f"Execution {execution_id} is '{actual}', expected one of {self.expected}"
        )


class ExecutionTimeout(FlowEngineError):
    """An execution was force-cancelled by the supervisor.

    Reaped executions are stored as ``cancelled`` exactly like a user cancel,
    so the engine never raises this to callers; it names the error kind for
    code that wraps :meth:`~flowengine.supervisor.Supervisor.sweep`.
    """


class ExecutionNotFoundError(FlowEngineError):
    """No execution exists with the given id."""

    def __init__(self, execution_id: str) -> None:
        self.execution_id = execution_id
        super().__init__(f"Execution not found: {execution_id}")


class FlowNotFoundError(FlowEngineError):
    """The flow store has no flow with the given id."""

    def __init__(self, flow_id: str) -> None:
        self.flow_id = flow_id
        super().__init__(f"Flow not found: {flow_id}")


class FlowInactiveError(FlowEngineError):
    """The flow exists but is not active."""

    def __init__(self, flow_id: str) -> None:
        self.flow_id = flow_id
        super().__init__(f"Flow {flow_id} is not active")


class InvalidStateError(FlowEngineError):
    """The requested operation is not valid for the execution's current state."""
