"""flowengine: stateful execution of node/edge automation flows."""

from .contracts import Edge, ExecutionRequest, Flow, Node, NodeKind
from .dispatch import FlowDispatcher
from .execute import NodeExecutor
from .flows import FileFlowStore, FlowStore, InMemoryFlowStore, get_flow_store
from .persistence import Execution, ExecutionStatus, LogEntry, get_repository
from .registry import HandlerRegistry, HandlerResult
from .scheduler import ExecutionScheduler
from .supervisor import Supervisor
from .transports import get_transport
from .validation import validate_flow
from .worker import FlowWorker

__version__ = "0.1.0"
__all__ = [
    "Edge",
    "Execution",
    "ExecutionRequest",
    "ExecutionScheduler",
    "ExecutionStatus",
    "FileFlowStore",
    "Flow",
    "FlowDispatcher",
    "FlowStore",
    "FlowWorker",
    "HandlerRegistry",
    "HandlerResult",
    "InMemoryFlowStore",
    "LogEntry",
    "Node",
    "NodeExecutor",
    "NodeKind",
    "Supervisor",
    "get_flow_store",
    "get_repository",
    "get_transport",
    "validate_flow",
]
