"""Flow graph contracts consumed by the execution engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class NodeKind(str, Enum):
    """Closed set of node kinds the scheduler knows how to transition."""

    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"
    PARALLEL = "parallel"
    LOOP = "loop"
    TERMINAL = "terminal"

    @classmethod
    def from_tag(cls, tag: str) -> "NodeKind":
        """Map a node type tag to its kind; unknown tags are actions."""
        try:
            kind = cls(tag.lower())
        except ValueError:
            return cls.ACTION
        return kind


class Node(BaseModel):
    """A single node definition. The engine never mutates nodes."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    type: str
    config: Dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("config", "data")
    )
    label: Optional[str] = None

    @property
    def kind(self) -> NodeKind:
        return NodeKind.from_tag(self.type)

    @property
    def display_name(self) -> str:
        return self.label or self.config.get("label") or self.id

    @property
    def disabled(self) -> bool:
        """Disabled nodes are skipped and the run passes through them."""
        return bool(self.config.get("disabled") or self.config.get("nodeDisabled"))


class Edge(BaseModel):
    """Directed connection between two nodes of the same flow."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    from_node_id: str = Field(validation_alias=AliasChoices("from_node_id", "source"))
    to_node_id: str = Field(validation_alias=AliasChoices("to_node_id", "target"))
    condition_label: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("condition_label", "sourceHandle", "label"),
    )


class Flow(BaseModel):
    """Stored automation definition; read as an immutable snapshot per run."""

    id: str
    name: str = ""
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    active: bool = True

    def get_node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def outgoing(self, node_id: str) -> List[Edge]:
        """Return outgoing edges of ``node_id`` in declaration order."""
        return [edge for edge in self.edges if edge.from_node_id == node_id]

    def incoming(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.to_node_id == node_id]

    def trigger_nodes(self) -> List[Node]:
        return [node for node in self.nodes if node.kind is NodeKind.TRIGGER]


class ExecutionRequest(BaseModel):
    """Envelope published on a transport asking a worker to run an execution."""

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    execution_id: str
    flow_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        """Serialize message to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "ExecutionRequest":
        """Deserialize message from JSON."""
        return cls.model_validate_json(data)
