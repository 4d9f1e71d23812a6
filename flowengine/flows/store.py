"""Read-only flow store interface and in-memory implementation."""

from __future__ import annotations

from typing import Dict, Iterable, List, Protocol

from ..contracts import Flow
from ..errors import FlowNotFoundError


class FlowStore(Protocol):
    """Source of flow definitions. The engine only ever reads from it."""

    async def get_flow(self, flow_id: str) -> Flow:
        """Return the flow with ``flow_id`` or raise ``FlowNotFoundError``."""

    async def list_flows(self) -> List[Flow]:
        """Return every known flow."""


class InMemoryFlowStore(FlowStore):
    """Keep flow definitions in a dictionary. Useful for tests and embedding."""

    def __init__(self, flows: Iterable[Flow] = ()) -> None:
        self._flows: Dict[str, Flow] = {}
        for flow in flows:
            self.add(flow)

    def add(self, flow: Flow) -> None:
        self._flows[flow.id] = flow.model_copy(deep=True)

    def remove(self, flow_id: str) -> None:
        self._flows.pop(flow_id, None)

    async def get_flow(self, flow_id: str) -> Flow:
        flow = self._flows.get(flow_id)
        if flow is None:
            raise FlowNotFoundError(flow_id)
        return flow.model_copy(deep=True)

    async def list_flows(self) -> List[Flow]:
        return [flow.model_copy(deep=True) for flow in self._flows.values()]
