"""Flow definition stores."""

from __future__ import annotations

from typing import Optional

from ..config import FlowEngineConfig, load_config
from .files import FileFlowStore, load_flow_file
from .store import FlowStore, InMemoryFlowStore


def get_flow_store(
    path: Optional[str] = None, config: Optional[FlowEngineConfig] = None
) -> FlowStore:
    """Return a file-backed store for ``path`` (or ``flows_path`` from config).

    Without a configured path an empty in-memory store is returned.
    """
    if path is None:
        config = config or load_config()
        path = config.flows_path
    if not path:
        return InMemoryFlowStore()
    return FileFlowStore(path)


__all__ = [
    "FileFlowStore",
    "FlowStore",
    "InMemoryFlowStore",
    "get_flow_store",
    "load_flow_file",
]
