"""Transports that carry execution requests to workers."""

from __future__ import annotations

import os
from typing import Optional

from ..config import FlowEngineConfig, load_config
from .base import BaseTransport
from .inmemory import InMemoryTransport


def get_transport(
    backend: Optional[str] = None, config: Optional[FlowEngineConfig] = None
) -> BaseTransport:
    """Build the transport named by ``backend``, ``FLOWENGINE_TRANSPORT`` or the config.

    ``inmemory`` only reaches workers in the same process; separate worker
    processes need ``redis``.
    """
    config = config or load_config()
    backend = (backend or os.getenv("FLOWENGINE_TRANSPORT") or config.transport.backend).lower()
    if backend == "inmemory":
        return InMemoryTransport()
    if backend == "redis":
        from .redis import RedisTransport

        return RedisTransport.from_config(config.transport.redis)
    raise ValueError(f"Unsupported transport backend '{backend}'; expected inmemory or redis")


__all__ = ["BaseTransport", "InMemoryTransport", "get_transport"]
