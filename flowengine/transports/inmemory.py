"""In-memory transport for single-process deployments and tests."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, Optional, Tuple

from ..contracts import ExecutionRequest
from .base import BaseTransport


class InMemoryTransport(BaseTransport[Tuple[str, ExecutionRequest]]):
    """Simple in-process queue."""

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[Tuple[str, ExecutionRequest]]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def publish(self, topic: str, request: ExecutionRequest) -> None:
        raw = (request.to_json(), request)
        async with self._lock:
            self._queues[topic].append(raw)

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[Tuple[str, ExecutionRequest], ExecutionRequest]]:
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time:
                if loop.time() - start_time >= lifespan:
                    break

            raw_message = None
            async with self._lock:
                if self._queues[topic]:
                    raw_message = self._queues[topic].popleft()
            if raw_message is not None:
                yield raw_message, raw_message[1]
                continue

            await asyncio.sleep(0.05)

    async def ack(self, raw_message: Tuple[str, ExecutionRequest]) -> None:
        pass

    def pending(self, topic: str) -> int:
        """Number of queued messages on ``topic``."""
        return len(self._queues[topic])
