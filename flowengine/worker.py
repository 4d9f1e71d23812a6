"""Worker that runs executions published on a transport."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Set

from .constants import DEFAULT_MAX_CONCURRENT_EXECUTIONS, EXECUTIONS_TOPIC
from .contracts import ExecutionRequest
from .errors import ExecutionNotFoundError
from .scheduler import ExecutionScheduler
from .transports import BaseTransport

logger = logging.getLogger(__name__)


class FlowWorker:
    """Consume :class:`ExecutionRequest` messages and run them.

    At most ``max_concurrent`` executions are in flight; the worker stops
    pulling new messages until a slot frees up.
    """

    def __init__(
        self,
        transport: BaseTransport,
        scheduler: ExecutionScheduler,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT_EXECUTIONS,
        topic: str = EXECUTIONS_TOPIC,
    ) -> None:
        self._transport = transport
        self._scheduler = scheduler
        self._topic = topic
        self.max_concurrent = max_concurrent
        self.processed = 0
        self.crashed = 0

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Listen for execution requests until ``lifespan`` seconds have passed."""
        slots = asyncio.Semaphore(self.max_concurrent)
        tasks: Set[asyncio.Task] = set()
        logger.info(f"Worker listening on '{self._topic}' (max {self.max_concurrent} concurrent)")

        async for raw_message, request in self._transport.subscribe(self._topic, lifespan=lifespan):
            await slots.acquire()
            task = asyncio.create_task(self._handle(raw_message, request, slots))
            tasks.add(task)
            task.add_done_callback(tasks.discard)

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Worker stopped")

    async def _handle(
        self, raw_message: Any, request: ExecutionRequest, slots: asyncio.Semaphore
    ) -> None:
        try:
            execution = await self._scheduler.run(request.execution_id)
            logger.info(f"Execution {execution.id} finished as {execution.status.value}")
        except ExecutionNotFoundError:
            logger.warning(f"Dropping request for unknown execution {request.execution_id}")
        except Exception:
            self.crashed += 1
            logger.exception(f"Execution {request.execution_id} crashed in worker")
        finally:
            self.processed += 1
            await self._transport.ack(raw_message)
            slots.release()
