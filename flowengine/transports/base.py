"""Transport contract for handing execution requests to workers."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..constants import EXECUTIONS_TOPIC
from ..contracts import ExecutionRequest

RawMessageT = TypeVar("RawMessageT")


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Carry :class:`ExecutionRequest` messages from dispatchers to workers.

    A request only names an execution that already exists in the repository.
    Delivering one twice is harmless: the scheduler's ``pending -> running``
    claim lets a single worker run it and the others return early.
    """

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    @abc.abstractmethod
    async def publish(self, topic: str, request: ExecutionRequest) -> None:
        """Queue ``request`` for workers listening on ``topic``."""

    @abc.abstractmethod
    def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, ExecutionRequest]]:
        """Yield ``(raw_message, request)`` pairs from ``topic``.

        Stops after ``lifespan`` seconds, or never when it is ``None``.
        Messages that do not parse as requests are dropped, not yielded.
        """

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Mark the request as handled once its run has finished."""

    async def request_execution(
        self, execution_id: str, flow_id: Optional[str] = None, topic: str = EXECUTIONS_TOPIC
    ) -> ExecutionRequest:
        """Publish a request asking a worker to run ``execution_id``."""
        request = ExecutionRequest(execution_id=execution_id, flow_id=flow_id)
        await self.publish(topic, request)
        return request
