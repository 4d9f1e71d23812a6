"""Pydantic models describing handler results."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from pydantic import BaseModel, Field

from ..persistence.models import LogStatus


class HandlerResult(BaseModel):
    """Outcome of a single node handler invocation."""

    output: Dict[str, Any] = Field(default_factory=dict)
    status: LogStatus = LogStatus.COMPLETED
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "HandlerResult":
        return cls(status=LogStatus.FAILED, error=error)


HandlerReturn = Union[HandlerResult, Mapping[str, Any], None]

# ``handler(context, config)``; may be a plain function or a coroutine function.
Handler = Callable[
    [Dict[str, Any], Dict[str, Any]],
    Union[HandlerReturn, Awaitable[HandlerReturn]],
]
