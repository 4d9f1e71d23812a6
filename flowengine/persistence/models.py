"""Data models for persisted execution state."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionStatus(str, Enum):
    """Execution lifecycle: pending -> running -> completed | failed | cancelled."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)
ACTIVE_STATUSES = frozenset({ExecutionStatus.PENDING, ExecutionStatus.RUNNING})
RETRYABLE_STATUSES = frozenset({ExecutionStatus.FAILED, ExecutionStatus.CANCELLED})


class LogStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class LogEntry(BaseModel):
    """Record of one node dispatch within an execution."""

    node_id: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: dict[str, Any] = Field(default_factory=dict)
    status: LogStatus
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def failed(self) -> bool:
        return self.status is LogStatus.FAILED


class Execution(BaseModel):
    """Persisted runtime state of one flow (or sub-branch) run."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    flow_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    context: dict[str, Any] = Field(default_factory=dict)
    execution_log: list[LogEntry] = Field(default_factory=list)
    error_message: Optional[str] = None
    parent_execution_id: Optional[str] = None
    resume_context: Optional[dict[str, Any]] = None
    # Token of the scheduler run that claimed the execution; reset on retry.
    run_id: Optional[str] = None

    @property
    def is_root(self) -> bool:
        return self.parent_execution_id is None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def seed_context(self) -> dict[str, Any]:
        """Context the run was seeded with, recovered from the first log entry."""
        if self.execution_log:
            return dict(self.execution_log[0].input)
        return dict(self.context)
