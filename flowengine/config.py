from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_MAX_CONCURRENT_EXECUTIONS,
    DEFAULT_MAX_FANOUT_DEPTH,
    DEFAULT_MAX_LOOP_ITERATIONS,
    DEFAULT_MAX_PARALLEL_CHILDREN,
    DEFAULT_STUCK_THRESHOLD,
    DEFAULT_SWEEP_INTERVAL,
)


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    prefix: str = "flowengine"


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class SchedulerConfig(BaseModel):
    """Limits applied while walking a flow graph."""

    max_loop_iterations: int = Field(default=DEFAULT_MAX_LOOP_ITERATIONS, ge=1)
    max_fanout_depth: int = Field(default=DEFAULT_MAX_FANOUT_DEPTH, ge=1)
    max_parallel_children: int = Field(default=DEFAULT_MAX_PARALLEL_CHILDREN, ge=1)


class SupervisorConfig(BaseModel):
    """Stuck-execution sweep settings, in seconds."""

    sweep_interval: float = Field(default=DEFAULT_SWEEP_INTERVAL, gt=0)
    stuck_threshold: float = Field(default=DEFAULT_STUCK_THRESHOLD, gt=0)


class WorkerConfig(BaseModel):
    max_concurrent_executions: int = Field(default=DEFAULT_MAX_CONCURRENT_EXECUTIONS, ge=1)


class FlowEngineConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    database_url: Optional[str] = None
    flows_path: Optional[str] = None
    log_level: str = "INFO"
    scheduler: SchedulerConfig = SchedulerConfig()
    supervisor: SupervisorConfig = SupervisorConfig()
    worker: WorkerConfig = WorkerConfig()


def load_config(path: Optional[str] = None) -> FlowEngineConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to FLOWENGINE_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("FLOWENGINE_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = FlowEngineConfig(**data)
    else:
        config = FlowEngineConfig()

    env_db_url = os.getenv("FLOWENGINE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_flows = os.getenv("FLOWENGINE_FLOWS_PATH")
    if env_flows:
        config.flows_path = env_flows
    env_level = os.getenv("FLOWENGINE_LOG_LEVEL")
    if env_level:
        config.log_level = env_level
    return config
