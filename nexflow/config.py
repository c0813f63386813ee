from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    HISTORY_LIMIT,
    SCHEDULER_INTERVAL_SECONDS,
)


class SchedulerConfig(BaseModel):
    """Scheduler loop settings."""

    interval_seconds: float = Field(default=SCHEDULER_INTERVAL_SECONDS, gt=0)


class HttpConfig(BaseModel):
    """Outbound HTTP settings for fetch and notify steps."""

    timeout_seconds: float = Field(default=DEFAULT_HTTP_TIMEOUT_SECONDS, gt=0)


class NexflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    history_limit: int = Field(default=HISTORY_LIMIT, gt=0)
    scheduler: SchedulerConfig = SchedulerConfig()
    http: HttpConfig = HttpConfig()


def load_config(path: Optional[str] = None) -> NexflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to NEXFLOW_CONFIG env
            variable or 'nexflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("NEXFLOW_CONFIG", "nexflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = NexflowConfig(**data)
    else:
        config = NexflowConfig()

    env_db_url = os.getenv("NEXFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
