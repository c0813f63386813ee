"""Data models for persisted run history."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..contracts import FlowConfig
from ..utils.time import utc_now

RunStatus = Literal["success", "failure"]
Trigger = Literal["manual", "cron"]


class StepOutcome(BaseModel):
    """Result of one executed step."""

    step_id: str
    output: Optional[Any] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


class RunRecord(BaseModel):
    """Immutable outcome of one execution of a flow."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    flow_id: str
    name: str
    status: RunStatus
    trigger: Trigger = "manual"
    started_at: datetime
    finished_at: datetime
    log_lines: List[str] = Field(default_factory=list)
    steps: List[StepOutcome] = Field(default_factory=list)
    flow: FlowConfig

    @property
    def succeeded(self) -> bool:
        return self.status == "success"
