"""nexflow: scheduled automation flows with a step interpreter."""

from .contracts import (
    ExecutionContext,
    FlowConfig,
    FlowRecord,
    Step,
    generate_flow_id,
)
from .cron import is_due, next_run_after
from .execute import ExecutionOutcome, StepExecutor
from .persistence import RunRecord, StepOutcome, get_repository
from .runner import FlowRunner
from .scheduler import FlowScheduler
from .template import interpolate

__version__ = "0.1.0"
__all__ = [
    "ExecutionContext",
    "ExecutionOutcome",
    "FlowConfig",
    "FlowRecord",
    "FlowRunner",
    "FlowScheduler",
    "RunRecord",
    "Step",
    "StepExecutor",
    "StepOutcome",
    "generate_flow_id",
    "get_repository",
    "interpolate",
    "is_due",
    "next_run_after",
]
