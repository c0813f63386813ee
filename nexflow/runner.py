"""Run orchestration: turns a flow into an immutable run record."""

from __future__ import annotations

import logging

import httpx

from .constants import DEFAULT_HTTP_TIMEOUT_SECONDS
from .contracts import ExecutionContext, FlowRecord
from .execute import ExecutionOutcome, StepExecutor
from .persistence import FlowRepository, get_repository
from .persistence.models import RunRecord, StepOutcome, Trigger
from .utils.time import utc_now

logger = logging.getLogger(__name__)


class FlowRunner:
    """Runs flows on demand or on behalf of the scheduler.

    ``run_now`` never raises for problems inside the flow: interpreter
    failures become a failing ``execution`` step outcome so every run yields
    a record. Store errors from ``run_flow`` propagate to the caller.
    """

    def __init__(
        self,
        repository: FlowRepository | None = None,
        client: httpx.AsyncClient | None = None,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    ) -> None:
        self._repository = repository
        self._executor = StepExecutor(client=client, timeout=http_timeout)

    @property
    def repository(self) -> FlowRepository:
        if self._repository is None:
            self._repository = get_repository()
        return self._repository

    async def run_now(self, flow: FlowRecord, trigger: Trigger = "manual") -> RunRecord:
        """Execute ``flow`` once and build its run record."""
        started_at = utc_now()
        context = ExecutionContext()
        context.log(f"[system] Triggered by {trigger} at {started_at.isoformat()}")
        logger.info(
            f"Starting flow {flow.name} ({flow.id}) with {len(flow.steps)} step(s)"
        )

        try:
            outcome = await self._executor.execute(flow.steps, context)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.exception(f"Execution of flow {flow.id} aborted")
            outcome = ExecutionOutcome(
                success=False,
                outcomes=[StepOutcome(step_id="execution", error=message)],
            )
            context.log(message)

        status = "success" if outcome.success else "failure"
        logger.info(f"Finished flow {flow.name} ({flow.id}) with status {status}")

        return RunRecord(
            flow_id=flow.id,
            name=flow.name,
            status=status,
            trigger=trigger,
            started_at=started_at,
            finished_at=utc_now(),
            log_lines=list(context.log_lines),
            steps=outcome.outcomes,
            flow=flow.definition(),
        )

    async def run_flow(
        self, flow_id: str, trigger: Trigger = "manual"
    ) -> RunRecord:
        """Load, run and record a flow by id ("run now")."""
        flow = await self.repository.get_flow(flow_id)
        record = await self.run_now(flow, trigger=trigger)
        await self.repository.append_run(record)
        return record
