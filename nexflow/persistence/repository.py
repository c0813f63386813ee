"""Repository abstraction for flow definitions and run history."""

from __future__ import annotations

from typing import Optional, Protocol

from ..contracts import FlowConfig, FlowRecord
from .models import RunRecord


class FlowRepository(Protocol):
    """Protocol for flow/run persistence backends.

    Implementations must make ``append_run`` atomic per flow id: the history
    push, the truncation to ``history_limit`` and the ``last_run_at`` update
    happen as one read-modify-write so concurrent runs never lose updates.
    """

    history_limit: int

    async def create_flow(self, config: FlowConfig) -> FlowRecord:
        """Store a new flow under its derived id."""

    async def update_flow(self, flow_id: str, config: FlowConfig) -> FlowRecord:
        """Replace a flow definition, keeping identity and run bookkeeping."""

    async def delete_flow(self, flow_id: str) -> None:
        """Remove a flow together with its run history."""

    async def get_flow(self, flow_id: str) -> FlowRecord:
        """Retrieve a flow by id or raise ``FlowNotFoundError``."""

    async def list_flows(self) -> list[FlowRecord]:
        """Return all stored flows."""

    async def set_enabled(self, flow_id: str, enabled: bool) -> FlowRecord:
        """Toggle whether the scheduler considers the flow."""

    async def is_enabled(self, flow_id: str) -> bool:
        """Return the flow's enabled flag."""

    async def append_run(self, record: RunRecord) -> None:
        """Prepend ``record`` to its flow's capped history."""

    async def list_runs(
        self, flow_id: str, limit: Optional[int] = None
    ) -> list[RunRecord]:
        """Return the flow's run history, most recent first."""
