"""In-memory implementation of the flow repository."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from ..constants import HISTORY_LIMIT
from ..contracts import FlowConfig, FlowRecord
from ..errors import FlowAlreadyExistsError, FlowNotFoundError
from ..utils.time import utc_now
from .models import RunRecord
from .repository import FlowRepository

logger = logging.getLogger(__name__)


class InMemoryFlowRepository(FlowRepository):
    """Store flows and run history in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self, history_limit: int = HISTORY_LIMIT) -> None:
        self.history_limit = history_limit
        self._flows: Dict[str, FlowRecord] = {}
        self._history: Dict[str, List[RunRecord]] = {}
        self._lock = asyncio.Lock()

    def _require(self, flow_id: str) -> FlowRecord:
        flow = self._flows.get(flow_id)
        if flow is None:
            raise FlowNotFoundError(flow_id)
        return flow

    # ------------------------------------------------------------------
    async def create_flow(self, config: FlowConfig) -> FlowRecord:
        record = FlowRecord.from_config(config)
        async with self._lock:
            if record.id in self._flows:
                raise FlowAlreadyExistsError(record.id)
            self._flows[record.id] = record
        return record

    async def update_flow(self, flow_id: str, config: FlowConfig) -> FlowRecord:
        async with self._lock:
            current = self._require(flow_id)
            updated = FlowRecord.from_config(
                config,
                flow_id=flow_id,
                created_at=current.created_at,
                last_run_at=current.last_run_at,
            )
            self._flows[flow_id] = updated
        return updated

    async def delete_flow(self, flow_id: str) -> None:
        async with self._lock:
            self._require(flow_id)
            del self._flows[flow_id]
            self._history.pop(flow_id, None)

    async def get_flow(self, flow_id: str) -> FlowRecord:
        return self._require(flow_id)

    async def list_flows(self) -> list[FlowRecord]:
        return list(self._flows.values())

    async def set_enabled(self, flow_id: str, enabled: bool) -> FlowRecord:
        async with self._lock:
            current = self._require(flow_id)
            updated = current.model_copy(
                update={"enabled": enabled, "updated_at": utc_now()}
            )
            self._flows[flow_id] = updated
        return updated

    async def is_enabled(self, flow_id: str) -> bool:
        return self._require(flow_id).enabled

    async def append_run(self, record: RunRecord) -> None:
        async with self._lock:
            history = self._history.setdefault(record.flow_id, [])
            history.insert(0, record)
            del history[self.history_limit :]

            flow = self._flows.get(record.flow_id)
            if flow is None:
                logger.warning(
                    f"Run {record.id} recorded for missing flow {record.flow_id}"
                )
                return
            self._flows[record.flow_id] = flow.model_copy(
                update={"last_run_at": record.finished_at}
            )

    async def list_runs(
        self, flow_id: str, limit: Optional[int] = None
    ) -> list[RunRecord]:
        self._require(flow_id)
        history = self._history.get(flow_id, [])
        return list(history if limit is None else history[:limit])
