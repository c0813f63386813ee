"""Polling scheduler that fires due flows."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from .constants import SCHEDULER_INTERVAL_SECONDS
from .contracts import FlowRecord
from .cron import is_due
from .persistence import FlowRepository, get_repository
from .persistence.models import RunRecord
from .runner import FlowRunner
from .utils.time import ensure_utc, utc_now

logger = logging.getLogger(__name__)


def should_run(flow: FlowRecord, now: datetime) -> bool:
    """Return ``True`` when ``flow`` is enabled and its schedule is due."""
    if not flow.enabled:
        return False
    if not flow.schedule or not flow.schedule.strip():
        return False
    return is_due(flow.schedule, flow.last_run_at, now)


class FlowScheduler:
    """Sweeps the store on a fixed interval and runs every due flow.

    Only one sweep is in flight at a time. When an interval elapses while the
    previous sweep is still running, that interval is skipped rather than
    queued, which prevents a long-running flow from being fired twice.
    """

    def __init__(
        self,
        repository: FlowRepository | None = None,
        runner: FlowRunner | None = None,
        interval: float = SCHEDULER_INTERVAL_SECONDS,
    ) -> None:
        self._repository = repository or get_repository()
        self._runner = runner or FlowRunner(repository=self._repository)
        self.interval = interval
        self._tick_guard = asyncio.Lock()
        self._tick_task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None

    @property
    def busy(self) -> bool:
        return self._tick_guard.locked()

    async def tick(self, now: Optional[datetime] = None) -> list[RunRecord]:
        """Run one sweep; returns the records produced (``[]`` when skipped).

        Failure to list flows propagates. Failures while running or recording
        an individual flow are logged and do not affect the other flows.
        """
        if self._tick_guard.locked():
            logger.warning("Previous scheduler tick still running; skipping")
            return []

        async with self._tick_guard:
            flows = await self._repository.list_flows()
            now = ensure_utc(now) or utc_now()
            due = [flow for flow in flows if should_run(flow, now)]
            if not due:
                return []

            logger.info(f"{len(due)} flow(s) due at {now.isoformat()}")
            results = await asyncio.gather(*(self._run_due(flow) for flow in due))
            return [record for record in results if record is not None]

    async def _run_due(self, flow: FlowRecord) -> Optional[RunRecord]:
        try:
            logger.info(
                f'Cron triggering "{flow.name}" ({flow.id}) scheduled {flow.schedule}'
            )
            record = await self._runner.run_now(flow, trigger="cron")
            await self._repository.append_run(record)
            return record
        except Exception:
            logger.exception(f'Failed to run "{flow.name}" ({flow.id})')
            return None

    def _spawn_tick(self) -> None:
        if self.busy:
            logger.warning("Previous scheduler tick still running; skipping interval")
            return
        self._tick_task = asyncio.create_task(self._guarded_tick())

    async def _guarded_tick(self) -> None:
        try:
            await self.tick()
        except Exception:
            logger.exception("Scheduler tick failed")

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Drive ticks every ``interval`` seconds until stopped.

        Args:
            lifespan: Maximum time in seconds to keep running. If None, runs
                until :meth:`stop` is called.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        self._stopping = asyncio.Event()
        logger.info(f"Starting flow scheduler (interval {self.interval}s)")

        try:
            while not self._stopping.is_set():
                self._spawn_tick()
                timeout = self.interval
                if lifespan is not None:
                    remaining = lifespan - (loop.time() - start_time)
                    if remaining <= 0:
                        break
                    timeout = min(timeout, remaining)
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout)
                except asyncio.TimeoutError:
                    pass
                if lifespan is not None and loop.time() - start_time >= lifespan:
                    break
        finally:
            if self._tick_task is not None and not self._tick_task.done():
                await self._tick_task
            logger.info("Flow scheduler stopped")

    def stop(self) -> None:
        """Ask a running :meth:`start` loop to exit after the current tick."""
        if self._stopping is not None:
            self._stopping.set()
