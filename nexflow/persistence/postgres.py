"""PostgreSQL implementation of the flow repository."""

from __future__ import annotations

from typing import Optional

import asyncpg

from ..constants import HISTORY_LIMIT
from ..contracts import FlowConfig, FlowRecord
from ..errors import FlowAlreadyExistsError, FlowNotFoundError
from ..utils.time import utc_now
from .models import RunRecord
from .repository import FlowRepository


class PostgresFlowRepository(FlowRepository):
    """Persist flows and run history using PostgreSQL.

    Documents are stored as JSONB. Writes lock the flow row with
    ``SELECT ... FOR UPDATE`` so concurrent ``append_run`` calls for the same
    flow serialize instead of overwriting each other.
    """

    def __init__(self, dsn: str, history_limit: int = HISTORY_LIMIT):
        self._dsn = dsn
        self.history_limit = history_limit
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS nexflow_flows (
                id TEXT PRIMARY KEY,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS nexflow_runs (
                seq BIGSERIAL PRIMARY KEY,
                id TEXT NOT NULL,
                flow_id TEXT NOT NULL,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS nexflow_runs_flow_id ON nexflow_runs (flow_id, seq)"
        )

    @staticmethod
    async def _lock_flow(conn: asyncpg.Connection, flow_id: str) -> FlowRecord:
        row = await conn.fetchrow(
            "SELECT data FROM nexflow_flows WHERE id = $1 FOR UPDATE", flow_id
        )
        if row is None:
            raise FlowNotFoundError(flow_id)
        return FlowRecord.model_validate_json(row["data"])

    @staticmethod
    async def _write_flow(conn: asyncpg.Connection, record: FlowRecord) -> None:
        await conn.execute(
            "UPDATE nexflow_flows SET data = $1::jsonb WHERE id = $2",
            record.model_dump_json(),
            record.id,
        )

    # ------------------------------------------------------------------
    async def create_flow(self, config: FlowConfig) -> FlowRecord:
        record = FlowRecord.from_config(config)
        conn = await self._connect()
        try:
            inserted = await conn.fetchval(
                """
                INSERT INTO nexflow_flows (id, data) VALUES ($1, $2::jsonb)
                ON CONFLICT (id) DO NOTHING
                RETURNING id
                """,
                record.id,
                record.model_dump_json(),
            )
        finally:
            await conn.close()
        if inserted is None:
            raise FlowAlreadyExistsError(record.id)
        return record

    async def update_flow(self, flow_id: str, config: FlowConfig) -> FlowRecord:
        conn = await self._connect()
        try:
            async with conn.transaction():
                current = await self._lock_flow(conn, flow_id)
                updated = FlowRecord.from_config(
                    config,
                    flow_id=flow_id,
                    created_at=current.created_at,
                    last_run_at=current.last_run_at,
                )
                await self._write_flow(conn, updated)
        finally:
            await conn.close()
        return updated

    async def delete_flow(self, flow_id: str) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await self._lock_flow(conn, flow_id)
                await conn.execute("DELETE FROM nexflow_flows WHERE id = $1", flow_id)
                await conn.execute(
                    "DELETE FROM nexflow_runs WHERE flow_id = $1", flow_id
                )
        finally:
            await conn.close()

    async def get_flow(self, flow_id: str) -> FlowRecord:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT data FROM nexflow_flows WHERE id = $1", flow_id
            )
        finally:
            await conn.close()
        if row is None:
            raise FlowNotFoundError(flow_id)
        return FlowRecord.model_validate_json(row["data"])

    async def list_flows(self) -> list[FlowRecord]:
        conn = await self._connect()
        try:
            rows = await conn.fetch("SELECT data FROM nexflow_flows ORDER BY id")
        finally:
            await conn.close()
        return [FlowRecord.model_validate_json(r["data"]) for r in rows]

    async def set_enabled(self, flow_id: str, enabled: bool) -> FlowRecord:
        conn = await self._connect()
        try:
            async with conn.transaction():
                current = await self._lock_flow(conn, flow_id)
                updated = current.model_copy(
                    update={"enabled": enabled, "updated_at": utc_now()}
                )
                await self._write_flow(conn, updated)
        finally:
            await conn.close()
        return updated

    async def is_enabled(self, flow_id: str) -> bool:
        flow = await self.get_flow(flow_id)
        return flow.enabled

    async def append_run(self, record: RunRecord) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                flow_row = await conn.fetchrow(
                    "SELECT data FROM nexflow_flows WHERE id = $1 FOR UPDATE",
                    record.flow_id,
                )
                await conn.execute(
                    "INSERT INTO nexflow_runs (id, flow_id, data) VALUES ($1, $2, $3::jsonb)",
                    record.id,
                    record.flow_id,
                    record.model_dump_json(),
                )
                await conn.execute(
                    """
                    DELETE FROM nexflow_runs
                    WHERE flow_id = $1 AND seq NOT IN (
                        SELECT seq FROM nexflow_runs WHERE flow_id = $1
                        ORDER BY seq DESC LIMIT $2
                    )
                    """,
                    record.flow_id,
                    self.history_limit,
                )
                if flow_row is not None:
                    flow = FlowRecord.model_validate_json(flow_row["data"])
                    await self._write_flow(
                        conn,
                        flow.model_copy(update={"last_run_at": record.finished_at}),
                    )
        finally:
            await conn.close()

    async def list_runs(
        self, flow_id: str, limit: Optional[int] = None
    ) -> list[RunRecord]:
        await self.get_flow(flow_id)
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT data FROM nexflow_runs WHERE flow_id = $1 ORDER BY seq DESC LIMIT $2",
                flow_id,
                limit,
            )
        finally:
            await conn.close()
        return [RunRecord.model_validate_json(r["data"]) for r in rows]
