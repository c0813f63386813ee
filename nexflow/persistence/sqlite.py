"""SQLite implementation of the flow repository."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from ..constants import HISTORY_LIMIT
from ..contracts import FlowConfig, FlowRecord
from ..errors import FlowAlreadyExistsError, FlowNotFoundError
from ..utils.time import utc_now
from .models import RunRecord
from .repository import FlowRepository


class SQLiteFlowRepository(FlowRepository):
    """Persist flows and run history using SQLite.

    Flows and runs are stored as JSON documents. Every write runs inside a
    ``BEGIN IMMEDIATE`` transaction, so read-modify-write sequences such as
    :meth:`append_run` are atomic even across processes sharing the file.
    """

    def __init__(self, db_path: str | Path, history_limit: int = HISTORY_LIMIT):
        self.db_path = str(db_path)
        self.history_limit = history_limit
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS flows (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS runs (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL,
                    flow_id TEXT NOT NULL,
                    data TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS runs_flow_id ON runs (flow_id, seq)"
            )

    # ------------------------------------------------------------------
    # Helper methods
    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(query, params).fetchall()

    @staticmethod
    def _read_flow(conn: sqlite3.Connection, flow_id: str) -> FlowRecord:
        row = conn.execute("SELECT data FROM flows WHERE id = ?", (flow_id,)).fetchone()
        if row is None:
            raise FlowNotFoundError(flow_id)
        return FlowRecord.model_validate_json(row["data"])

    @staticmethod
    def _write_flow(conn: sqlite3.Connection, record: FlowRecord) -> None:
        conn.execute(
            "UPDATE flows SET data = ? WHERE id = ?",
            (record.model_dump_json(), record.id),
        )

    def _insert_flow(self, record: FlowRecord) -> None:
        with self._transaction() as conn:
            exists = conn.execute(
                "SELECT 1 FROM flows WHERE id = ?", (record.id,)
            ).fetchone()
            if exists:
                raise FlowAlreadyExistsError(record.id)
            conn.execute(
                "INSERT INTO flows (id, data) VALUES (?, ?)",
                (record.id, record.model_dump_json()),
            )

    def _replace_flow(self, flow_id: str, config: FlowConfig) -> FlowRecord:
        with self._transaction() as conn:
            current = self._read_flow(conn, flow_id)
            updated = FlowRecord.from_config(
                config,
                flow_id=flow_id,
                created_at=current.created_at,
                last_run_at=current.last_run_at,
            )
            self._write_flow(conn, updated)
        return updated

    def _remove_flow(self, flow_id: str) -> None:
        with self._transaction() as conn:
            self._read_flow(conn, flow_id)
            conn.execute("DELETE FROM flows WHERE id = ?", (flow_id,))
            conn.execute("DELETE FROM runs WHERE flow_id = ?", (flow_id,))

    def _toggle_flow(self, flow_id: str, enabled: bool) -> FlowRecord:
        with self._transaction() as conn:
            current = self._read_flow(conn, flow_id)
            updated = current.model_copy(
                update={"enabled": enabled, "updated_at": utc_now()}
            )
            self._write_flow(conn, updated)
        return updated

    def _get_flow(self, flow_id: str) -> FlowRecord:
        with self._lock:
            return self._read_flow(self._conn, flow_id)

    def _insert_run(self, record: RunRecord) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO runs (id, flow_id, data) VALUES (?, ?, ?)",
                (record.id, record.flow_id, record.model_dump_json()),
            )
            conn.execute(
                """
                DELETE FROM runs
                WHERE flow_id = ? AND seq NOT IN (
                    SELECT seq FROM runs WHERE flow_id = ? ORDER BY seq DESC LIMIT ?
                )
                """,
                (record.flow_id, record.flow_id, self.history_limit),
            )
            try:
                flow = self._read_flow(conn, record.flow_id)
            except FlowNotFoundError:
                return
            self._write_flow(
                conn, flow.model_copy(update={"last_run_at": record.finished_at})
            )

    def _select_runs(self, flow_id: str, limit: Optional[int]) -> list[RunRecord]:
        with self._lock:
            self._read_flow(self._conn, flow_id)
            rows = self._conn.execute(
                "SELECT data FROM runs WHERE flow_id = ? ORDER BY seq DESC LIMIT ?",
                (flow_id, -1 if limit is None else limit),
            ).fetchall()
        return [RunRecord.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    # Repository API
    async def create_flow(self, config: FlowConfig) -> FlowRecord:
        record = FlowRecord.from_config(config)
        await asyncio.to_thread(self._insert_flow, record)
        return record

    async def update_flow(self, flow_id: str, config: FlowConfig) -> FlowRecord:
        return await asyncio.to_thread(self._replace_flow, flow_id, config)

    async def delete_flow(self, flow_id: str) -> None:
        await asyncio.to_thread(self._remove_flow, flow_id)

    async def get_flow(self, flow_id: str) -> FlowRecord:
        return await asyncio.to_thread(self._get_flow, flow_id)

    async def list_flows(self) -> list[FlowRecord]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT data FROM flows ORDER BY id"
        )
        return [FlowRecord.model_validate_json(r["data"]) for r in rows]

    async def set_enabled(self, flow_id: str, enabled: bool) -> FlowRecord:
        return await asyncio.to_thread(self._toggle_flow, flow_id, enabled)

    async def is_enabled(self, flow_id: str) -> bool:
        flow = await self.get_flow(flow_id)
        return flow.enabled

    async def append_run(self, record: RunRecord) -> None:
        await asyncio.to_thread(self._insert_run, record)

    async def list_runs(
        self, flow_id: str, limit: Optional[int] = None
    ) -> list[RunRecord]:
        return await asyncio.to_thread(self._select_runs, flow_id, limit)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
