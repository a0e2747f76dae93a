"""SQLite implementation of the run repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from ..contracts import RunStatus, WorkflowRun, utcnow
from ..utils.windows import as_utc
from .models import StepRecord
from .repository import RunRepository

# Fixed-width UTC text so that string order equals time order.
_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"

_RUN_COLUMNS = (
    "id, workflow_id, contact_id, agency_id, current_node_id, status, "
    "next_run_at, context, created_at, updated_at, completed_at"
)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).strftime(_TS_FORMAT) if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteRunRepository(RunRepository):
    """Persist workflows and runs using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        # one connection shared by worker threads
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                graph TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_runs (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                contact_id TEXT NOT NULL,
                agency_id TEXT,
                current_node_id TEXT NOT NULL,
                status TEXT NOT NULL,
                next_run_at TEXT,
                context TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT,
                completed_at TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_workflow_runs_due
            ON workflow_runs (status, next_run_at)
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS step_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id TEXT NOT NULL,
                node_id TEXT NOT NULL,
                action TEXT,
                started_at TEXT,
                completed_at TEXT,
                status TEXT,
                output TEXT
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    @staticmethod
    def _row_to_run(row: sqlite3.Row) -> WorkflowRun:
        return WorkflowRun(
            id=row["id"],
            workflow_id=row["workflow_id"],
            contact_id=row["contact_id"],
            agency_id=row["agency_id"],
            current_node_id=row["current_node_id"],
            status=RunStatus(row["status"]),
            next_run_at=_parse_ts(row["next_run_at"]),
            context=json.loads(row["context"]) if row["context"] else {},
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            completed_at=_parse_ts(row["completed_at"]),
        )

    # ------------------------------------------------------------------
    # Repository API
    async def save_workflow(self, workflow_id: str, graph: dict[str, Any]) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflows (id, graph) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET graph = excluded.graph
            """,
            workflow_id,
            json.dumps(graph),
        )

    async def get_workflow(self, workflow_id: str) -> dict[str, Any] | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT graph FROM workflows WHERE id = ?", workflow_id
        )
        if not row:
            return None
        return json.loads(row["graph"])

    async def create_run(self, run: WorkflowRun) -> None:
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO workflow_runs ({_RUN_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            run.id,
            run.workflow_id,
            run.contact_id,
            run.agency_id,
            run.current_node_id,
            run.status.value,
            _ts(run.next_run_at),
            json.dumps(run.context.to_flat()),
            _ts(run.created_at),
            _ts(run.updated_at),
            _ts(run.completed_at),
        )

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_RUN_COLUMNS} FROM workflow_runs WHERE id = ?",
            run_id,
        )
        return self._row_to_run(row) if row else None

    async def list_runs(
        self, status: RunStatus | None = None, contact_id: str | None = None
    ) -> list[WorkflowRun]:
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if contact_id is not None:
            clauses.append("contact_id = ?")
            params.append(contact_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_RUN_COLUMNS} FROM workflow_runs {where} ORDER BY created_at, rowid",
            *params,
        )
        return [self._row_to_run(r) for r in rows]

    async def fetch_due_runs(self, now: datetime, limit: int) -> list[WorkflowRun]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"""
            SELECT {_RUN_COLUMNS} FROM workflow_runs
            WHERE status IN ('pending', 'waiting')
              AND (next_run_at IS NULL OR next_run_at <= ?)
            ORDER BY next_run_at IS NOT NULL, next_run_at, created_at, rowid
            LIMIT ?
            """,
            _ts(now),
            limit,
        )
        return [self._row_to_run(r) for r in rows]

    async def claim_run(self, run_id: str) -> bool:
        count = await asyncio.to_thread(
            self._execute,
            """
            UPDATE workflow_runs SET status = 'running', updated_at = ?
            WHERE id = ? AND status IN ('pending', 'waiting')
            """,
            _ts(utcnow()),
            run_id,
        )
        return count == 1

    async def save_run(
        self, run: WorkflowRun, expected_status: RunStatus | None = None
    ) -> bool:
        query = """
            UPDATE workflow_runs
            SET current_node_id = ?, status = ?, next_run_at = ?, context = ?,
                agency_id = ?, updated_at = ?, completed_at = ?
            WHERE id = ?
            """
        params: list[Any] = [
            run.current_node_id,
            run.status.value,
            _ts(run.next_run_at),
            json.dumps(run.context.to_flat()),
            run.agency_id,
            _ts(run.updated_at),
            _ts(run.completed_at),
            run.id,
        ]
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status.value)
        count = await asyncio.to_thread(self._execute, query, *params)
        return count == 1

    async def mark_step_started(self, run_id: str, node_id: str, action: str) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO step_history (run_id, node_id, action, started_at) VALUES (?, ?, ?, ?)",
            run_id,
            node_id,
            action,
            _ts(utcnow()),
        )

    async def mark_step_completed(
        self,
        run_id: str,
        node_id: str,
        status: str,
        output: dict | None = None,
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE step_history
            SET completed_at = ?, status = ?, output = ?
            WHERE id = (
                SELECT MAX(id) FROM step_history
                WHERE run_id = ? AND node_id = ? AND completed_at IS NULL
            )
            """,
            _ts(utcnow()),
            status,
            json.dumps(output or {}),
            run_id,
            node_id,
        )

    async def list_steps(self, run_id: str) -> list[StepRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT id, run_id, node_id, action, started_at, completed_at, status, output "
            "FROM step_history WHERE run_id = ? ORDER BY id",
            run_id,
        )
        return [
            StepRecord(
                id=r["id"],
                run_id=r["run_id"],
                node_id=r["node_id"],
                action=r["action"],
                started_at=_parse_ts(r["started_at"]),
                completed_at=_parse_ts(r["completed_at"]),
                status=r["status"],
                output=json.loads(r["output"]) if r["output"] else None,
            )
            for r in rows
        ]
