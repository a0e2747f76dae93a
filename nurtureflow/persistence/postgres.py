"""PostgreSQL implementation of the run repository."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

import asyncpg

from ..contracts import RunStatus, WorkflowRun, utcnow
from ..utils.windows import as_utc
from .models import StepRecord
from .repository import RunRepository

_RUN_COLUMNS = (
    "id, workflow_id, contact_id, agency_id, current_node_id, status, "
    "next_run_at, context, created_at, updated_at, completed_at"
)


def _json(value: Any) -> Any:
    # asyncpg hands JSONB back as text unless a codec is registered
    return json.loads(value) if isinstance(value, str) else value


def _aware(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


class PostgresRunRepository(RunRepository):
    """Persist workflows and runs using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
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
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                graph JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_runs (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                contact_id TEXT NOT NULL,
                agency_id TEXT,
                current_node_id TEXT NOT NULL,
                status TEXT NOT NULL,
                next_run_at TIMESTAMPTZ,
                context JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_workflow_runs_due
            ON workflow_runs (status, next_run_at)
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS step_history (
                id SERIAL PRIMARY KEY,
                run_id TEXT NOT NULL,
                node_id TEXT NOT NULL,
                action TEXT,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                status TEXT,
                output JSONB
            )
            """
        )

    @staticmethod
    def _record_to_run(r: asyncpg.Record) -> WorkflowRun:
        return WorkflowRun(
            id=r["id"],
            workflow_id=r["workflow_id"],
            contact_id=r["contact_id"],
            agency_id=r["agency_id"],
            current_node_id=r["current_node_id"],
            status=RunStatus(r["status"]),
            next_run_at=r["next_run_at"],
            context=_json(r["context"]) or {},
            created_at=r["created_at"],
            updated_at=r["updated_at"],
            completed_at=r["completed_at"],
        )

    # ------------------------------------------------------------------
    async def save_workflow(self, workflow_id: str, graph: dict[str, Any]) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflows (id, graph) VALUES ($1, $2)
                ON CONFLICT (id) DO UPDATE SET graph = EXCLUDED.graph
                """,
                workflow_id,
                json.dumps(graph),
            )
        finally:
            await conn.close()

    async def get_workflow(self, workflow_id: str) -> dict[str, Any] | None:
        conn = await self._connect()
        try:
            value = await conn.fetchval(
                "SELECT graph FROM workflows WHERE id = $1", workflow_id
            )
        finally:
            await conn.close()
        return _json(value) if value is not None else None

    async def create_run(self, run: WorkflowRun) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                f"INSERT INTO workflow_runs ({_RUN_COLUMNS}) "
                "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)",
                run.id,
                run.workflow_id,
                run.contact_id,
                run.agency_id,
                run.current_node_id,
                run.status.value,
                _aware(run.next_run_at),
                json.dumps(run.context.to_flat()),
                _aware(run.created_at),
                _aware(run.updated_at),
                _aware(run.completed_at),
            )
        finally:
            await conn.close()

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_RUN_COLUMNS} FROM workflow_runs WHERE id = $1", run_id
            )
        finally:
            await conn.close()
        return self._record_to_run(row) if row else None

    async def list_runs(
        self, status: RunStatus | None = None, contact_id: str | None = None
    ) -> list[WorkflowRun]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"""
                SELECT {_RUN_COLUMNS} FROM workflow_runs
                WHERE ($1::text IS NULL OR status = $1)
                  AND ($2::text IS NULL OR contact_id = $2)
                ORDER BY created_at
                """,
                status.value if status is not None else None,
                contact_id,
            )
        finally:
            await conn.close()
        return [self._record_to_run(r) for r in rows]

    async def fetch_due_runs(self, now: datetime, limit: int) -> list[WorkflowRun]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"""
                SELECT {_RUN_COLUMNS} FROM workflow_runs
                WHERE status IN ('pending', 'waiting')
                  AND (next_run_at IS NULL OR next_run_at <= $1)
                ORDER BY next_run_at ASC NULLS FIRST, created_at ASC
                LIMIT $2
                """,
                as_utc(now),
                limit,
            )
        finally:
            await conn.close()
        return [self._record_to_run(r) for r in rows]

    async def claim_run(self, run_id: str) -> bool:
        conn = await self._connect()
        try:
            claimed = await conn.fetchval(
                """
                UPDATE workflow_runs SET status = 'running', updated_at = $2
                WHERE id = $1 AND status IN ('pending', 'waiting')
                RETURNING id
                """,
                run_id,
                utcnow(),
            )
        finally:
            await conn.close()
        return claimed is not None

    async def save_run(
        self, run: WorkflowRun, expected_status: RunStatus | None = None
    ) -> bool:
        conn = await self._connect()
        try:
            saved = await conn.fetchval(
                """
                UPDATE workflow_runs
                SET current_node_id = $1, status = $2, next_run_at = $3, context = $4,
                    agency_id = $5, updated_at = $6, completed_at = $7
                WHERE id = $8 AND ($9::text IS NULL OR status = $9)
                RETURNING id
                """,
                run.current_node_id,
                run.status.value,
                _aware(run.next_run_at),
                json.dumps(run.context.to_flat()),
                run.agency_id,
                _aware(run.updated_at),
                _aware(run.completed_at),
                run.id,
                expected_status.value if expected_status is not None else None,
            )
        finally:
            await conn.close()
        return saved is not None

    async def mark_step_started(self, run_id: str, node_id: str, action: str) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO step_history (run_id, node_id, action, started_at) "
                "VALUES ($1, $2, $3, $4)",
                run_id,
                node_id,
                action,
                utcnow(),
            )
        finally:
            await conn.close()

    async def mark_step_completed(
        self,
        run_id: str,
        node_id: str,
        status: str,
        output: dict | None = None,
    ) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                UPDATE step_history
                SET completed_at = $1, status = $2, output = $3
                WHERE id = (
                    SELECT MAX(id) FROM step_history
                    WHERE run_id = $4 AND node_id = $5 AND completed_at IS NULL
                )
                """,
                utcnow(),
                status,
                json.dumps(output or {}),
                run_id,
                node_id,
            )
        finally:
            await conn.close()

    async def list_steps(self, run_id: str) -> list[StepRecord]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT id, run_id, node_id, action, started_at, completed_at, status, output "
                "FROM step_history WHERE run_id = $1 ORDER BY id",
                run_id,
            )
        finally:
            await conn.close()
        return [
            StepRecord(
                id=r["id"],
                run_id=r["run_id"],
                node_id=r["node_id"],
                action=r["action"],
                started_at=r["started_at"],
                completed_at=r["completed_at"],
                status=r["status"],
                output=_json(r["output"]),
            )
            for r in rows
        ]
