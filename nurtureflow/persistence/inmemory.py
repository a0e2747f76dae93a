"""In-memory implementation of the run repository."""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any, Dict, List

from ..contracts import CLAIMABLE_STATUSES, RunStatus, WorkflowRun, utcnow
from .models import StepRecord
from .repository import RunRepository

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class InMemoryRunRepository(RunRepository):
    """Store workflows and runs in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Runs are copied on the way in and out
    so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, dict] = {}
        self._runs: Dict[str, WorkflowRun] = {}
        self._steps: List[StepRecord] = []
        self._step_id = 0
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def save_workflow(self, workflow_id: str, graph: dict[str, Any]) -> None:
        self._workflows[workflow_id] = copy.deepcopy(graph)

    async def get_workflow(self, workflow_id: str) -> dict[str, Any] | None:
        graph = self._workflows.get(workflow_id)
        return copy.deepcopy(graph) if graph is not None else None

    # ------------------------------------------------------------------
    async def create_run(self, run: WorkflowRun) -> None:
        async with self._lock:
            if run.id in self._runs:
                raise ValueError(f"Run {run.id} already exists")
            self._runs[run.id] = run.model_copy(deep=True)

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def list_runs(
        self, status: RunStatus | None = None, contact_id: str | None = None
    ) -> list[WorkflowRun]:
        runs = [
            r
            for r in self._runs.values()
            if (status is None or r.status is status)
            and (contact_id is None or r.contact_id == contact_id)
        ]
        runs.sort(key=lambda r: r.created_at)
        return [r.model_copy(deep=True) for r in runs]

    async def fetch_due_runs(self, now: datetime, limit: int) -> list[WorkflowRun]:
        due = [r for r in self._runs.values() if r.is_due(now)]
        due.sort(
            key=lambda r: (
                r.next_run_at is not None,
                r.next_run_at or _EPOCH,
                r.created_at,
            )
        )
        return [r.model_copy(deep=True) for r in due[:limit]]

    async def claim_run(self, run_id: str) -> bool:
        async with self._lock:
            run = self._runs.get(run_id)
            if run is None or run.status not in CLAIMABLE_STATUSES:
                return False
            run.status = RunStatus.RUNNING
            run.updated_at = utcnow()
            return True

    async def save_run(
        self, run: WorkflowRun, expected_status: RunStatus | None = None
    ) -> bool:
        async with self._lock:
            stored = self._runs.get(run.id)
            if stored is None:
                raise KeyError(f"Run {run.id} not found")
            if expected_status is not None and stored.status is not expected_status:
                return False
            self._runs[run.id] = run.model_copy(deep=True)
            return True

    # ------------------------------------------------------------------
    async def mark_step_started(self, run_id: str, node_id: str, action: str) -> None:
        self._step_id += 1
        self._steps.append(
            StepRecord(
                id=self._step_id,
                run_id=run_id,
                node_id=node_id,
                action=action,
                started_at=utcnow(),
            )
        )

    async def mark_step_completed(
        self,
        run_id: str,
        node_id: str,
        status: str,
        output: dict | None = None,
    ) -> None:
        for step in reversed(self._steps):
            if (
                step.run_id == run_id
                and step.node_id == node_id
                and step.completed_at is None
            ):
                step.completed_at = utcnow()
                step.status = status
                step.output = output or {}
                break

    async def list_steps(self, run_id: str) -> list[StepRecord]:
        return [s.model_copy() for s in self._steps if s.run_id == run_id]
