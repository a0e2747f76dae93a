"""Repository abstraction for workflow run persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from ..contracts import RunStatus, WorkflowRun
from .models import StepRecord


class RunRepository(Protocol):
    """Protocol for workflow graph, run and step-history backends."""

    async def save_workflow(self, workflow_id: str, graph: dict[str, Any]) -> None:
        """Store (or replace) a workflow graph as editor JSON."""

    async def get_workflow(self, workflow_id: str) -> dict[str, Any] | None:
        """Return the stored graph JSON, or ``None`` if unknown."""

    async def create_run(self, run: WorkflowRun) -> None:
        """Persist a newly activated run."""

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        """Retrieve a run by id."""

    async def list_runs(
        self, status: RunStatus | None = None, contact_id: str | None = None
    ) -> list[WorkflowRun]:
        """Return runs in creation order, optionally filtered."""

    async def fetch_due_runs(self, now: datetime, limit: int) -> list[WorkflowRun]:
        """Return up to ``limit`` pending/waiting runs whose time has come.

        Ordered by ``next_run_at`` with nulls first, then creation order.
        """

    async def claim_run(self, run_id: str) -> bool:
        """Atomically move a pending/waiting run to running.

        Returns ``True`` for exactly one caller; ``False`` if the run is gone
        or already left the claimable states.
        """

    async def save_run(
        self, run: WorkflowRun, expected_status: RunStatus | None = None
    ) -> bool:
        """Persist the full state of an existing run.

        With ``expected_status`` the write only applies while the stored run
        still has that status, so a status written by another actor in the
        meantime (e.g. a cancellation) is kept.

        Returns ``True`` if the run was written.
        """

    async def mark_step_started(self, run_id: str, node_id: str, action: str) -> None:
        """Record the start of a node execution."""

    async def mark_step_completed(
        self,
        run_id: str,
        node_id: str,
        status: str,
        output: dict | None = None,
    ) -> None:
        """Record completion of the latest open execution of ``node_id``."""

    async def list_steps(self, run_id: str) -> list[StepRecord]:
        """Return the step history of a run in execution order."""
