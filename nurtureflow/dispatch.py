"""Workflow dispatcher for nurtureflow."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from .contracts import RunStatus, WorkflowGraph, WorkflowRun, utcnow
from .errors import WorkflowConfigurationError
from .persistence import RunRepository, get_repository
from .utils.windows import as_utc

logger = logging.getLogger(__name__)


class WorkflowDispatcher:
    """Service responsible for registering workflows and starting runs."""

    def __init__(self, repository: Optional[RunRepository] = None) -> None:
        self._repository = repository or get_repository()

    async def register_workflow(
        self, workflow_id: str, graph: Union[WorkflowGraph, Dict[str, Any]]
    ) -> WorkflowGraph:
        """Validate ``graph`` and store it under ``workflow_id``.

        Raises:
            WorkflowConfigurationError: If the graph does not validate.
        """
        try:
            parsed = (
                graph
                if isinstance(graph, WorkflowGraph)
                else WorkflowGraph.model_validate(graph)
            )
        except ValidationError as exc:
            raise WorkflowConfigurationError(
                f"Workflow {workflow_id} is invalid: {exc}"
            ) from exc
        if parsed.entry_node() is None:
            raise WorkflowConfigurationError(f"Workflow {workflow_id} has no entry node")
        await self._repository.save_workflow(
            workflow_id, parsed.model_dump(mode="json")
        )
        logger.info(
            f"Registered workflow {workflow_id} with {len(parsed.nodes)} nodes "
            f"and {len(parsed.edges)} edges"
        )
        return parsed

    async def start_run(
        self,
        workflow_id: str,
        contact_id: str,
        agency_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> WorkflowRun:
        """Activate ``workflow_id`` for a contact at its entry node.

        Returns:
            The persisted run, pending (or waiting when the entry node has a
            delay).
        """
        now = as_utc(now or utcnow())
        raw = await self._repository.get_workflow(workflow_id)
        if raw is None:
            raise WorkflowConfigurationError(f"Workflow {workflow_id} not found")
        graph = WorkflowGraph.model_validate(raw)
        entry = graph.entry_node()
        if entry is None:
            raise WorkflowConfigurationError(f"Workflow {workflow_id} has no entry node")

        run = WorkflowRun(
            workflow_id=workflow_id,
            contact_id=contact_id,
            agency_id=agency_id,
            current_node_id=entry.id,
            status=RunStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        run.schedule_after(now, entry.delay_minutes)
        await self._repository.create_run(run)
        logger.info(
            f"Started run {run.id} of workflow {workflow_id} for contact {contact_id} "
            f"at node {entry.id}"
        )
        return run
