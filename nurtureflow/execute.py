"""Run execution engine: advances one workflow run by one tick."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from pydantic import ValidationError

from .actions import ActionDispatcher
from .collaborators.base import Collaborators
from .constants import OPERATIONAL_TIMEZONE, WINDOW_GRACE_SECONDS
from .contracts import (
    ActionKind,
    Contact,
    Node,
    NodeOutcome,
    OutcomeStatus,
    RunStatus,
    StepReport,
    StepTransition,
    SuspendKind,
    WorkflowGraph,
    WorkflowRun,
    utcnow,
)
from .errors import WorkflowConfigurationError
from .persistence import RunRepository
from .routing import resolve_edge
from .utils.retry import plan_retry
from .utils.windows import ZoneLike, as_utc, next_allowed

logger = logging.getLogger(__name__)


class RunExecutor:
    """Executes the node a run currently points at.

    ``step`` mutates the run in place and returns a report; persisting the
    run is left to the caller. Step history is written to the repository as
    actions are dispatched and their outcomes become final.
    """

    def __init__(
        self,
        repository: RunRepository,
        collaborators: Collaborators,
        dispatcher: Optional[ActionDispatcher] = None,
        timezone: ZoneLike = OPERATIONAL_TIMEZONE,
        window_grace_seconds: float = WINDOW_GRACE_SECONDS,
    ) -> None:
        self._repository = repository
        self._collaborators = collaborators
        self._dispatcher = dispatcher or ActionDispatcher(collaborators)
        self._tz = timezone
        self._grace = timedelta(seconds=window_grace_seconds)

    async def load_graph(self, workflow_id: str) -> WorkflowGraph:
        raw = await self._repository.get_workflow(workflow_id)
        if raw is None:
            raise WorkflowConfigurationError(f"Workflow {workflow_id} not found")
        try:
            return WorkflowGraph.model_validate(raw)
        except ValidationError as exc:
            raise WorkflowConfigurationError(
                f"Workflow {workflow_id} is invalid: {exc}"
            ) from exc

    async def step(self, run: WorkflowRun, now: Optional[datetime] = None) -> StepReport:
        """Advance ``run`` by one tick.

        Raises:
            WorkflowConfigurationError: If the graph, node or contact is missing.
        """
        now = as_utc(now or utcnow())
        run.status = RunStatus.RUNNING

        graph = await self.load_graph(run.workflow_id)
        node = graph.get_node(run.current_node_id)
        if node is None:
            raise WorkflowConfigurationError(
                f"Node {run.current_node_id} not found in workflow {run.workflow_id}"
            )
        contact = await self._collaborators.crm.get_contact(run.contact_id)
        if contact is None:
            raise WorkflowConfigurationError(f"Contact {run.contact_id} not found")

        prior = run.context.outcome_for(node.id)
        if prior is not None and node.action is ActionKind.CALL:
            report = await self._resume_call(run, node, contact, prior, now)
            if report is not None:
                return report
            outcome = prior
        elif (
            prior is not None
            and node.action is ActionKind.SEND_MESSAGE
            and prior.is_waiting_for_reply
        ):
            outcome = self._resume_reply(run, node, prior)
        else:
            report = self._defer_to_window(run, node, now)
            if report is not None:
                return report
            report, outcome = await self._execute_fresh(run, node, contact, now)
            if report is not None:
                return report

        await self._repository.mark_step_completed(
            run.id,
            node.id,
            outcome.status.value,
            outcome.model_dump(mode="json", exclude_none=True),
        )
        return self._advance(run, graph, node, outcome, now)

    # ------------------------------------------------------------------
    async def _resume_call(
        self,
        run: WorkflowRun,
        node: Node,
        contact: Contact,
        prior: NodeOutcome,
        now: datetime,
    ) -> Optional[StepReport]:
        """Handle a call node whose previous attempt has a result.

        Returns a report when the run stops here (retry scheduled, or the
        call result has not arrived yet), ``None`` to advance with ``prior``.
        """
        if prior.status is OutcomeStatus.WAITING_FOR_CALLBACK:
            logger.warning(
                f"Run {run.id} resumed before call result arrived, waiting again"
            )
            run.schedule(RunStatus.WAITING_FOR_CALLBACK, None)
            return self._report(run, StepTransition.WAITING_FOR_CALLBACK, node)
        if prior.success:
            return None

        context = run.context
        plan = plan_retry(
            node.retry_policy, context.retry_count, now, node.time_windows, self._tz
        )
        if plan.intervention is not None:
            await self._dispatcher.run_intervention(plan.intervention, contact)
        if not plan.should_retry:
            logger.info(
                f"Run {run.id} call attempt {plan.attempt} failed, no retries left"
            )
            return None

        await self._repository.mark_step_completed(
            run.id,
            node.id,
            StepTransition.RETRY_SCHEDULED.value,
            prior.model_dump(mode="json", exclude_none=True),
        )
        context.record(node.id, None)
        context.retry_count += 1
        run.schedule(RunStatus.PENDING, plan.next_attempt_at)
        run.updated_at = now
        logger.info(
            f"Run {run.id} call attempt {plan.attempt} failed, "
            f"retry {context.retry_count} scheduled for {plan.next_attempt_at}"
        )
        return self._report(
            run, StepTransition.RETRY_SCHEDULED, node, success=False, error=prior.error
        )

    def _resume_reply(
        self, run: WorkflowRun, node: Node, prior: NodeOutcome
    ) -> NodeOutcome:
        if prior.reply_received:
            logger.info(f"Run {run.id} got a reply on node {node.id}")
            return prior.model_copy(
                update={"success": True, "status": OutcomeStatus.REPLIED}
            )
        logger.info(f"Run {run.id} reply window on node {node.id} elapsed")
        return prior.model_copy(
            update={"success": False, "status": OutcomeStatus.REPLY_TIMEOUT}
        )

    def _defer_to_window(
        self, run: WorkflowRun, node: Node, now: datetime
    ) -> Optional[StepReport]:
        if not (
            node.time_windows and node.action.is_direct_contact and not node.force_immediate
        ):
            return None
        allowed = next_allowed(now, node.time_windows, self._tz)
        if allowed - now <= self._grace:
            return None
        run.schedule(RunStatus.PENDING, allowed)
        run.updated_at = now
        logger.info(
            f"Run {run.id} node {node.id} outside time windows, rescheduled to {allowed}"
        )
        return self._report(run, StepTransition.RESCHEDULED_TIME_WINDOW, node)

    async def _execute_fresh(
        self, run: WorkflowRun, node: Node, contact: Contact, now: datetime
    ) -> tuple[Optional[StepReport], NodeOutcome]:
        await self._repository.mark_step_started(run.id, node.id, node.action.value)
        result = await self._dispatcher.dispatch(node, contact, run, now)
        outcome = result.to_outcome(now)

        if result.suspend is SuspendKind.CALLBACK:
            run.context.record(node.id, outcome)
            run.schedule(RunStatus.WAITING_FOR_CALLBACK, None)
            run.updated_at = now
            logger.info(f"Run {run.id} waiting for call result on node {node.id}")
            return (
                self._report(run, StepTransition.WAITING_FOR_CALLBACK, node, success=True),
                outcome,
            )
        if result.suspend is SuspendKind.TIMEOUT:
            minutes = result.timeout_minutes or 0
            run.context.record(node.id, outcome)
            run.schedule(RunStatus.WAITING, now + timedelta(minutes=minutes))
            run.updated_at = now
            logger.info(
                f"Run {run.id} waiting up to {minutes} minutes for a reply on node {node.id}"
            )
            return (
                self._report(run, StepTransition.WAITING_FOR_REPLY, node, success=True),
                outcome,
            )
        return None, outcome

    def _advance(
        self,
        run: WorkflowRun,
        graph: WorkflowGraph,
        node: Node,
        outcome: NodeOutcome,
        now: datetime,
    ) -> StepReport:
        context = run.context
        context.record(node.id, outcome)
        context.retry_count = 0
        run.updated_at = now

        edge = resolve_edge(node, outcome, graph.edges)
        if edge is None:
            run.schedule(RunStatus.COMPLETED, None)
            run.completed_at = now
            logger.info(f"Run {run.id} completed at node {node.id}")
            return self._report(
                run, StepTransition.COMPLETED, node,
                success=outcome.success, error=outcome.error,
            )

        target = graph.get_node(edge.target)
        if target is None:
            raise WorkflowConfigurationError(f"Edge target {edge.target} not found")
        run.current_node_id = target.id
        # revisiting a node executes it again
        context.outcomes.pop(target.id, None)
        run.schedule_after(now, target.delay_minutes)
        logger.info(
            f"Run {run.id} advanced {node.id} -> {target.id} "
            f"(success={outcome.success}, handle={edge.source_handle})"
        )
        return self._report(
            run, StepTransition.ADVANCED, node,
            success=outcome.success, error=outcome.error,
        )

    @staticmethod
    def _report(
        run: WorkflowRun,
        transition: StepTransition,
        node: Node,
        success: Optional[bool] = None,
        error: Optional[str] = None,
    ) -> StepReport:
        return StepReport(
            run_id=run.id,
            transition=transition,
            status=run.status,
            node_id=node.id,
            action=node.action.value,
            success=success,
            next_run_at=run.next_run_at,
            error=error,
        )
