"""Inbound collaborator events: call results, message replies, cancellation."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from .contracts import NodeOutcome, OutcomeStatus, RunStatus, WorkflowRun, utcnow
from .persistence import RunRepository
from .utils.windows import as_utc

logger = logging.getLogger(__name__)

SUCCESSFUL_END_REASONS = frozenset({"assistant-ended-call", "customer-ended-call"})


def call_succeeded(ended_reason: Optional[str]) -> bool:
    """Classify a voice provider's end-of-call reason."""
    return (ended_reason or "").strip().lower() in SUCCESSFUL_END_REASONS


async def record_call_result(
    repository: RunRepository,
    run_id: str,
    success: Optional[bool] = None,
    status: Optional[str] = None,
    reason: Optional[str] = None,
    reference: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Write a call result into the run and make it due immediately.

    Only runs waiting for a call result are touched. When ``success`` is not
    given it is derived from the provider end ``reason``.

    Returns:
        ``True`` if the run was updated.
    """
    now = as_utc(now or utcnow())
    run = await repository.get_run(run_id)
    if run is None:
        logger.warning(f"Call result for unknown run {run_id}")
        return False
    if run.status is not RunStatus.WAITING_FOR_CALLBACK:
        logger.warning(
            f"Call result for run {run_id} ignored, run is {run.status.value}"
        )
        return False
    if success is None:
        success = call_succeeded(reason or status)

    previous = run.context.outcome_for(run.current_node_id)
    outcome = NodeOutcome(
        success=success,
        status=OutcomeStatus.COMPLETED if success else OutcomeStatus.FAILED,
        reason=reason or status,
        error=None if success else (reason or status or "call failed"),
        reference=reference or (previous.reference if previous else None),
        recorded_at=now,
    )
    run.context.record(run.current_node_id, outcome)
    run.schedule(RunStatus.PENDING, now)
    run.updated_at = now
    if not await repository.save_run(run, expected_status=RunStatus.WAITING_FOR_CALLBACK):
        logger.warning(f"Call result for run {run_id} lost a race, run changed state")
        return False
    logger.info(f"Recorded call result for run {run_id}: success={success} ({reason})")
    return True


async def record_reply(
    repository: RunRepository,
    contact_id: str,
    body: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[WorkflowRun]:
    """Mark every run of ``contact_id`` awaiting a reply as replied.

    Returns:
        The runs that were resumed.
    """
    now = as_utc(now or utcnow())
    resumed: List[WorkflowRun] = []
    for run in await repository.list_runs(status=RunStatus.WAITING, contact_id=contact_id):
        outcome = run.context.outcome_for(run.current_node_id)
        if outcome is None or not outcome.is_waiting_for_reply:
            continue
        run.context.record(
            run.current_node_id,
            outcome.model_copy(update={"reply_received": True, "reply_content": body}),
        )
        run.schedule(RunStatus.PENDING, now)
        run.updated_at = now
        if await repository.save_run(run, expected_status=RunStatus.WAITING):
            resumed.append(run)
    if resumed:
        logger.info(f"Reply from contact {contact_id} resumed {len(resumed)} runs")
    else:
        logger.info(f"Reply from contact {contact_id} matched no waiting run")
    return resumed


async def cancel_run(
    repository: RunRepository, run_id: str, now: Optional[datetime] = None
) -> bool:
    """Move a run to the terminal ``cancelled`` status.

    Returns:
        ``False`` if the run is unknown or already terminal.
    """
    now = as_utc(now or utcnow())
    run = await repository.get_run(run_id)
    if run is None or run.status.is_terminal:
        return False
    observed = run.status
    run.schedule(RunStatus.CANCELLED, None)
    run.updated_at = now
    run.completed_at = now
    if not await repository.save_run(run, expected_status=observed):
        logger.warning(f"Run {run_id} changed state while cancelling")
        return False
    logger.info(f"Cancelled run {run_id}")
    return True
