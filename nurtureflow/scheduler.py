"""Scheduler loop: picks due runs and advances each by one tick."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from .collaborators import Collaborators, get_collaborators
from .config import NurtureflowConfig, load_config
from .constants import DEFAULT_BATCH_SIZE
from .contracts import RunStatus, StepReport, StepTransition, WorkflowRun, utcnow
from .errors import WorkflowConfigurationError
from .execute import RunExecutor
from .persistence import RunRepository, get_repository
from .utils.windows import as_utc

logger = logging.getLogger(__name__)


class WorkflowScheduler:
    """Processes due runs in fetch order, isolating failures per run."""

    def __init__(
        self,
        repository: RunRepository,
        executor: RunExecutor,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._repository = repository
        self._executor = executor
        self.batch_size = batch_size

    async def tick(self, now: Optional[datetime] = None) -> List[StepReport]:
        """Run one scheduler pass and return a report per processed run."""
        now = as_utc(now or utcnow())
        due = await self._repository.fetch_due_runs(now, self.batch_size)
        if due:
            logger.info(f"Processing {len(due)} due workflow runs")

        reports: List[StepReport] = []
        for run in due:
            if not await self._repository.claim_run(run.id):
                logger.warning(f"Run {run.id} already claimed, skipping")
                continue
            logger.info(f"Claimed run {run.id} at node {run.current_node_id}")
            reports.append(await self._process(run, now))
        return reports

    async def _process(self, run: WorkflowRun, now: datetime) -> StepReport:
        try:
            report = await self._executor.step(run, now)
            saved = await self._repository.save_run(run, expected_status=RunStatus.RUNNING)
        except WorkflowConfigurationError as exc:
            logger.error(f"Run {run.id} failed with configuration error: {exc}")
            return await self._fail(run, now, str(exc))
        except Exception as exc:
            logger.exception(f"Run {run.id} crashed at node {run.current_node_id}")
            return await self._fail(run, now, str(exc) or exc.__class__.__name__)
        if not saved:
            return await self._discarded(run)
        return report

    async def _fail(self, run: WorkflowRun, now: datetime, error: str) -> StepReport:
        run.schedule(RunStatus.FAILED, None)
        run.context.error = error
        run.updated_at = now
        run.completed_at = now
        report = StepReport(
            run_id=run.id,
            transition=StepTransition.FAILED,
            status=run.status,
            node_id=run.current_node_id,
            success=False,
            error=error,
        )
        try:
            saved = await self._repository.save_run(run, expected_status=RunStatus.RUNNING)
        except Exception:
            logger.exception(f"Could not persist failure of run {run.id}")
            return report
        if not saved:
            return await self._discarded(run)
        return report

    async def _discarded(self, run: WorkflowRun) -> StepReport:
        # the run left `running` while this tick held it, e.g. cancelled
        stored = await self._repository.get_run(run.id)
        status = stored.status if stored is not None else run.status
        logger.warning(
            f"Run {run.id} changed to {status.value} while running, step result discarded"
        )
        return StepReport(
            run_id=run.id,
            transition=StepTransition.DISCARDED,
            status=status,
            node_id=run.current_node_id,
            success=False,
        )

    async def serve(
        self, interval: float = 60.0, lifespan: Optional[float] = None
    ) -> None:
        """Tick every ``interval`` seconds.

        Args:
            interval: Seconds between ticks.
            lifespan: Maximum time in seconds to keep running. If None, runs indefinitely.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        while True:
            await self.tick()
            if lifespan is not None and loop.time() - start_time >= lifespan:
                break
            await asyncio.sleep(interval)


def build_scheduler(
    config: Optional[NurtureflowConfig] = None,
    repository: Optional[RunRepository] = None,
    collaborators: Optional[Collaborators] = None,
) -> WorkflowScheduler:
    """Wire the shared repository and collaborators into a scheduler.

    ``config`` supplies the scheduler settings (batch size, timezone, window
    grace period).
    """
    config = config or load_config()
    repository = repository or get_repository()
    collaborators = collaborators or get_collaborators()
    executor = RunExecutor(
        repository,
        collaborators,
        timezone=config.scheduler.timezone,
        window_grace_seconds=config.scheduler.window_grace_seconds,
    )
    return WorkflowScheduler(repository, executor, batch_size=config.scheduler.batch_size)
