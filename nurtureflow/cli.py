"""Command line interface for operating nurtureflow workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer

from nurtureflow import WorkflowDispatcher, build_scheduler, get_repository, load_config
from nurtureflow.contracts import RunStatus
from nurtureflow.errors import NurtureflowError
from nurtureflow.webhooks import cancel_run, record_call_result, record_reply

app = typer.Typer(help="CLI for nurtureflow lead-nurturing workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflow definitions")
run_app = typer.Typer(help="Commands for scheduling and inspecting runs")
webhook_app = typer.Typer(help="Feed collaborator events into waiting runs")

app.add_typer(workflow_app, name="workflow")
app.add_typer(run_app, name="run")
app.add_typer(webhook_app, name="webhook")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (default: from config, INFO)"
    ),
) -> None:
    """nurtureflow CLI entry point."""
    level = (log_level or load_config().log_level).upper()
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


@workflow_app.command("register")
def workflow_register(workflow_id: str, graph_path: Path) -> None:
    """
    Validate a workflow graph JSON file and store it.

    Accepts the graph editor export (``nodes`` with ``data`` blocks and
    ``edges`` with ``sourceHandle``) as well as the flat node shape.

    Example:
        nurtureflow workflow register welcome ./welcome.json
    """
    if not graph_path.exists():
        typer.secho(f"Graph file not found: {graph_path}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        raw = json.loads(graph_path.read_text())
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid JSON in {graph_path}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    dispatcher = WorkflowDispatcher(get_repository())
    try:
        graph = asyncio.run(dispatcher.register_workflow(workflow_id, raw))
    except NurtureflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(
        f"Registered workflow {workflow_id}: "
        f"{len(graph.nodes)} nodes, {len(graph.edges)} edges"
    )


@workflow_app.command("start")
def workflow_start(
    workflow_id: str,
    contact_id: str,
    agency_id: Optional[str] = typer.Option(None, help="Agency owning the contact"),
) -> None:
    """
    Start a run of a registered workflow for one contact.

    Example:
        nurtureflow workflow start welcome contact-42 --agency-id acme
    """
    dispatcher = WorkflowDispatcher(get_repository())
    try:
        run = asyncio.run(dispatcher.start_run(workflow_id, contact_id, agency_id))
    except NurtureflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Run ID: {run.id}")
    typer.echo(f"Status: {run.status.value} at node {run.current_node_id}")


@run_app.command("tick")
def run_tick() -> None:
    """Process one batch of due runs and print what happened to each."""
    scheduler = build_scheduler()
    reports = asyncio.run(scheduler.tick())
    if not reports:
        typer.echo("No due runs")
        return
    for report in reports:
        line = f"{report.run_id}\t{report.transition.value}\t{report.status.value}"
        if report.error:
            line += f"\t{report.error}"
        typer.echo(line)


@run_app.command("serve")
def run_serve(
    interval: Optional[float] = typer.Option(
        None, help="Seconds between ticks (default: from config)"
    ),
    lifespan: Optional[float] = typer.Option(
        None, help="Stop after this many seconds (default: run indefinitely)"
    ),
) -> None:
    """
    Run the scheduler loop.

    Example:
        nurtureflow run serve --interval 30
    """
    config = load_config()
    scheduler = build_scheduler(config)
    every = interval if interval is not None else config.scheduler.interval_seconds
    typer.echo(f"Scheduler started, ticking every {every}s")
    asyncio.run(scheduler.serve(interval=every, lifespan=lifespan))


@run_app.command("list")
def run_list(
    status: Optional[RunStatus] = typer.Option(None, help="Only runs in this status"),
    contact_id: Optional[str] = typer.Option(None, help="Only runs of this contact"),
) -> None:
    """List runs with their status and current node."""
    repo = get_repository()
    runs = asyncio.run(repo.list_runs(status=status, contact_id=contact_id))
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        next_at = run.next_run_at.isoformat() if run.next_run_at else "-"
        typer.echo(
            f"{run.id}\t{run.status.value}\t{run.current_node_id}\t{next_at}"
        )


@run_app.command("show")
def run_show(run_id: str) -> None:
    """
    Show a run's state, context and step history.

    Example:
        nurtureflow run show 7d5c...
    """
    repo = get_repository()
    run = asyncio.run(repo.get_run(run_id))
    if run is None:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    typer.echo(f"Run {run.id}: {run.status.value}")
    typer.echo(f"Workflow: {run.workflow_id}  Contact: {run.contact_id}")
    typer.echo(f"Current node: {run.current_node_id}")
    if run.next_run_at:
        typer.echo(f"Next run at: {run.next_run_at.isoformat()}")
    typer.echo(f"Context: {json.dumps(run.context.to_flat(), default=str)}")
    steps = asyncio.run(repo.list_steps(run_id))
    for step in steps:
        typer.echo(
            f"- {step.node_id} ({step.action}): {step.status or 'running'}"
            + (
                f" ({step.started_at} -> {step.completed_at})"
                if step.started_at or step.completed_at
                else ""
            )
        )


@run_app.command("cancel")
def run_cancel(run_id: str) -> None:
    """Cancel a run so the scheduler never picks it up again."""
    repo = get_repository()
    if not asyncio.run(cancel_run(repo, run_id)):
        typer.echo("Run not found or already finished")
        raise typer.Exit(code=1)
    typer.echo(f"Cancelled run {run_id}")


@webhook_app.command("call-result")
def webhook_call_result(
    run_id: str,
    success: Optional[bool] = typer.Option(
        None,
        "--success/--failure",
        help="Call outcome (default: derived from --reason, unknown reasons fail)",
    ),
    reason: Optional[str] = typer.Option(None, help="Provider end reason"),
    reference: Optional[str] = typer.Option(None, help="Provider call id"),
) -> None:
    """Record the result of a call for a run waiting for it."""
    repo = get_repository()
    updated = asyncio.run(
        record_call_result(repo, run_id, success, reason=reason, reference=reference)
    )
    if not updated:
        typer.echo("Run not found or not waiting for a call result")
        raise typer.Exit(code=1)
    typer.echo(f"Recorded call result for run {run_id}")


@webhook_app.command("reply")
def webhook_reply(contact_id: str, body: str) -> None:
    """Record an inbound message from a contact."""
    repo = get_repository()
    resumed = asyncio.run(record_reply(repo, contact_id, body))
    typer.echo(f"Resumed {len(resumed)} runs")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
