"""End-to-end lead nurturing over the SQLite backend."""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from nurtureflow.contracts import AgentCandidate, RunStatus, StepTransition
from nurtureflow.dispatch import WorkflowDispatcher
from nurtureflow.execute import RunExecutor
from nurtureflow.persistence import SQLiteRunRepository
from nurtureflow.scheduler import WorkflowScheduler
from nurtureflow.webhooks import record_call_result, record_reply

MADRID = ZoneInfo("Europe/Madrid")

# Graph as exported by the editor, with the legacy action names.
LEAD_GRAPH = {
    "nodes": [
        {
            "id": "welcome",
            "type": "action",
            "data": {
                "label": "Welcome message",
                "action": "send_whatsapp",
                "config": {"templateId": "welcome_v1", "timeoutMinutes": 60},
            },
        },
        {
            "id": "qualify",
            "type": "action",
            "data": {
                "action": "check_qualification",
                "config": {"outputs": [{"id": "hot", "name": "Hot"}, "default"]},
            },
        },
        {
            "id": "assign",
            "type": "action",
            "data": {"action": "assign_agent", "config": {"strategy": "smart"}},
        },
        {
            "id": "call",
            "type": "action",
            "data": {
                "action": "call",
                "timeWindows": [
                    {"start": "09:00", "end": "20:00", "days": ["mon", "tue", "wed", "thu", "fri"]}
                ],
                "config": {
                    "retryConfig": {
                        "maxAttempts": 2,
                        "backoff": "fixed_24h",
                        "interventions": [
                            {"attempt": 1, "action": "send_whatsapp", "template_id": "missed_call"}
                        ],
                    }
                },
            },
        },
        {
            "id": "nurture",
            "type": "action",
            "data": {"action": "start_nurture", "config": {"day": "wednesday", "time": "10:00"}},
        },
        {"id": "lost", "type": "action", "data": {"action": "mark_as_lost"}},
    ],
    "edges": [
        {"id": "e1", "source": "welcome", "target": "qualify", "sourceHandle": "replied"},
        {"id": "e2", "source": "welcome", "target": "lost", "sourceHandle": "no_reply"},
        {"id": "e3", "source": "qualify", "target": "assign", "sourceHandle": "hot"},
        {"id": "e4", "source": "qualify", "target": "nurture", "sourceHandle": "default"},
        {"id": "e5", "source": "assign", "target": "call", "sourceHandle": "positive"},
        {"id": "e6", "source": "call", "target": "nurture", "sourceHandle": "positive"},
        {"id": "e7", "source": "call", "target": "lost", "sourceHandle": "negative"},
    ],
}


def local(day: int, hour: int, minute: int = 0) -> datetime:
    # June 2026: the 1st is a Monday
    return datetime(2026, 6, day, hour, minute, tzinfo=MADRID)


@pytest.fixture
def sqlite_repo(tmp_path):
    return SQLiteRunRepository(tmp_path / "nurtureflow.db")


@pytest.fixture
def scheduler(sqlite_repo, collaborators):
    return WorkflowScheduler(sqlite_repo, RunExecutor(sqlite_repo, collaborators))


async def _start(repo, now):
    dispatcher = WorkflowDispatcher(repo)
    await dispatcher.register_workflow("lead", LEAD_GRAPH)
    return await dispatcher.start_run("lead", "c1", agency_id="acme", now=now)


async def _tick(scheduler, now):
    reports = await scheduler.tick(now)
    assert len(reports) == 1, reports
    return reports[0]


@pytest.mark.asyncio
async def test_hot_lead_is_called_and_nurtured(sqlite_repo, scheduler, collaborators, crm):
    crm.memberships["c1"].add("hot")
    crm.add_agent(AgentCandidate(id="a-en", languages=["en"], experience_years=9), "acme")
    crm.add_agent(AgentCandidate(id="a-es", languages=["es"], active_lead_count=4), "acme")

    t0 = local(1, 10)
    run = await _start(sqlite_repo, t0)

    report = await _tick(scheduler, t0)
    assert report.transition is StepTransition.WAITING_FOR_REPLY
    assert collaborators.messaging.messages[0]["template_id"] == "welcome_v1"

    resumed = await record_reply(sqlite_repo, "c1", "Me interesa", now=t0 + timedelta(minutes=5))
    assert len(resumed) == 1

    now = t0 + timedelta(minutes=6)
    assert (await _tick(scheduler, now)).node_id == "welcome"
    assert (await _tick(scheduler, now)).node_id == "qualify"
    report = await _tick(scheduler, now)
    assert report.node_id == "assign"
    assert crm.assignments["c1"] == "a-es"

    report = await _tick(scheduler, now)
    assert report.transition is StepTransition.WAITING_FOR_CALLBACK
    # suspended runs are not picked up
    assert await scheduler.tick(now + timedelta(hours=1)) == []

    await record_call_result(
        sqlite_repo, run.id, success=False, reason="customer-did-not-answer",
        now=now + timedelta(minutes=3),
    )
    now = now + timedelta(minutes=4)
    report = await _tick(scheduler, now)
    assert report.transition is StepTransition.RETRY_SCHEDULED
    assert report.next_run_at == now + timedelta(hours=24)
    assert collaborators.messaging.messages[-1]["template_id"] == "missed_call"
    assert await scheduler.tick(now + timedelta(hours=1)) == []

    retry_at = report.next_run_at
    report = await _tick(scheduler, retry_at)
    assert report.transition is StepTransition.WAITING_FOR_CALLBACK
    assert len(collaborators.voice.calls) == 2

    await record_call_result(
        sqlite_repo, run.id, success=True, reason="customer-ended-call", now=retry_at
    )
    assert (await _tick(scheduler, retry_at)).node_id == "call"
    report = await _tick(scheduler, retry_at)
    assert report.transition is StepTransition.COMPLETED

    stored = await sqlite_repo.get_run(run.id)
    assert stored.status is RunStatus.COMPLETED
    assert stored.current_node_id == "nurture"
    assert crm.nurture["d1"] == {"day": 3, "time": "10:00"}

    steps = await sqlite_repo.list_steps(run.id)
    assert [(s.node_id, s.status) for s in steps] == [
        ("welcome", "replied"),
        ("qualify", "completed"),
        ("assign", "completed"),
        ("call", "retry_scheduled"),
        ("call", "completed"),
        ("nurture", "completed"),
    ]


@pytest.mark.asyncio
async def test_silent_lead_is_marked_lost(sqlite_repo, scheduler, crm):
    t0 = local(1, 10)
    run = await _start(sqlite_repo, t0)
    await _tick(scheduler, t0)

    # reply window still open
    assert await scheduler.tick(t0 + timedelta(minutes=30)) == []

    later = t0 + timedelta(minutes=61)
    report = await _tick(scheduler, later)
    assert report.success is False
    report = await _tick(scheduler, later)
    assert report.transition is StepTransition.COMPLETED

    stored = await sqlite_repo.get_run(run.id)
    assert stored.current_node_id == "lost"
    assert stored.context.outcome_for("welcome").status.value == "reply_timeout"
    assert crm.contact_status["c1"] == "lost"
    assert "d1" in crm.lost_deals


@pytest.mark.asyncio
async def test_evening_call_waits_for_window(sqlite_repo, scheduler, collaborators):
    dispatcher = WorkflowDispatcher(sqlite_repo)
    await dispatcher.register_workflow("lead", {**LEAD_GRAPH, "entryNodeId": "call"})
    evening = local(1, 21)
    run = await dispatcher.start_run("lead", "c1", agency_id="acme", now=evening)

    report = await _tick(scheduler, evening)
    assert report.transition is StepTransition.RESCHEDULED_TIME_WINDOW
    assert report.next_run_at == local(2, 9)
    assert collaborators.voice.calls == []

    report = await _tick(scheduler, local(2, 9))
    assert report.transition is StepTransition.WAITING_FOR_CALLBACK
    assert (await sqlite_repo.get_run(run.id)).status is RunStatus.WAITING_FOR_CALLBACK
