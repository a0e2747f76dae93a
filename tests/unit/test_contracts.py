import pytest
from pydantic import ValidationError

from nurtureflow.contracts import (
    ActionKind,
    AgentCandidate,
    AssignConfig,
    AssignmentStrategy,
    CallConfig,
    ExecutionContext,
    MessageConfig,
    Node,
    OutcomeStatus,
    RouteConfig,
    RunStatus,
    UnknownConfig,
    WorkflowGraph,
    WorkflowRun,
)

EDITOR_GRAPH = {
    "nodes": [
        {
            "id": "welcome",
            "type": "action",
            "position": {"x": 0, "y": 0},
            "data": {
                "label": "Welcome",
                "action": "send_whatsapp",
                "delay_minutes": 0,
                "timeWindows": [{"start": "09:00", "end": "20:00", "days": ["mon"]}],
                "config": {"templateId": "welcome_v2", "timeoutMinutes": 60},
            },
        },
        {
            "id": "qualify",
            "type": "action",
            "data": {
                "action": "check_qualification",
                "config": {"outputs": ["hot", {"id": "default", "name": "Default"}]},
            },
        },
        {
            "id": "call",
            "data": {
                "action": "call",
                "config": {
                    "forceImmediate": True,
                    "retryConfig": {"maxAttempts": 2, "backoff": "fixed_24h"},
                },
            },
        },
    ],
    "edges": [
        {"id": "e1", "source": "welcome", "target": "qualify", "sourceHandle": "replied"},
        {"id": "e2", "source": "qualify", "target": "call", "sourceHandle": "hot"},
    ],
}


def test_editor_graph_is_decoded_into_typed_nodes():
    graph = WorkflowGraph.model_validate(EDITOR_GRAPH)

    welcome = graph.get_node("welcome")
    assert welcome.action is ActionKind.SEND_MESSAGE
    assert welcome.action_name == "send_whatsapp"
    assert welcome.label == "Welcome"
    assert isinstance(welcome.config, MessageConfig)
    assert welcome.config.template_id == "welcome_v2"
    assert welcome.config.timeout_minutes == 60
    assert welcome.time_windows[0].days == ["mon"]

    qualify = graph.get_node("qualify")
    assert qualify.action is ActionKind.ROUTE_BY_GROUP
    assert isinstance(qualify.config, RouteConfig)
    assert [o.id for o in qualify.config.outputs] == ["hot", "default"]

    call = graph.get_node("call")
    assert isinstance(call.config, CallConfig)
    assert call.force_immediate
    assert call.retry_policy.max_attempts == 2

    assert graph.edges[0].source_handle == "replied"
    assert graph.entry_node().id == "welcome"


def test_graph_survives_json_round_trip():
    graph = WorkflowGraph.model_validate(EDITOR_GRAPH)
    again = WorkflowGraph.model_validate(graph.model_dump(mode="json"))
    assert again == graph


def test_unknown_action_keeps_raw_name():
    node = Node.model_validate({"id": "x", "action": "send_fax", "config": {"a": 1}})
    assert node.action is ActionKind.UNKNOWN
    assert node.action_name == "send_fax"
    assert isinstance(node.config, UnknownConfig)


def test_duplicate_handle_rejected():
    with pytest.raises(ValidationError):
        WorkflowGraph.model_validate(
            {
                "nodes": [{"id": "a", "action": "wait"}, {"id": "b", "action": "wait"},
                          {"id": "c", "action": "wait"}],
                "edges": [
                    {"source": "a", "target": "b"},
                    {"source": "a", "target": "c", "sourceHandle": ""},
                ],
            }
        )


def test_edge_to_unknown_node_rejected():
    with pytest.raises(ValidationError):
        WorkflowGraph.model_validate(
            {
                "nodes": [{"id": "a", "action": "wait"}],
                "edges": [{"source": "a", "target": "ghost"}],
            }
        )


def test_explicit_entry_node():
    graph = WorkflowGraph.model_validate(
        {
            "nodes": [{"id": "a", "action": "wait"}, {"id": "b", "action": "wait"}],
            "edges": [],
            "entryNodeId": "b",
        }
    )
    assert graph.entry_node().id == "b"


def test_legacy_assignment_strategy_names():
    assert AssignConfig.model_validate({"strategy": "least_leads"}).strategy is (
        AssignmentStrategy.LEAST_LOADED
    )
    assert AssignConfig.model_validate({"strategy": "always_admin"}).strategy is (
        AssignmentStrategy.FIXED
    )
    assert AssignConfig.model_validate({"strategy": "smart"}).strategy is (
        AssignmentStrategy.HEURISTIC
    )


def test_agent_candidate_defaults_capacity():
    agent = AgentCandidate.model_validate(
        {"id": "a1", "full_name": "Bea", "active_leads": None, "max_active_leads": None}
    )
    assert agent.name == "Bea"
    assert agent.active_lead_count == 0
    assert agent.max_lead_capacity == 20
    assert agent.has_capacity


def test_context_reads_flat_map_written_by_collaborators():
    context = ExecutionContext.from_flat(
        {
            "call-1": {
                "success": True,
                "status": "customer-ended-call",
                "call_id": "vapi-1",
                "timestamp": "2026-06-01T08:00:00+00:00",
            },
            "retry_count": 2,
            "error": "boom",
        }
    )
    outcome = context.outcome_for("call-1")
    assert outcome.status is OutcomeStatus.COMPLETED
    assert outcome.reason == "customer-ended-call"
    assert outcome.reference == "vapi-1"
    assert context.retry_count == 2
    assert context.error == "boom"

    flat = context.to_flat()
    assert flat["retry_count"] == 2
    assert flat["error"] == "boom"
    assert flat["call-1"]["reference"] == "vapi-1"


def test_reset_node_entry_is_treated_as_absent():
    context = ExecutionContext.from_flat({"call-1": None, "retry_count": 1})
    assert context.outcome_for("call-1") is None
    assert "call-1" in context.to_flat()


def test_workflow_run_serializes_context_flat():
    run = WorkflowRun(
        workflow_id="wf",
        contact_id="c1",
        current_node_id="n1",
        context={"n1": {"success": False, "status": "failed"}, "retry_count": 1},
    )
    assert run.status is RunStatus.PENDING
    dumped = run.model_dump(mode="json")
    assert dumped["context"]["retry_count"] == 1
    assert dumped["context"]["n1"]["status"] == "failed"
    assert WorkflowRun.model_validate(dumped).context.retry_count == 1
