"""Core contracts for nurtureflow workflow graphs and runs."""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SerializeAsAny,
    field_serializer,
    field_validator,
    model_validator,
)

from .constants import (
    DEFAULT_MAX_LEAD_CAPACITY,
    DEFAULT_RETRY_INTERVAL_HOURS,
    ERROR_KEY,
    RETRY_COUNT_KEY,
    WEEKDAY_TAGS,
)

logger = logging.getLogger(__name__)

_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_DAY_NAMES = {
    "monday": "mon",
    "tuesday": "tue",
    "wednesday": "wed",
    "thursday": "thu",
    "friday": "fri",
    "saturday": "sat",
    "sunday": "sun",
}


def utcnow() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _choices(*names: str) -> AliasChoices:
    return AliasChoices(*names)


# ----------------------------------------------------------------------
# Enumerations


class ActionKind(str, Enum):
    """Finite set of node actions understood by the engine."""

    CALL = "call"
    SEND_MESSAGE = "send_message"
    SEND_EMAIL = "send_email"
    WAIT = "wait"
    CREATE_TASK = "create_task"
    ROUTE_BY_GROUP = "route_by_group"
    ASSIGN_AGENT = "assign_agent"
    MARK_LOST = "mark_lost"
    START_NURTURE = "start_nurture"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "ActionKind":
        """Decode an editor action name, mapping legacy names and unknowns."""
        if isinstance(value, ActionKind):
            return value
        name = str(value or "").strip().lower()
        name = _ACTION_ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_direct_contact(self) -> bool:
        return self in (ActionKind.CALL, ActionKind.SEND_MESSAGE)


_ACTION_ALIASES = {
    "send_whatsapp": "send_message",
    "check_qualification": "route_by_group",
    "mark_as_lost": "mark_lost",
}


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    WAITING = "waiting"
    WAITING_FOR_CALLBACK = "waiting_for_callback"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


CLAIMABLE_STATUSES = (RunStatus.PENDING, RunStatus.WAITING)


class BackoffStrategy(str, Enum):
    SMART_DAYPART = "smart_daypart"
    FIXED_INTERVAL = "fixed_interval"


_BACKOFF_ALIASES = {
    "smart_morning_evening": BackoffStrategy.SMART_DAYPART.value,
    "fixed_24h": BackoffStrategy.FIXED_INTERVAL.value,
}


class InterventionAction(str, Enum):
    SEND_EMAIL = "send_email"
    SEND_MESSAGE = "send_message"
    UPDATE_CONTACT = "update_contact"


class SuspendKind(str, Enum):
    CALLBACK = "callback"
    TIMEOUT = "timeout"


class OutcomeStatus(str, Enum):
    COMPLETED = "completed"
    WAITING_FOR_CALLBACK = "waiting_for_callback"
    WAITING_FOR_REPLY = "waiting_for_reply"
    REPLIED = "replied"
    REPLY_TIMEOUT = "reply_timeout"
    FAILED = "failed"


class AssignmentStrategy(str, Enum):
    LEAST_LOADED = "least_loaded"
    FIXED = "fixed"
    HEURISTIC = "heuristic"


_STRATEGY_ALIASES = {
    "least_leads": AssignmentStrategy.LEAST_LOADED.value,
    "always_admin": AssignmentStrategy.FIXED.value,
    "smart": AssignmentStrategy.HEURISTIC.value,
}


class StepTransition(str, Enum):
    """What a single executor tick did to a run."""

    RETRY_SCHEDULED = "retry_scheduled"
    RESCHEDULED_TIME_WINDOW = "rescheduled_time_window"
    WAITING_FOR_CALLBACK = "waiting_for_callback"
    WAITING_FOR_REPLY = "waiting_for_reply"
    ADVANCED = "advanced"
    COMPLETED = "completed"
    FAILED = "failed"
    DISCARDED = "discarded"


# ----------------------------------------------------------------------
# Scheduling constraints


class TimeWindow(BaseModel):
    """Weekly interval in the operational timezone, ``start``/``end`` as HH:MM."""

    start: str
    end: str
    days: List[str] = Field(default_factory=list)

    @field_validator("start", "end", mode="before")
    @classmethod
    def _normalize_clock(cls, v: Any) -> str:
        match = _CLOCK_RE.match(str(v).strip())
        if not match:
            raise ValueError(f"Invalid clock time {v!r}, expected HH:MM")
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour > 23 or minute > 59:
            raise ValueError(f"Invalid clock time {v!r}")
        return f"{hour:02d}:{minute:02d}"

    @field_validator("days", mode="before")
    @classmethod
    def _normalize_days(cls, v: Any) -> List[str]:
        days = []
        for day in v or []:
            tag = str(day).strip().lower()
            tag = _DAY_NAMES.get(tag, tag)
            if tag not in WEEKDAY_TAGS:
                raise ValueError(f"Unknown weekday {day!r}")
            days.append(tag)
        return days

    @model_validator(mode="after")
    def _check_bounds(self) -> "TimeWindow":
        if self.start > self.end:
            raise ValueError(
                f"Window start {self.start} is after end {self.end}; "
                "windows may not span midnight"
            )
        return self

    @property
    def start_time(self) -> time:
        hour, minute = self.start.split(":")
        return time(int(hour), int(minute))

    @property
    def end_time(self) -> time:
        hour, minute = self.end.split(":")
        return time(int(hour), int(minute))


class Intervention(BaseModel):
    """One-shot side action fired right after attempt ``after_attempt`` fails."""

    model_config = ConfigDict(populate_by_name=True)

    after_attempt: int = Field(
        ge=1, validation_alias=_choices("after_attempt", "afterAttempt", "attempt")
    )
    action: InterventionAction
    payload: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _collect_payload(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "payload" in data:
            return data
        reserved = {"after_attempt", "afterAttempt", "attempt", "action"}
        values = {k: v for k, v in data.items() if k in reserved}
        values["payload"] = {k: v for k, v in data.items() if k not in reserved}
        return values

    @field_validator("action", mode="before")
    @classmethod
    def _legacy_action(cls, v: Any) -> Any:
        return "send_message" if v == "send_whatsapp" else v


class RetryPolicy(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    max_attempts: int = Field(
        default=1, ge=1, validation_alias=_choices("max_attempts", "maxAttempts")
    )
    backoff: BackoffStrategy = BackoffStrategy.FIXED_INTERVAL
    interventions: List[Intervention] = Field(default_factory=list)
    one_attempt_per_window: bool = Field(
        default=False,
        validation_alias=_choices("one_attempt_per_window", "oneAttemptPerWindow"),
    )
    interval_hours: float = Field(
        default=DEFAULT_RETRY_INTERVAL_HOURS,
        gt=0,
        validation_alias=_choices("interval_hours", "intervalHours"),
    )

    @field_validator("backoff", mode="before")
    @classmethod
    def _legacy_backoff(cls, v: Any) -> Any:
        if v is None:
            return BackoffStrategy.FIXED_INTERVAL
        return _BACKOFF_ALIASES.get(v, v)

    @field_validator("interventions", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return v or []

    def intervention_for(self, attempt: int) -> Optional[Intervention]:
        """Return the intervention configured for ``attempt``, if any."""
        return next(
            (i for i in self.interventions if i.after_attempt == attempt), None
        )


# ----------------------------------------------------------------------
# Per-action configuration variants


class ActionConfig(BaseModel):
    """Base for action-specific node payloads."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CallConfig(ActionConfig):
    retry_config: Optional[RetryPolicy] = Field(
        default=None, validation_alias=_choices("retry_config", "retryConfig")
    )
    force_immediate: bool = Field(
        default=False, validation_alias=_choices("force_immediate", "forceImmediate")
    )


class MessageConfig(ActionConfig):
    template_id: Optional[str] = Field(
        default=None, validation_alias=_choices("template_id", "templateId")
    )
    message: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    timeout_minutes: int = Field(
        default=0, ge=0, validation_alias=_choices("timeout_minutes", "timeoutMinutes")
    )
    force_immediate: bool = Field(
        default=False, validation_alias=_choices("force_immediate", "forceImmediate")
    )
    enable_ai: bool = Field(
        default=False, validation_alias=_choices("enable_ai", "enableAi")
    )
    agent_prompt: Optional[str] = Field(
        default=None, validation_alias=_choices("agent_prompt", "agentPrompt")
    )

    @field_validator("timeout_minutes", mode="before")
    @classmethod
    def _none_is_zero(cls, v: Any) -> Any:
        return v or 0


class EmailConfig(ActionConfig):
    template_id: Optional[str] = Field(
        default=None, validation_alias=_choices("template_id", "templateId")
    )
    subject: Optional[str] = None
    body: Optional[str] = None


class WaitConfig(ActionConfig):
    pass


class TaskConfig(ActionConfig):
    title: str = "Follow up"
    delay_days: float = Field(
        default=1, ge=0, validation_alias=_choices("delay_days", "delayDays")
    )


class GroupOutput(BaseModel):
    """A switch output: group identifier plus display name."""

    id: str
    name: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"id": data, "name": data}
        return data


class RouteConfig(ActionConfig):
    outputs: List[GroupOutput] = Field(default_factory=list)

    @field_validator("outputs", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return v or []


class AssignConfig(ActionConfig):
    strategy: AssignmentStrategy = AssignmentStrategy.LEAST_LOADED
    agent_id: Optional[str] = Field(
        default=None, validation_alias=_choices("agent_id", "agentId")
    )

    @field_validator("strategy", mode="before")
    @classmethod
    def _legacy_strategy(cls, v: Any) -> Any:
        if v is None:
            return AssignmentStrategy.LEAST_LOADED
        return _STRATEGY_ALIASES.get(v, v)


class MarkLostConfig(ActionConfig):
    pass


class NurtureConfig(ActionConfig):
    day: str = "monday"
    time: str = "09:00"


class UnknownConfig(ActionConfig):
    model_config = ConfigDict(extra="allow")


CONFIG_MODELS: Dict[ActionKind, Type[ActionConfig]] = {
    ActionKind.CALL: CallConfig,
    ActionKind.SEND_MESSAGE: MessageConfig,
    ActionKind.SEND_EMAIL: EmailConfig,
    ActionKind.WAIT: WaitConfig,
    ActionKind.CREATE_TASK: TaskConfig,
    ActionKind.ROUTE_BY_GROUP: RouteConfig,
    ActionKind.ASSIGN_AGENT: AssignConfig,
    ActionKind.MARK_LOST: MarkLostConfig,
    ActionKind.START_NURTURE: NurtureConfig,
    ActionKind.UNKNOWN: UnknownConfig,
}


# ----------------------------------------------------------------------
# Graph


class Node(BaseModel):
    """A single step of a workflow graph.

    Accepts both the editor shape (``{id, type, data: {...}}``) and a flat
    shape. ``config`` is decoded into the variant matching ``action``.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    action: ActionKind
    action_name: str = ""
    label: Optional[str] = None
    delay_minutes: float = Field(
        default=0, ge=0, validation_alias=_choices("delay_minutes", "delayMinutes")
    )
    time_windows: List[TimeWindow] = Field(
        default_factory=list, validation_alias=_choices("time_windows", "timeWindows")
    )
    config: SerializeAsAny[ActionConfig] = Field(default_factory=UnknownConfig)

    @model_validator(mode="before")
    @classmethod
    def _decode(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        values = dict(data)
        nested = values.pop("data", None)
        if isinstance(nested, dict):
            values = {**values, **nested}
        raw_action = values.get("action")
        kind = ActionKind.parse(raw_action)
        values["action"] = kind
        if not values.get("action_name"):
            values["action_name"] = (
                raw_action.value if isinstance(raw_action, ActionKind) else str(raw_action or "")
            )
        config = values.get("config")
        if not isinstance(config, CONFIG_MODELS[kind]):
            if isinstance(config, ActionConfig):
                config = config.model_dump()
            values["config"] = CONFIG_MODELS[kind].model_validate(config or {})
        return values

    @field_validator("delay_minutes", mode="before")
    @classmethod
    def _none_delay(cls, v: Any) -> Any:
        return v or 0

    @field_validator("time_windows", mode="before")
    @classmethod
    def _none_windows(cls, v: Any) -> Any:
        return v or []

    @property
    def retry_policy(self) -> Optional[RetryPolicy]:
        if isinstance(self.config, CallConfig):
            return self.config.retry_config
        return None

    @property
    def force_immediate(self) -> bool:
        return bool(getattr(self.config, "force_immediate", False))


class Edge(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source: str = Field(
        validation_alias=_choices("source", "source_node_id", "sourceNodeId")
    )
    target: str = Field(
        validation_alias=_choices("target", "target_node_id", "targetNodeId")
    )
    source_handle: Optional[str] = Field(
        default=None, validation_alias=_choices("source_handle", "sourceHandle")
    )

    @field_validator("source_handle", mode="before")
    @classmethod
    def _blank_handle(cls, v: Any) -> Any:
        return v or None


class WorkflowGraph(BaseModel):
    """Immutable-per-run workflow definition produced by the graph editor."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    entry_node_id: Optional[str] = Field(
        default=None, validation_alias=_choices("entry_node_id", "entryNodeId")
    )

    @model_validator(mode="after")
    def _check_edges(self) -> "WorkflowGraph":
        node_ids = {n.id for n in self.nodes}
        seen: set[tuple[str, Optional[str]]] = set()
        for edge in self.edges:
            if edge.source not in node_ids or edge.target not in node_ids:
                raise ValueError(
                    f"Edge {edge.id} references unknown node "
                    f"({edge.source} -> {edge.target})"
                )
            key = (edge.source, edge.source_handle)
            if key in seen:
                raise ValueError(
                    f"Node {edge.source} has more than one edge "
                    f"with handle {edge.source_handle!r}"
                )
            seen.add(key)
        if self.entry_node_id and self.entry_node_id not in node_ids:
            raise ValueError(f"Entry node {self.entry_node_id} not found")
        return self

    def get_node(self, node_id: str) -> Optional[Node]:
        return next((n for n in self.nodes if n.id == node_id), None)

    def entry_node(self) -> Optional[Node]:
        """Explicit entry node, else the first node without incoming edges."""
        if self.entry_node_id:
            return self.get_node(self.entry_node_id)
        targets = {e.target for e in self.edges}
        return next((n for n in self.nodes if n.id not in targets), None)


# ----------------------------------------------------------------------
# Outcomes and run state


class ActionResult(BaseModel):
    """Uniform result returned by every action handler and collaborator."""

    success: bool = False
    suspend: Optional[SuspendKind] = None
    timeout_minutes: Optional[int] = None
    route_to: Optional[str] = None
    error: Optional[str] = None
    reference: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, **kwargs: Any) -> "ActionResult":
        return cls(success=True, **kwargs)

    @classmethod
    def failure(cls, error: str, **kwargs: Any) -> "ActionResult":
        return cls(success=False, error=error, **kwargs)

    def to_outcome(self, now: Optional[datetime] = None) -> "NodeOutcome":
        if self.suspend is SuspendKind.CALLBACK:
            status = OutcomeStatus.WAITING_FOR_CALLBACK
        elif self.suspend is SuspendKind.TIMEOUT:
            status = OutcomeStatus.WAITING_FOR_REPLY
        else:
            status = OutcomeStatus.COMPLETED if self.success else OutcomeStatus.FAILED
        return NodeOutcome(
            success=self.success,
            status=status,
            route_to=self.route_to,
            error=self.error,
            reference=self.reference,
            timeout_minutes=self.timeout_minutes,
            data=self.data,
            recorded_at=now or utcnow(),
        )


class NodeOutcome(BaseModel):
    """Last recorded outcome of a node, persisted in the run context."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    success: bool = False
    status: OutcomeStatus = OutcomeStatus.COMPLETED
    route_to: Optional[str] = Field(
        default=None, validation_alias=_choices("route_to", "routeTo")
    )
    error: Optional[str] = None
    reference: Optional[str] = Field(
        default=None, validation_alias=_choices("reference", "call_id", "sid")
    )
    reason: Optional[str] = None
    timeout_minutes: Optional[int] = Field(
        default=None, validation_alias=_choices("timeout_minutes", "timeoutMinutes")
    )
    reply_received: bool = Field(
        default=False, validation_alias=_choices("reply_received", "replyReceived")
    )
    reply_content: Optional[str] = Field(
        default=None, validation_alias=_choices("reply_content", "replyContent")
    )
    data: Dict[str, Any] = Field(default_factory=dict)
    recorded_at: Optional[datetime] = Field(
        default=None, validation_alias=_choices("recorded_at", "timestamp")
    )

    @model_validator(mode="before")
    @classmethod
    def _foreign_status(cls, data: Any) -> Any:
        # Providers write their own status vocabulary (e.g. "answer", "busy").
        if not isinstance(data, dict):
            return data
        status = data.get("status")
        if status is None or isinstance(status, OutcomeStatus):
            return data
        if status not in {s.value for s in OutcomeStatus}:
            values = dict(data)
            values["status"] = (
                OutcomeStatus.COMPLETED if values.get("success") else OutcomeStatus.FAILED
            )
            values.setdefault("reason", str(status))
            return values
        return data

    @property
    def is_waiting_for_reply(self) -> bool:
        return self.status is OutcomeStatus.WAITING_FOR_REPLY


class ExecutionContext(BaseModel):
    """Per-run context: last outcome per node id plus reserved counters.

    Persisted as a flat map of node ids with the reserved ``retry_count`` and
    ``error`` keys so that inbound collaborators can write into it directly.
    """

    outcomes: Dict[str, Optional[NodeOutcome]] = Field(default_factory=dict)
    retry_count: int = 0
    error: Optional[str] = None

    def outcome_for(self, node_id: str) -> Optional[NodeOutcome]:
        return self.outcomes.get(node_id)

    def record(self, node_id: str, outcome: Optional[NodeOutcome]) -> None:
        self.outcomes[node_id] = outcome

    def to_flat(self) -> Dict[str, Any]:
        flat: Dict[str, Any] = {
            node_id: (
                outcome.model_dump(mode="json", exclude_none=True)
                if outcome is not None
                else None
            )
            for node_id, outcome in self.outcomes.items()
        }
        flat[RETRY_COUNT_KEY] = self.retry_count
        if self.error is not None:
            flat[ERROR_KEY] = self.error
        return flat

    @classmethod
    def from_flat(cls, data: Optional[Dict[str, Any]]) -> "ExecutionContext":
        values = dict(data or {})
        retry_count = int(values.pop(RETRY_COUNT_KEY, 0) or 0)
        error = values.pop(ERROR_KEY, None)
        outcomes: Dict[str, Optional[NodeOutcome]] = {}
        for node_id, raw in values.items():
            if raw is None or isinstance(raw, NodeOutcome):
                outcomes[node_id] = raw
            elif isinstance(raw, dict):
                outcomes[node_id] = NodeOutcome.model_validate(raw)
            else:
                logger.warning(f"Ignoring non-outcome context entry {node_id!r}")
        return cls(outcomes=outcomes, retry_count=retry_count, error=error)


class WorkflowRun(BaseModel):
    """Mutable execution cursor for one (workflow, contact) activation."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str
    contact_id: str
    agency_id: Optional[str] = None
    current_node_id: str
    status: RunStatus = RunStatus.PENDING
    next_run_at: Optional[datetime] = None
    context: ExecutionContext = Field(default_factory=ExecutionContext)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("context", mode="before")
    @classmethod
    def _flat_context(cls, v: Any) -> Any:
        if isinstance(v, dict) or v is None:
            return ExecutionContext.from_flat(v)
        return v

    @field_serializer("context")
    def _serialize_context(self, context: ExecutionContext) -> Dict[str, Any]:
        return context.to_flat()

    def is_due(self, now: datetime) -> bool:
        """Return ``True`` when the scheduler may pick this run up."""
        if self.status not in CLAIMABLE_STATUSES:
            return False
        return self.next_run_at is None or self.next_run_at <= now

    def schedule(self, status: RunStatus, next_run_at: Optional[datetime]) -> None:
        self.status = status
        self.next_run_at = next_run_at

    def schedule_after(self, now: datetime, minutes: float) -> None:
        """Pending when ``minutes`` is zero, waiting until ``now + minutes`` otherwise."""
        if minutes > 0:
            self.schedule(RunStatus.WAITING, now + timedelta(minutes=minutes))
        else:
            self.schedule(RunStatus.PENDING, now)


# ----------------------------------------------------------------------
# Read models


class Contact(BaseModel):
    """Lead being nurtured. Unknown CRM fields are kept as extras."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    agency_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = Field(
        default=None, validation_alias=_choices("phone", "primary_phone")
    )
    email: Optional[str] = Field(
        default=None, validation_alias=_choices("email", "primary_email")
    )
    group_id: Optional[str] = None
    current_deal_id: Optional[str] = None
    language: Optional[str] = Field(
        default=None, validation_alias=_choices("language", "language_primary")
    )
    nationality: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class AgentCandidate(BaseModel):
    """Agent available for lead assignment, with current load."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: Optional[str] = Field(default=None, validation_alias=_choices("name", "full_name"))
    languages: List[str] = Field(default_factory=list)
    experience_years: float = Field(
        default=0, validation_alias=_choices("experience_years", "experienceYears")
    )
    active_lead_count: int = Field(
        default=0,
        validation_alias=_choices("active_lead_count", "activeLeadCount", "active_leads"),
    )
    max_lead_capacity: int = Field(
        default=DEFAULT_MAX_LEAD_CAPACITY,
        validation_alias=_choices(
            "max_lead_capacity", "maxLeadCapacity", "max_active_leads"
        ),
    )

    @field_validator("languages", mode="before")
    @classmethod
    def _none_languages(cls, v: Any) -> Any:
        return v or []

    @field_validator("experience_years", "active_lead_count", mode="before")
    @classmethod
    def _none_is_zero(cls, v: Any) -> Any:
        return v or 0

    @field_validator("max_lead_capacity", mode="before")
    @classmethod
    def _default_capacity(cls, v: Any) -> Any:
        return v or DEFAULT_MAX_LEAD_CAPACITY

    @property
    def has_capacity(self) -> bool:
        return self.active_lead_count < self.max_lead_capacity


class StepReport(BaseModel):
    """Summary of what one tick did to one run."""

    run_id: str
    transition: StepTransition
    status: RunStatus
    node_id: Optional[str] = None
    action: Optional[str] = None
    success: Optional[bool] = None
    next_run_at: Optional[datetime] = None
    error: Optional[str] = None
