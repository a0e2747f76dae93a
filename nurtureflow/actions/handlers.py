"""Built-in action handlers.

Each handler is a plain coroutine taking an :class:`ActionRequest` and
returning an :class:`ActionResult`. ``HANDLERS`` maps every
:class:`ActionKind` to its handler.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional, Tuple

from ..assignment import select_agent
from ..collaborators.base import Collaborators
from ..constants import WEEKDAY_TAGS
from ..contracts import (
    ActionKind,
    ActionResult,
    AssignConfig,
    CallConfig,
    Contact,
    EmailConfig,
    MessageConfig,
    Node,
    NurtureConfig,
    RouteConfig,
    SuspendKind,
    TaskConfig,
    TimeWindow,
    WorkflowRun,
)
from ..errors import NoAgentCapacityError
from ..routing import contact_groups, has_default_output, route_by_group

logger = logging.getLogger(__name__)

_DAY_NUMBERS = {tag: index + 1 for index, tag in enumerate(WEEKDAY_TAGS)}


@dataclass
class ActionRequest:
    """Everything a handler may use; handlers hold no other state."""

    node: Node
    contact: Contact
    run: WorkflowRun
    collaborators: Collaborators
    now: datetime

    @property
    def agency_id(self) -> Optional[str]:
        return self.run.agency_id or self.contact.agency_id


ActionHandler = Callable[[ActionRequest], Awaitable[ActionResult]]


async def handle_call(request: ActionRequest) -> ActionResult:
    config = request.node.config
    assert isinstance(config, CallConfig)
    result = await request.collaborators.voice.place_call(
        request.contact, config, request.run.id, request.agency_id
    )
    if not result.success:
        return result
    return result.model_copy(update={"suspend": SuspendKind.CALLBACK})


async def handle_send_message(request: ActionRequest) -> ActionResult:
    config = request.node.config
    assert isinstance(config, MessageConfig)
    result = await request.collaborators.messaging.send_message(request.contact, config)
    if result.success and config.timeout_minutes > 0:
        return result.model_copy(
            update={
                "suspend": SuspendKind.TIMEOUT,
                "timeout_minutes": config.timeout_minutes,
            }
        )
    return result


async def handle_send_email(request: ActionRequest) -> ActionResult:
    config = request.node.config
    assert isinstance(config, EmailConfig)
    return await request.collaborators.email.send_email(request.contact, config)


async def handle_wait(request: ActionRequest) -> ActionResult:
    # the delay itself is the node's delay_minutes, applied on arrival
    return ActionResult.ok()


async def handle_create_task(request: ActionRequest) -> ActionResult:
    config = request.node.config
    assert isinstance(config, TaskConfig)
    due_at = request.now + timedelta(days=config.delay_days)
    return await request.collaborators.crm.create_task(
        request.contact, config, due_at, request.agency_id
    )


async def handle_route_by_group(request: ActionRequest) -> ActionResult:
    config = request.node.config
    assert isinstance(config, RouteConfig)
    if not config.outputs:
        return ActionResult.ok(route_to=None)
    contact = request.contact
    try:
        members = await request.collaborators.crm.list_group_ids(contact.id)
    except Exception as exc:
        fallback = "default" if has_default_output(config.outputs) else None
        logger.warning(
            f"Group lookup failed for contact {contact.id}, routing to {fallback!r}: {exc}"
        )
        return ActionResult.ok(route_to=fallback)
    groups = contact_groups(contact.group_id, members)
    route = route_by_group(groups, config.outputs)
    logger.info(f"Contact {contact.id} in groups {sorted(groups)} routed to {route!r}")
    return ActionResult.ok(route_to=route)


async def handle_assign_agent(request: ActionRequest) -> ActionResult:
    config = request.node.config
    assert isinstance(config, AssignConfig)
    collaborators = request.collaborators
    candidates = await collaborators.agents.list_candidates(request.agency_id)
    try:
        agent = await select_agent(
            config.strategy,
            candidates,
            request.contact,
            matcher=collaborators.matcher,
            agent_id=config.agent_id,
        )
    except NoAgentCapacityError as exc:
        logger.warning(f"No agent capacity for contact {request.contact.id}")
        return ActionResult.failure(exc.code)
    result = await collaborators.crm.assign_agent(request.contact, agent.id)
    if result.success and result.reference is None:
        result = result.model_copy(update={"reference": agent.id})
    return result


async def handle_mark_lost(request: ActionRequest) -> ActionResult:
    return await request.collaborators.crm.mark_lost(request.contact)


def nurture_schedule(node: Node) -> Tuple[int, str]:
    """Weekly nurture slot as ``(iso_weekday, "HH:MM")``.

    Taken from the node's first time window when it has days, else from
    the node config, else Monday 09:00.
    """
    config = node.config
    if node.time_windows and node.time_windows[0].days:
        window: TimeWindow = node.time_windows[0]
        return _DAY_NUMBERS[window.days[0]], window.start
    if isinstance(config, NurtureConfig):
        tag = config.day.strip().lower()[:3]
        return _DAY_NUMBERS.get(tag, 1), config.time or "09:00"
    return 1, "09:00"


async def handle_start_nurture(request: ActionRequest) -> ActionResult:
    contact = request.contact
    if not contact.current_deal_id:
        return ActionResult.failure("No active deal found for contact")
    day, time = nurture_schedule(request.node)
    return await request.collaborators.crm.enable_nurture(contact, day, time)


async def handle_unknown(request: ActionRequest) -> ActionResult:
    logger.warning(
        f"Unknown action {request.node.action_name!r} on node {request.node.id}, skipping"
    )
    return ActionResult.ok()


HANDLERS: Dict[ActionKind, ActionHandler] = {
    ActionKind.CALL: handle_call,
    ActionKind.SEND_MESSAGE: handle_send_message,
    ActionKind.SEND_EMAIL: handle_send_email,
    ActionKind.WAIT: handle_wait,
    ActionKind.CREATE_TASK: handle_create_task,
    ActionKind.ROUTE_BY_GROUP: handle_route_by_group,
    ActionKind.ASSIGN_AGENT: handle_assign_agent,
    ActionKind.MARK_LOST: handle_mark_lost,
    ActionKind.START_NURTURE: handle_start_nurture,
    ActionKind.UNKNOWN: handle_unknown,
}
