"""Dispatch node actions and retry interventions to their handlers."""

from __future__ import annotations

import logging
from datetime import datetime

from ..collaborators.base import Collaborators
from ..contracts import (
    ActionResult,
    Contact,
    EmailConfig,
    Intervention,
    InterventionAction,
    MessageConfig,
    Node,
    WorkflowRun,
)
from .handlers import HANDLERS, ActionRequest

logger = logging.getLogger(__name__)


class ActionDispatcher:
    """Run the handler registered for a node's action.

    Collaborator exceptions are turned into ``success=False`` results so that
    they flow through normal failure branching.
    """

    def __init__(self, collaborators: Collaborators) -> None:
        self.collaborators = collaborators

    async def dispatch(
        self, node: Node, contact: Contact, run: WorkflowRun, now: datetime
    ) -> ActionResult:
        handler = HANDLERS[node.action]
        request = ActionRequest(
            node=node,
            contact=contact,
            run=run,
            collaborators=self.collaborators,
            now=now,
        )
        try:
            result = await handler(request)
        except Exception as exc:
            logger.exception(
                f"Action {node.action.value} failed on node {node.id} for run {run.id}"
            )
            return ActionResult.failure(str(exc) or exc.__class__.__name__)
        logger.debug(
            f"Action {node.action.value} on node {node.id} returned "
            f"success={result.success} suspend={result.suspend}"
        )
        return result

    async def run_intervention(
        self, intervention: Intervention, contact: Contact
    ) -> ActionResult:
        """Fire a one-shot intervention. Errors are logged, never raised."""
        payload = intervention.payload
        try:
            if intervention.action is InterventionAction.SEND_EMAIL:
                result = await self.collaborators.email.send_email(
                    contact, EmailConfig.model_validate(payload)
                )
            elif intervention.action is InterventionAction.SEND_MESSAGE:
                config = MessageConfig.model_validate(payload)
                result = await self.collaborators.messaging.send_message(contact, config)
            else:
                result = await self.collaborators.crm.update_contact(
                    contact.id, dict(payload.get("fields") or {})
                )
        except Exception as exc:
            logger.error(
                f"Intervention {intervention.action.value} after attempt "
                f"{intervention.after_attempt} failed for contact {contact.id}: {exc}"
            )
            return ActionResult.failure(str(exc) or exc.__class__.__name__)

        if result.success:
            logger.info(
                f"Intervention {intervention.action.value} sent to contact {contact.id} "
                f"after attempt {intervention.after_attempt}"
            )
        else:
            logger.error(
                f"Intervention {intervention.action.value} failed for contact "
                f"{contact.id}: {result.error}"
            )
        return result
