"""Generic JSON-over-HTTP collaborator.

Every action is a ``POST {base_url}/actions/{name}`` with the contact and the
node config in the body; the response body is the uniform action result.
Reads go through ``GET`` on the ``contacts`` and ``agents`` resources.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..contracts import (
    ActionResult,
    AgentCandidate,
    CallConfig,
    Contact,
    EmailConfig,
    MessageConfig,
    TaskConfig,
)
from .base import AgentDirectory, CrmStore, Mailer, Messenger, VoiceCaller

logger = logging.getLogger(__name__)


class HttpCollaborator(VoiceCaller, Messenger, Mailer, CrmStore, AgentDirectory):
    """Single client implementing every collaborator interface over HTTP."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    async def _post_action(self, name: str, body: Dict[str, Any]) -> ActionResult:
        try:
            response = await self._client.post(f"/actions/{name}", json=body)
            response.raise_for_status()
            return ActionResult.model_validate(response.json())
        except httpx.HTTPError as exc:
            logger.warning(f"Collaborator action {name} failed: {exc}")
            return ActionResult.failure(str(exc) or exc.__class__.__name__)
        except (ValidationError, ValueError) as exc:
            logger.warning(f"Collaborator action {name} returned malformed result: {exc}")
            return ActionResult.failure(f"Malformed collaborator response: {exc}")

    @staticmethod
    def _contact_body(contact: Contact) -> Dict[str, Any]:
        return contact.model_dump(mode="json", exclude_none=True)

    # ------------------------------------------------------------------
    # Outbound actions
    async def place_call(
        self,
        contact: Contact,
        config: CallConfig,
        run_id: str,
        agency_id: Optional[str] = None,
    ) -> ActionResult:
        return await self._post_action(
            "call",
            {
                "contact": self._contact_body(contact),
                "config": config.model_dump(mode="json"),
                "run_id": run_id,
                "agency_id": agency_id,
            },
        )

    async def send_message(self, contact: Contact, config: MessageConfig) -> ActionResult:
        return await self._post_action(
            "send_message",
            {"contact": self._contact_body(contact), "config": config.model_dump(mode="json")},
        )

    async def send_email(self, contact: Contact, config: EmailConfig) -> ActionResult:
        return await self._post_action(
            "send_email",
            {"contact": self._contact_body(contact), "config": config.model_dump(mode="json")},
        )

    async def create_task(
        self,
        contact: Contact,
        config: TaskConfig,
        due_at: datetime,
        agency_id: Optional[str] = None,
    ) -> ActionResult:
        return await self._post_action(
            "create_task",
            {
                "contact": self._contact_body(contact),
                "config": config.model_dump(mode="json"),
                "due_at": due_at.isoformat(),
                "agency_id": agency_id,
            },
        )

    async def mark_lost(self, contact: Contact) -> ActionResult:
        return await self._post_action("mark_lost", {"contact": self._contact_body(contact)})

    async def enable_nurture(self, contact: Contact, day: int, time: str) -> ActionResult:
        return await self._post_action(
            "start_nurture",
            {"contact": self._contact_body(contact), "day": day, "time": time},
        )

    async def update_contact(self, contact_id: str, fields: Dict[str, Any]) -> ActionResult:
        return await self._post_action(
            "update_contact", {"contact_id": contact_id, "fields": fields}
        )

    async def assign_agent(self, contact: Contact, agent_id: str) -> ActionResult:
        return await self._post_action(
            "assign_agent",
            {"contact": self._contact_body(contact), "agent_id": agent_id},
        )

    # ------------------------------------------------------------------
    # Reads
    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        response = await self._client.get(f"/contacts/{contact_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return Contact.model_validate(response.json())

    async def list_group_ids(self, contact_id: str) -> List[str]:
        response = await self._client.get(f"/contacts/{contact_id}/groups")
        response.raise_for_status()
        return [str(g) for g in response.json()]

    async def list_candidates(self, agency_id: Optional[str]) -> List[AgentCandidate]:
        params = {"agency_id": agency_id} if agency_id else None
        response = await self._client.get("/agents", params=params)
        response.raise_for_status()
        return [AgentCandidate.model_validate(a) for a in response.json()]
