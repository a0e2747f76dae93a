"""In-memory collaborators for tests and local development."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

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


class InMemoryVoiceCaller(VoiceCaller):
    """Records calls instead of dialing. ``accept=False`` simulates rejection."""

    def __init__(self, accept: bool = True) -> None:
        self.accept = accept
        self.calls: List[Dict[str, Any]] = []

    async def place_call(
        self,
        contact: Contact,
        config: CallConfig,
        run_id: str,
        agency_id: Optional[str] = None,
    ) -> ActionResult:
        if not contact.phone:
            return ActionResult.failure("No phone number")
        reference = f"call-{len(self.calls) + 1}"
        self.calls.append(
            {
                "contact_id": contact.id,
                "run_id": run_id,
                "agency_id": agency_id,
                "reference": reference,
            }
        )
        if not self.accept:
            return ActionResult.failure("Call rejected by provider", reference=reference)
        return ActionResult.ok(reference=reference)


class InMemoryMessenger(Messenger):
    def __init__(self, accept: bool = True) -> None:
        self.accept = accept
        self.messages: List[Dict[str, Any]] = []

    async def send_message(self, contact: Contact, config: MessageConfig) -> ActionResult:
        if not contact.phone:
            return ActionResult.failure("Contact has no phone number")
        if not config.template_id and not config.message:
            return ActionResult.failure("No templateId or message body provided")
        reference = f"msg-{len(self.messages) + 1}"
        self.messages.append(
            {
                "contact_id": contact.id,
                "template_id": config.template_id,
                "message": config.message,
                "reference": reference,
            }
        )
        if not self.accept:
            return ActionResult.failure("Message rejected by provider")
        return ActionResult.ok(reference=reference)


class InMemoryMailer(Mailer):
    def __init__(self) -> None:
        self.emails: List[Dict[str, Any]] = []

    async def send_email(self, contact: Contact, config: EmailConfig) -> ActionResult:
        if not contact.email:
            return ActionResult.failure("Contact has no email address")
        self.emails.append(
            {
                "contact_id": contact.id,
                "to": contact.email,
                "template_id": config.template_id,
                "subject": config.subject,
            }
        )
        return ActionResult.ok()


class InMemoryCrm(CrmStore, AgentDirectory):
    """Contacts, groups, deals, tasks and agents kept in local dicts."""

    def __init__(self) -> None:
        self.contacts: Dict[str, Contact] = {}
        self.memberships: Dict[str, Set[str]] = defaultdict(set)
        self.agents: Dict[Optional[str], List[AgentCandidate]] = defaultdict(list)
        self.tasks: List[Dict[str, Any]] = []
        self.contact_status: Dict[str, str] = {}
        self.lost_deals: Set[str] = set()
        self.nurture: Dict[str, Dict[str, Any]] = {}
        self.assignments: Dict[str, str] = {}
        self.updates: List[Dict[str, Any]] = []

    # ------------------------------------------------------------------
    # Seeding helpers
    def add_contact(self, contact: Contact, groups: Optional[List[str]] = None) -> Contact:
        self.contacts[contact.id] = contact
        for group_id in groups or []:
            self.memberships[contact.id].add(group_id)
        return contact

    def add_agent(
        self, candidate: AgentCandidate, agency_id: Optional[str] = None
    ) -> AgentCandidate:
        self.agents[agency_id].append(candidate)
        return candidate

    # ------------------------------------------------------------------
    # CrmStore
    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        return self.contacts.get(contact_id)

    async def list_group_ids(self, contact_id: str) -> List[str]:
        return sorted(self.memberships.get(contact_id, set()))

    async def create_task(
        self,
        contact: Contact,
        config: TaskConfig,
        due_at: datetime,
        agency_id: Optional[str] = None,
    ) -> ActionResult:
        task = {
            "contact_id": contact.id,
            "agency_id": agency_id,
            "title": config.title,
            "status": "open",
            "due_at": due_at,
        }
        self.tasks.append(task)
        return ActionResult.ok(reference=str(len(self.tasks)))

    async def mark_lost(self, contact: Contact) -> ActionResult:
        self.contact_status[contact.id] = "lost"
        if contact.current_deal_id:
            self.lost_deals.add(contact.current_deal_id)
        return ActionResult.ok(data={"message": "Marked contact and deal as lost"})

    async def enable_nurture(self, contact: Contact, day: int, time: str) -> ActionResult:
        self.nurture[contact.current_deal_id] = {"day": day, "time": time}
        return ActionResult.ok(
            data={
                "message": (
                    f"Nurturing enabled for deal {contact.current_deal_id} "
                    f"(Day: {day}, Time: {time})"
                )
            }
        )

    async def update_contact(self, contact_id: str, fields: Dict[str, Any]) -> ActionResult:
        contact = self.contacts.get(contact_id)
        if contact is None:
            return ActionResult.failure(f"Contact not found: {contact_id}")
        self.updates.append({"contact_id": contact_id, "fields": dict(fields)})
        self.contacts[contact_id] = contact.model_copy(update=fields)
        return ActionResult.ok()

    async def assign_agent(self, contact: Contact, agent_id: str) -> ActionResult:
        self.assignments[contact.id] = agent_id
        self.contact_status[contact.id] = "assigned"
        for pool in self.agents.values():
            for candidate in pool:
                if candidate.id == agent_id:
                    candidate.active_lead_count += 1
        return ActionResult.ok(reference=agent_id)

    # ------------------------------------------------------------------
    # AgentDirectory
    async def list_candidates(self, agency_id: Optional[str]) -> List[AgentCandidate]:
        return [c.model_copy() for c in self.agents.get(agency_id, [])]
