"""Interfaces for the side-effecting services a workflow run talks to."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..contracts import (
    ActionResult,
    AgentCandidate,
    CallConfig,
    Contact,
    EmailConfig,
    MessageConfig,
    TaskConfig,
)


class VoiceCaller(metaclass=abc.ABCMeta):
    """Places outbound calls. The call result arrives later via webhook."""

    @abc.abstractmethod
    async def place_call(
        self,
        contact: Contact,
        config: CallConfig,
        run_id: str,
        agency_id: Optional[str] = None,
    ) -> ActionResult:
        """Start a call; ``success`` means the provider accepted it."""
        raise NotImplementedError


class Messenger(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    async def send_message(self, contact: Contact, config: MessageConfig) -> ActionResult:
        """Send a chat message (template or free text)."""
        raise NotImplementedError


class Mailer(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    async def send_email(self, contact: Contact, config: EmailConfig) -> ActionResult:
        raise NotImplementedError


class CrmStore(metaclass=abc.ABCMeta):
    """Contact, deal and task records owned by the surrounding CRM."""

    @abc.abstractmethod
    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        raise NotImplementedError

    @abc.abstractmethod
    async def list_group_ids(self, contact_id: str) -> List[str]:
        """Group ids from the multi-membership table (primary group excluded)."""
        raise NotImplementedError

    @abc.abstractmethod
    async def create_task(
        self,
        contact: Contact,
        config: TaskConfig,
        due_at: datetime,
        agency_id: Optional[str] = None,
    ) -> ActionResult:
        raise NotImplementedError

    @abc.abstractmethod
    async def mark_lost(self, contact: Contact) -> ActionResult:
        """Mark the contact and its current deal as lost."""
        raise NotImplementedError

    @abc.abstractmethod
    async def enable_nurture(self, contact: Contact, day: int, time: str) -> ActionResult:
        """Enable weekly nurturing on the contact's current deal."""
        raise NotImplementedError

    @abc.abstractmethod
    async def update_contact(self, contact_id: str, fields: Dict[str, Any]) -> ActionResult:
        raise NotImplementedError

    @abc.abstractmethod
    async def assign_agent(self, contact: Contact, agent_id: str) -> ActionResult:
        raise NotImplementedError


class AgentDirectory(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    async def list_candidates(self, agency_id: Optional[str]) -> List[AgentCandidate]:
        """Agents open for assignment, with their current lead load."""
        raise NotImplementedError


class AgentMatcher(metaclass=abc.ABCMeta):
    """Scores candidates against a contact for heuristic assignment."""

    @abc.abstractmethod
    async def match(
        self, contact: Contact, candidates: List[AgentCandidate]
    ) -> Optional[str]:
        """Return the id of the best candidate, or ``None`` for no opinion."""
        raise NotImplementedError


@dataclass
class Collaborators:
    """Bundle of collaborators handed to the action dispatcher."""

    voice: VoiceCaller
    messaging: Messenger
    email: Mailer
    crm: CrmStore
    agents: AgentDirectory
    matcher: Optional[AgentMatcher] = None
