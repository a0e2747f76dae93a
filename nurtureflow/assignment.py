"""Agent assignment: capacity filter, strategies and matching collaborators."""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Sequence

from pydantic import BaseModel
from pydantic_ai import Agent

from .collaborators.base import AgentMatcher
from .contracts import AgentCandidate, AssignmentStrategy, Contact
from .errors import NoAgentCapacityError

logger = logging.getLogger(__name__)


def available(candidates: Sequence[AgentCandidate]) -> List[AgentCandidate]:
    """Candidates with ``active_lead_count < max_lead_capacity``, order kept."""
    return [c for c in candidates if c.has_capacity]


def least_loaded(candidates: Sequence[AgentCandidate]) -> AgentCandidate:
    # sorted() is stable, so ties keep enumeration order
    return sorted(candidates, key=lambda c: c.active_lead_count)[0]


async def select_agent(
    strategy: AssignmentStrategy,
    candidates: Sequence[AgentCandidate],
    contact: Contact,
    matcher: Optional[AgentMatcher] = None,
    agent_id: Optional[str] = None,
) -> AgentCandidate:
    """Pick the agent a contact should be assigned to.

    Args:
        strategy: ``least_loaded``, ``fixed`` or ``heuristic``.
        candidates: Agents in enumeration order.
        contact: The lead being assigned.
        matcher: Scoring collaborator for ``heuristic``.
        agent_id: Preferred agent for ``fixed``.

    Raises:
        NoAgentCapacityError: If every candidate is at capacity.
    """
    pool = available(candidates)
    if not pool:
        raise NoAgentCapacityError()

    if strategy is AssignmentStrategy.FIXED:
        if agent_id:
            chosen = next((c for c in pool if c.id == agent_id), None)
            if chosen is not None:
                return chosen
            logger.warning(
                f"Configured agent {agent_id} unavailable, using first candidate"
            )
        return pool[0]

    if strategy is AssignmentStrategy.HEURISTIC:
        return await _heuristic(pool, contact, matcher)

    return least_loaded(pool)


async def _heuristic(
    pool: List[AgentCandidate], contact: Contact, matcher: Optional[AgentMatcher]
) -> AgentCandidate:
    if matcher is None:
        logger.info("No agent matcher configured, using least_loaded")
        return least_loaded(pool)
    try:
        selected = await matcher.match(contact, pool)
    except Exception as exc:
        logger.warning(f"Agent matcher failed, falling back to least_loaded: {exc}")
        return least_loaded(pool)
    chosen = next((c for c in pool if c.id == selected), None)
    if chosen is None:
        if selected is not None:
            logger.warning(
                f"Agent matcher returned unknown agent {selected!r}, "
                "falling back to least_loaded"
            )
        return least_loaded(pool)
    return chosen


class ScoringMatcher(AgentMatcher):
    """Deterministic matcher: language match, then experience, then load."""

    async def match(
        self, contact: Contact, candidates: List[AgentCandidate]
    ) -> Optional[str]:
        if not candidates:
            return None
        language = (contact.language or "").strip().lower()

        def score(candidate: AgentCandidate) -> tuple:
            speaks = bool(language) and language in {
                lang.strip().lower() for lang in candidate.languages
            }
            return (speaks, candidate.experience_years, -candidate.active_lead_count)

        # max() keeps the first of equal scores
        return max(candidates, key=score).id


class AgentSelection(BaseModel):
    selected_agent_id: str
    reason: str = ""


SELECTION_PROMPT = (
    "You assign real-estate leads to sales agents. Prefer an agent who speaks "
    "the lead's language, then the more experienced agent, then the one with "
    "fewer active leads. Answer with the id of exactly one listed agent."
)


class LLMAgentMatcher(AgentMatcher):
    """Matcher backed by a pydantic-ai agent with structured output.

    ``model`` is anything ``pydantic_ai.Agent`` accepts: a model string such
    as ``"openai:gpt-4o-mini"`` or a model instance.
    """

    def __init__(self, model: Any) -> None:
        self.model = model
        self._agent: Optional[Agent] = None

    @property
    def agent(self) -> Agent:
        if self._agent is None:
            self._agent = Agent(
                self.model,
                output_type=AgentSelection,
                system_prompt=SELECTION_PROMPT,
            )
        return self._agent

    async def match(
        self, contact: Contact, candidates: List[AgentCandidate]
    ) -> Optional[str]:
        prompt = json.dumps(
            {
                "lead": {
                    "name": contact.full_name,
                    "language": contact.language,
                    "nationality": contact.nationality,
                },
                "agents": [
                    {
                        "id": c.id,
                        "name": c.name,
                        "languages": c.languages,
                        "experience_years": c.experience_years,
                        "active_leads": c.active_lead_count,
                        "capacity": c.max_lead_capacity,
                    }
                    for c in candidates
                ],
            }
        )
        result = await self.agent.run(prompt)
        selection = result.output
        logger.info(
            f"LLM matcher chose {selection.selected_agent_id} for contact "
            f"{contact.id}: {selection.reason}"
        )
        return selection.selected_agent_id
