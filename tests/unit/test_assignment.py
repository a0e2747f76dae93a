import pytest
from pydantic_ai.models.test import TestModel

from nurtureflow.assignment import (
    LLMAgentMatcher,
    ScoringMatcher,
    available,
    least_loaded,
    select_agent,
)
from nurtureflow.collaborators.base import AgentMatcher
from nurtureflow.contracts import AgentCandidate, AssignmentStrategy, Contact
from nurtureflow.errors import NoAgentCapacityError

LEAD = Contact(id="c1", first_name="Ana", language="es")


def _agents(*loads, capacity=10):
    return [
        AgentCandidate(id=f"a{i}", active_lead_count=load, max_lead_capacity=capacity)
        for i, load in enumerate(loads, start=1)
    ]


class RaisingMatcher(AgentMatcher):
    async def match(self, contact, candidates):
        raise RuntimeError("matcher down")


class FixedAnswerMatcher(AgentMatcher):
    def __init__(self, answer):
        self.answer = answer

    async def match(self, contact, candidates):
        return self.answer


@pytest.mark.asyncio
async def test_least_loaded_picks_lowest_load():
    chosen = await select_agent(AssignmentStrategy.LEAST_LOADED, _agents(5, 2, 8), LEAD)
    assert chosen.id == "a2"


def test_least_loaded_tie_keeps_enumeration_order():
    assert least_loaded(_agents(3, 1, 1)).id == "a2"


def test_available_filters_full_agents():
    agents = _agents(10, 9, 11)
    assert [a.id for a in available(agents)] == ["a2"]


@pytest.mark.asyncio
async def test_no_capacity_raises():
    with pytest.raises(NoAgentCapacityError) as exc:
        await select_agent(AssignmentStrategy.LEAST_LOADED, _agents(10, 12), LEAD)
    assert exc.value.code == "no_capacity"


@pytest.mark.asyncio
async def test_no_candidates_raises():
    with pytest.raises(NoAgentCapacityError):
        await select_agent(AssignmentStrategy.HEURISTIC, [], LEAD)


@pytest.mark.asyncio
async def test_fixed_strategy():
    agents = _agents(5, 2, 8)
    chosen = await select_agent(AssignmentStrategy.FIXED, agents, LEAD, agent_id="a3")
    assert chosen.id == "a3"
    chosen = await select_agent(AssignmentStrategy.FIXED, agents, LEAD)
    assert chosen.id == "a1"
    # configured agent at capacity -> first available
    agents = _agents(10, 2)
    chosen = await select_agent(AssignmentStrategy.FIXED, agents, LEAD, agent_id="a1")
    assert chosen.id == "a2"


@pytest.mark.asyncio
async def test_heuristic_uses_scoring_matcher():
    agents = [
        AgentCandidate(id="en", languages=["en"], experience_years=10, active_lead_count=0),
        AgentCandidate(id="es", languages=["ES", "en"], experience_years=2, active_lead_count=7),
    ]
    chosen = await select_agent(
        AssignmentStrategy.HEURISTIC, agents, LEAD, matcher=ScoringMatcher()
    )
    assert chosen.id == "es"


@pytest.mark.asyncio
async def test_scoring_matcher_prefers_experience_then_load():
    matcher = ScoringMatcher()
    contact = Contact(id="c2")
    agents = [
        AgentCandidate(id="junior", experience_years=1),
        AgentCandidate(id="busy", experience_years=5, active_lead_count=9),
        AgentCandidate(id="free", experience_years=5, active_lead_count=1),
    ]
    assert await matcher.match(contact, agents) == "free"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "matcher",
    [None, RaisingMatcher(), FixedAnswerMatcher(None), FixedAnswerMatcher("ghost")],
)
async def test_heuristic_falls_back_to_least_loaded(matcher):
    chosen = await select_agent(
        AssignmentStrategy.HEURISTIC, _agents(5, 2, 8), LEAD, matcher=matcher
    )
    assert chosen.id == "a2"


@pytest.mark.asyncio
async def test_heuristic_never_picks_agent_without_capacity():
    agents = _agents(10, 4)
    chosen = await select_agent(
        AssignmentStrategy.HEURISTIC, agents, LEAD, matcher=FixedAnswerMatcher("a1")
    )
    assert chosen.id == "a2"


@pytest.mark.asyncio
async def test_llm_matcher_returns_structured_choice():
    model = TestModel(custom_output_args={"selected_agent_id": "a3", "reason": "speaks es"})
    matcher = LLMAgentMatcher(model)
    chosen = await select_agent(
        AssignmentStrategy.HEURISTIC, _agents(5, 2, 8), LEAD, matcher=matcher
    )
    assert chosen.id == "a3"
