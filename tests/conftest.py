import pytest

import nurtureflow.collaborators as collaborator_factory
import nurtureflow.persistence as persistence
from nurtureflow.assignment import ScoringMatcher
from nurtureflow.collaborators import (
    Collaborators,
    InMemoryCrm,
    InMemoryMailer,
    InMemoryMessenger,
    InMemoryVoiceCaller,
)
from nurtureflow.contracts import Contact
from nurtureflow.execute import RunExecutor
from nurtureflow.persistence import InMemoryRunRepository


@pytest.fixture(autouse=True)
def reset_singletons():
    persistence._repository_instance = None
    collaborator_factory._collaborators_instance = None
    yield
    persistence._repository_instance = None
    collaborator_factory._collaborators_instance = None


@pytest.fixture
def contact() -> Contact:
    return Contact(
        id="c1",
        agency_id="acme",
        first_name="Ana",
        last_name="Garcia",
        phone="+34600000001",
        email="ana@example.com",
        current_deal_id="d1",
        language="es",
    )


@pytest.fixture
def crm(contact) -> InMemoryCrm:
    crm = InMemoryCrm()
    crm.add_contact(contact)
    return crm


@pytest.fixture
def collaborators(crm) -> Collaborators:
    return Collaborators(
        voice=InMemoryVoiceCaller(),
        messaging=InMemoryMessenger(),
        email=InMemoryMailer(),
        crm=crm,
        agents=crm,
        matcher=ScoringMatcher(),
    )


@pytest.fixture
def repo() -> InMemoryRunRepository:
    return InMemoryRunRepository()


@pytest.fixture
def executor(repo, collaborators) -> RunExecutor:
    return RunExecutor(repo, collaborators)
