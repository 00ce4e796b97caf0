import random

import pytest

from helpers.fakes import KNOWN_PATIENT, FakeAuthService, FakeEmailService
from rdv_assistant.orchestrator import DialogOrchestrator
from rdv_assistant.prompt import PromptSelector
from rdv_assistant.session_store import SessionStore


@pytest.fixture
def auth():
    return FakeAuthService(accounts={KNOWN_PATIENT.email: KNOWN_PATIENT})


@pytest.fixture
def email_service():
    return FakeEmailService()


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def selector():
    """Seeded selector so clarification sequences are reproducible."""
    return PromptSelector(rng=random.Random(7))


@pytest.fixture
def orchestrator(store, auth, email_service, selector):
    return DialogOrchestrator(store, auth, email_service, selector=selector)
