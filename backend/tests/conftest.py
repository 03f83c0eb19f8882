# tests/conftest.py
"""
Pytest fixtures for indexer tests.

Engine and supervisor tests run against the in-memory fakes in
tests/fakes.py; everything touching the ORM uses the ``db`` fixture.
"""

import pytest
from django.conf import settings
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from events.emitter import append_event
from indexer.backoff import RetryPolicy
from tests.fakes import InMemoryCheckpointStore, InMemoryEventSource, RecordingObserver


User = get_user_model()


@pytest.fixture(autouse=True, scope="session")
def _testing_settings():
    """Ensure test-only settings are enabled for read-model guards."""
    settings.TESTING = True


# =============================================================================
# Engine collaborators
# =============================================================================

@pytest.fixture
def source():
    return InMemoryEventSource()


@pytest.fixture
def checkpoints():
    return InMemoryCheckpointStore()


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def fast_policy():
    """Retry policy with near-zero backoff so retry paths run instantly."""
    return RetryPolicy(
        processor_retries=0,
        checkpoint_retries=2,
        backoff_initial=0.001,
        backoff_max=0.01,
    )


# =============================================================================
# Event store helpers
# =============================================================================

@pytest.fixture
def store_event(db):
    """Append an upstream event; ids default to "<contract>-<n>"."""
    counter = {"n": 0}

    def _store(contract, event_type, external_id=None, **fields):
        counter["n"] += 1
        event, _ = append_event(
            contract=contract,
            event_type=event_type,
            data=fields,
            external_id=external_id or f"{contract}-{counter['n']}",
        )
        return event

    return _store


# =============================================================================
# API
# =============================================================================

@pytest.fixture
def user(db):
    return User.objects.create_user(username="operator", password="testpass123")


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def authenticated_client(api_client, user):
    api_client.force_authenticate(user=user)
    return api_client
