"""
Pytest configuration and shared fixtures.

Default environment variables are set before any inbox import so that the
module-level settings object can be built; settings are then reloaded.
"""

import os

os.environ.setdefault("DATABASE_URL", "memory://")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("BUSINESS_NUMBER", "918329446654")

import pytest

# Clear settings cache before any app imports to ensure test env vars are used
from inbox.config import Settings, get_settings
get_settings.cache_clear()

from inbox.notifications import NotificationHub
from inbox.service import InboxService
from inbox.storage import InMemoryMessageStore
from tests.fakes import RecordingSubscriber


@pytest.fixture
def store():
    return InMemoryMessageStore()


@pytest.fixture
def hub():
    return NotificationHub()


@pytest.fixture
def recorder():
    return RecordingSubscriber()


@pytest.fixture
def make_service(store, hub):
    """Build an InboxService over the in-memory store with a chosen policy."""
    def _make(policy: str = "forward") -> InboxService:
        settings = Settings(
            DATABASE_URL="memory://",
            BUSINESS_NUMBER="918329446654",
            STATUS_TRANSITION_POLICY=policy,
        )
        return InboxService(store, hub, settings)
    return _make


@pytest.fixture
def service(make_service):
    return make_service()
