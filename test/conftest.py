from datetime import datetime, timezone

import pytest

from integration.base import IntegrationClient
from integration.dispatcher import IntegrationDispatcher
from storage.credential_store import InMemoryCredentialStore
from storage.task_store import InMemoryTaskStore
from talk2task.config import Settings
from talk2task.errors import IntegrationError
from talk2task.models import Platform

FIXED_NOW = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)


class FakeProvider:
    def __init__(self, response_text: str):
        self._response_text = response_text
        self.calls = []

    def generate(self, *, system: str, user: str) -> str:
        self.calls.append({"system": system, "user": user})
        return self._response_text


class FakeIntegrationClient(IntegrationClient):
    """Records every call; raises `error` from each call when set."""

    def __init__(self, platform: Platform, external_id: str = "ext-1", error: Exception = None):
        self.platform = platform
        self.external_id = external_id
        self.error = error
        self.created = []
        self.status_updates = []
        self.deleted = []

    async def create(self, task, user_timezone="UTC"):
        if self.error:
            raise self.error
        self.created.append((task, user_timezone))
        return self.external_id

    async def update_status(self, external_id, status):
        if self.error:
            raise self.error
        self.status_updates.append((external_id, status))

    async def delete(self, external_id):
        if self.error:
            raise self.error
        self.deleted.append(external_id)


def network_error(platform: Platform) -> IntegrationError:
    return IntegrationError(platform.value, IntegrationError.NETWORK_ERROR, "connection reset")


@pytest.fixture
def fake_provider_factory():
    def _make(response_text: str):
        return FakeProvider(response_text)
    return _make


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def settings():
    return Settings(llm_provider="mock", llm_api_key="test-key", notion_database_id="db-1")


@pytest.fixture
def task_store(clock):
    return InMemoryTaskStore(clock=clock)


@pytest.fixture
def credential_store():
    return InMemoryCredentialStore()


@pytest.fixture
def calendar_client():
    return FakeIntegrationClient(Platform.GOOGLE_CALENDAR, external_id="evt-1")


@pytest.fixture
def notion_client():
    return FakeIntegrationClient(Platform.NOTION, external_id="page-1")


@pytest.fixture
def dispatcher(calendar_client, notion_client):
    return IntegrationDispatcher(
        {
            Platform.GOOGLE_CALENDAR: lambda cred: calendar_client,
            Platform.NOTION: lambda cred: notion_client,
        }
    )
