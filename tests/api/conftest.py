"""Pytest fixtures for API tests.

Provides a TestClient whose session registry, completion service and
integrations client are replaced with in-memory test doubles.
"""

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from src.api.main import app
from src.api.routes import conversations
from src.api.routes.connections import get_integrations_client
from src.api.routes.conversations import get_completion_service, get_session_registry
from src.services.session_controller import SessionRegistry
from tests.helpers import FakeCompletionService, FakeIntegrationsService, tool_turn_events


@pytest.fixture(autouse=True)
def _no_proxy_secret(monkeypatch):
    monkeypatch.delenv("ISUITE_PROXY_SECRET", raising=False)


@pytest.fixture
def registry(store_factory) -> SessionRegistry:
    return SessionRegistry(store_factory, on_session_removed=conversations.drop_event_queue)


@pytest.fixture
def completion() -> FakeCompletionService:
    return FakeCompletionService(tool_turn_events())


@pytest.fixture
def integrations() -> FakeIntegrationsService:
    return FakeIntegrationsService()


@pytest.fixture
def client(
    registry: SessionRegistry,
    completion: FakeCompletionService,
    integrations: FakeIntegrationsService,
) -> Generator[TestClient, None, None]:
    """TestClient with overridden service dependencies.

    Yields:
        TestClient configured for testing.
    """
    integrations_client = integrations.client()
    app.dependency_overrides[get_session_registry] = lambda: registry
    app.dependency_overrides[get_completion_service] = lambda: completion
    app.dependency_overrides[get_integrations_client] = lambda: integrations_client
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    conversations._event_queues.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {
        "X-Auth-User-Id": "user-1",
        "X-Auth-User-Email": "sam@example.com",
        "X-Auth-User-Name": "Sam",
    }


@pytest.fixture
def other_user_headers() -> dict[str, str]:
    return {"X-Auth-User-Id": "user-2"}
