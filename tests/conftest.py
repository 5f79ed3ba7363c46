"""Pytest fixtures and shared test configuration.

Fixtures:
    - config: Client configuration pointing at a fake backend
    - fake_backend: Scripted backend served through httpx.MockTransport
    - backend: BackendClient wired to the fake backend
    - orchestrator: StreamOrchestrator with a fresh session and tracker
    - history: HistorySync sharing the orchestrator's session
"""

from collections.abc import AsyncGenerator

import pytest

from research_chat.client.backend import BackendClient
from research_chat.config import ClientConfig
from research_chat.history.sync import HistorySync
from research_chat.streaming.orchestrator import StreamOrchestrator
from tests.helpers import FakeBackend


@pytest.fixture
def config() -> ClientConfig:
    """Return configuration for the fake backend.

    Returns:
        ClientConfig with a fixed base URL and bearer token.
    """
    return ClientConfig(api_base_url="http://backend.test", auth_token="test-token")


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def backend(
    config: ClientConfig, fake_backend: FakeBackend
) -> AsyncGenerator[BackendClient]:
    """Create a backend client routed to the fake backend.

    Yields:
        BackendClient closed after the test.
    """
    async with BackendClient(config, transport=fake_backend.transport()) as client:
        yield client


@pytest.fixture
def orchestrator(backend: BackendClient) -> StreamOrchestrator:
    return StreamOrchestrator(backend)


@pytest.fixture
def history(backend: BackendClient, orchestrator: StreamOrchestrator) -> HistorySync:
    return HistorySync(backend, orchestrator)
