import pytest
from httpx import ASGITransport, AsyncClient

from clusterwms.adapters.mock import (
    MockBatchService,
    MockEventSource,
    MockJobManager,
    MockWorkflowProvider,
)
from clusterwms.config import Settings
from clusterwms.core.controller import Controller
from clusterwms.main import create_app


@pytest.fixture
def settings():
    return Settings(clustering_spec="hc-1-1", overlap=False, plimit=False)


@pytest.fixture
async def controller(settings):
    workflow = MockWorkflowProvider.layered([2, 1, 1])
    jobs = MockJobManager()
    c = Controller(
        workflow, jobs, MockBatchService(), MockEventSource(jobs, workflow), settings
    )
    await c.initialize()
    return c


@pytest.fixture
def app(controller):
    return create_app(controller)


@pytest.fixture
async def client(app):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
