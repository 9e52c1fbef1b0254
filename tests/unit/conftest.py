import pytest

from clusterwms.adapters.mock import (
    MockBatchService,
    MockEventSource,
    MockJobManager,
)
from clusterwms.config import Settings
from clusterwms.core.controller import Controller
from clusterwms.models.events import TaskCompleted


@pytest.fixture
def mock_jobs():
    return MockJobManager()


@pytest.fixture
def make_controller(mock_jobs):
    """Factory for an initialized controller over mock adapters."""

    async def _make(workflow, clustering_spec="hc-1-1", hosts=4, wait=0.0, core_speed=1e9, **overrides):
        settings = Settings(clustering_spec=clustering_spec, **overrides)
        batch = MockBatchService(core_speed=core_speed, hosts=hosts, wait=wait)
        controller = Controller(
            workflow, mock_jobs, batch, MockEventSource(mock_jobs, workflow), settings
        )
        await controller.initialize()
        return controller

    return _make


async def grant_all(controller, jobs):
    """Grant every reservation still waiting in the queue."""
    for reservation in list(jobs.awaiting_grant):
        await controller.dispatch(jobs.grant(reservation))


async def complete_task(controller, jobs, workflow, task_id):
    """Finish the running task job of ``task_id`` and dispatch the completion."""
    for job, target in list(jobs.running_jobs):
        if job.task.id == task_id:
            jobs.running_jobs.remove((job, target))
            workflow.complete(job.task)
            await controller.dispatch(TaskCompleted(job))
            return job
    raise AssertionError(f"No running job for {task_id}")
