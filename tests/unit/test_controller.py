import pytest

from clusterwms.adapters.mock import (
    MockBatchService,
    MockEventSource,
    MockJobManager,
    MockWorkflowProvider,
)
from clusterwms.config import Settings
from clusterwms.core.controller import Controller
from clusterwms.errors import ConfigurationError
from clusterwms.models.enums import PlaceholderStatus

from .conftest import complete_task, grant_all


class TestRun:
    async def test_chain_runs_level_by_level(self, make_controller, mock_jobs):
        workflow = MockWorkflowProvider.layered([1] * 5)
        controller = await make_controller(workflow, "hc-1-1")

        await controller.run()

        assert workflow.is_done()
        assert [r.name for r in mock_jobs.submitted_reservations] == [
            f"pilot_job_{i}" for i in range(1, 6)
        ]
        history = controller.manager.history
        assert [ph.start_level for ph in history] == [0, 1, 2, 3, 4]
        assert all(ph.status == PlaceholderStatus.COMPLETED for ph in history)

    async def test_ratio_search_run_ends_in_individual_mode(self, make_controller, mock_jobs):
        workflow = MockWorkflowProvider.layered([1] * 5, flops=1e10)
        waits = {10: 5, 20: 6, 30: 15, 50: 0}
        controller = await make_controller(
            workflow, "zhang", wait=lambda nodes, walltime: waits.get(walltime, 1000.0)
        )

        await controller.run()

        assert workflow.is_done()
        assert [(ph.start_level, ph.end_level) for ph in controller.manager.history] == [
            (0, 1), (2, 3), (4, 4),
        ]
        assert controller.strategy.individual_mode is True

    async def test_individual_mode_run(self, make_controller, mock_jobs):
        workflow = MockWorkflowProvider.layered([2, 1, 1])
        controller = await make_controller(workflow, "zhang", wait=1e6)

        await controller.run()

        assert workflow.is_done()
        assert controller.strategy.individual_mode is True
        assert len(mock_jobs.submitted_reservations) == 4
        assert all(ph.num_tasks == 1 for ph in controller.manager.history)

    async def test_posterior_merge_run(self, make_controller, mock_jobs):
        workflow = MockWorkflowProvider.layered([1] * 4)
        controller = await make_controller(workflow, "hc-1-1:merge")

        await controller.run()

        assert workflow.is_done()
        assert [(ph.start_level, ph.end_level) for ph in controller.manager.history] == [(0, 1), (2, 3)]

    async def test_recovers_from_expiration(self, make_controller, mock_jobs):
        workflow = MockWorkflowProvider.layered([2, 1])
        controller = await make_controller(workflow, "hc-2-2")
        first, = await controller.decide()
        await grant_all(controller, mock_jobs)
        await complete_task(controller, mock_jobs, workflow, "task_0_0")
        await controller.dispatch(mock_jobs.expire(first.reservation))

        await controller.run()

        assert workflow.is_done()
        statuses = [ph.status for ph in controller.manager.history]
        assert statuses == [
            PlaceholderStatus.EXPIRED,
            PlaceholderStatus.COMPLETED,
            PlaceholderStatus.COMPLETED,
        ]
        assert controller.manager.history[1].clustered_job.task_ids == {"task_0_1"}

    async def test_configuration_error_aborts_run(self, make_controller):
        controller = await make_controller(
            MockWorkflowProvider.layered([5]), "zhang:plimit", hosts=4
        )
        with pytest.raises(ConfigurationError):
            await controller.run()

    async def test_run_initializes_on_demand(self):
        workflow = MockWorkflowProvider.layered([1, 1])
        jobs = MockJobManager()
        controller = Controller(
            workflow, jobs, MockBatchService(), MockEventSource(jobs, workflow),
            Settings(clustering_spec="hc-1-1"),
        )
        await controller.run()
        assert workflow.is_done()


class TestDecide:
    async def test_overlap_gates_level_windows(self, make_controller, mock_jobs):
        workflow = MockWorkflowProvider.layered([2, 2, 2])
        controller = await make_controller(workflow, "hc-1-1", overlap=True)

        assert len(await controller.decide()) == 2
        assert await controller.decide() == []

        await grant_all(controller, mock_jobs)
        second = await controller.decide()
        assert [ph.start_level for ph in second] == [1, 1]

        await grant_all(controller, mock_jobs)
        assert await controller.decide() == []

    async def test_no_overlap_waits_for_window_to_finish(self, make_controller, mock_jobs):
        workflow = MockWorkflowProvider.layered([2, 2])
        controller = await make_controller(workflow, "hc-1-1")
        await controller.decide()
        await grant_all(controller, mock_jobs)

        assert await controller.decide() == []
        await complete_task(controller, mock_jobs, workflow, "task_0_0")
        assert await controller.decide() == []
        await complete_task(controller, mock_jobs, workflow, "task_0_1")
        assert len(await controller.decide()) == 2

    async def test_decide_is_idempotent_once_everything_is_submitted(self, make_controller, mock_jobs):
        controller = await make_controller(MockWorkflowProvider.layered([1]), "hc-1-1")
        await controller.decide()
        calls = len(mock_jobs.calls)

        assert await controller.decide() == []
        assert len(mock_jobs.calls) == calls


class TestDispatch:
    async def test_unknown_event(self, make_controller):
        controller = await make_controller(MockWorkflowProvider.layered([1]))
        with pytest.raises(TypeError):
            await controller.dispatch("not-an-event")


class TestStatus:
    async def test_status_before_initialize(self):
        workflow = MockWorkflowProvider.layered([1])
        jobs = MockJobManager()
        controller = Controller(
            workflow, jobs, MockBatchService(), MockEventSource(jobs, workflow),
            Settings(clustering_spec="zhang:overlap"),
        )
        status = controller.status()
        assert status.strategy == "zhang:overlap"
        assert status.placeholders_by_status == {}

    async def test_status_tracks_placeholders(self, make_controller, mock_jobs):
        controller = await make_controller(MockWorkflowProvider.layered([2, 1]), "hc-1-1")
        await controller.decide()

        status = controller.status()
        assert status.strategy == "hc-1-1"
        assert status.next_open_level == 1
        assert status.placeholders_by_status["pending"] == 2
        assert status.ongoing_levels[0].pending == 2
        assert status.workflow_done is False


def _watch_level_order(manager):
    """Record submissions that start above a level with a PENDING placeholder."""
    violations = []
    submit = manager.submit

    async def checked_submit(clustered_job, runtime):
        for ph in manager.pending():
            if clustered_job.start_level > ph.start_level:
                violations.append((clustered_job.start_level, ph.start_level))
        return await submit(clustered_job, runtime)

    manager.submit = checked_submit
    return violations


class TestLevelProgression:
    @pytest.mark.parametrize("clustering_spec", ["hc-1-1", "hc-2-1", "hc-1-1:merge", "hc-2-2:merge"])
    @pytest.mark.parametrize("overlap", [False, True])
    @pytest.mark.parametrize("widths", [[2, 1], [1, 1, 1, 1], [2, 3, 1, 2], [1, 2, 2, 1]])
    async def test_no_level_submitted_above_a_pending_one(
        self, make_controller, clustering_spec, overlap, widths
    ):
        workflow = MockWorkflowProvider.layered(widths)
        controller = await make_controller(workflow, clustering_spec, overlap=overlap)
        violations = _watch_level_order(controller.manager)

        await controller.run()

        assert workflow.is_done()
        assert violations == []

    async def test_merge_with_overlap_waits_for_earlier_level(self, make_controller, mock_jobs):
        workflow = MockWorkflowProvider.layered([2, 1])
        controller = await make_controller(workflow, "hc-1-1:merge", overlap=True)

        assert len(await controller.decide()) == 2
        assert await controller.decide() == []

        await grant_all(controller, mock_jobs)
        later, = await controller.decide()
        assert (later.start_level, later.end_level) == (1, 1)
