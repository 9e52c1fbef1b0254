"""Controller: the single decision loop.

Each cycle asks the admission gate whether a new decision may be taken,
invokes the clustering strategy, submits the resulting placeholder jobs,
then waits for the next event and dispatches it to the lifecycle manager.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from clusterwms.adapters.base import BatchService, EventSource, JobManager, WorkflowProvider
from clusterwms.config import Settings
from clusterwms.errors import ClusterWMSError
from clusterwms.models.events import (
    Event,
    ReservationExpired,
    ReservationGranted,
    TaskCompleted,
    TaskFailed,
)
from clusterwms.models.enums import TaskState
from clusterwms.models.status import ControllerStatus

from .admission_controller import build_admission
from .clustering import ClusteredJob, ClusteringStrategy, PlanningContext, parse_clustering_spec
from .makespan import LevelIndex, RuntimeEstimator
from .placeholder_manager import PlaceholderJob, PlaceholderJobManager
from .wait_oracle import WaitTimeOracle

logger = logging.getLogger(__name__)


class Controller:
    def __init__(
        self,
        workflow: WorkflowProvider,
        job_manager: JobManager,
        batch_service: BatchService,
        events: EventSource,
        settings: Settings,
        *,
        strategy: Optional[ClusteringStrategy] = None,
    ):
        self.workflow = workflow
        self.jobs = job_manager
        self.batch = batch_service
        self.events = events
        self.settings = settings
        self.strategy = strategy or parse_clustering_spec(settings.clustering_spec, settings)

        self.core_speed: Optional[float] = None
        self.num_hosts: Optional[int] = None
        self.level_index: Optional[LevelIndex] = None
        self.manager: Optional[PlaceholderJobManager] = None
        self.context: Optional[PlanningContext] = None
        self.admission = None

        self._dispatch = {
            ReservationGranted: self._handle_reservation_granted,
            ReservationExpired: self._handle_reservation_expired,
            TaskCompleted: self._handle_task_completed,
            TaskFailed: self._handle_task_failed,
        }

    async def initialize(self) -> None:
        """Query batch-service facts and wire the per-run components."""
        self.core_speed = await self.batch.core_flop_rate()
        self.num_hosts = await self.batch.num_hosts()

        level_index = LevelIndex(self.workflow)
        estimator = RuntimeEstimator(level_index, self.core_speed, self.settings.cores_per_node)
        self.level_index = level_index
        self.manager = PlaceholderJobManager(self.workflow, self.jobs, estimator, self.settings)
        self.context = PlanningContext(
            workflow=self.workflow,
            manager=self.manager,
            estimator=estimator,
            oracle=WaitTimeOracle(self.batch, self.settings.cores_per_node),
            num_hosts=self.num_hosts,
        )
        self.admission = build_admission(self.manager, self.strategy, self.settings)
        logger.info(
            "Controller ready: strategy %s, %d hosts at %.3g flop/s, %d levels",
            self.strategy.describe(), self.num_hosts, self.core_speed, level_index.num_levels,
        )

    # ── Main Loop ───────────────────────────────────────────────

    async def run(self) -> None:
        """Decide, wait for an event, dispatch it; until the workflow is done."""
        if self.manager is None:
            await self.initialize()
        try:
            while not self.workflow.is_done():
                await self.decide()
                event = await self.events.next_event()
                await self.dispatch(event)
        except ClusterWMSError:
            logger.exception("Fatal scheduling error; aborting run")
            raise
        logger.info("Workflow is done")

    async def dispatch(self, event: Event) -> None:
        handler = self._dispatch.get(type(event))
        if handler is None:
            raise TypeError(f"Unexpected event {event!r}")
        await handler(event)

    async def decide(self) -> list[PlaceholderJob]:
        """Run one decision cycle. Returns the placeholder jobs submitted."""
        start_level = self.context.first_open_level()
        if start_level is None:
            logger.debug("All workflow levels have been submitted")
            return []

        if not self.admission.has_capacity(start_level):
            return []

        decision = await self.strategy.plan(self.context, start_level)
        if decision.individual_mode:
            return await self._submit_ready_individually()

        submitted = []
        for clustered_job, runtime in decision.jobs:
            submitted.append(await self.manager.submit(clustered_job, runtime))
        return submitted

    # ── Event Handlers ──────────────────────────────────────────

    async def _handle_reservation_granted(self, event: ReservationGranted) -> None:
        logger.info("Reservation %s started", event.reservation.name)
        await self.manager.on_reservation_granted(event.reservation)

    async def _handle_reservation_expired(self, event: ReservationExpired) -> None:
        logger.info("Reservation %s expired", event.reservation.name)
        await self.manager.on_reservation_expired(event.reservation)
        if self.strategy.individual_mode:
            await self._submit_ready_individually()

    async def _handle_task_completed(self, event: TaskCompleted) -> None:
        orphans = await self.manager.on_task_completed(event.job)
        if self.strategy.individual_mode:
            for task in orphans:
                await self._submit_individually(task)

    async def _handle_task_failed(self, event: TaskFailed) -> None:
        self.manager.on_task_failed(event.job)

    # ── Individual Mode ─────────────────────────────────────────

    async def _submit_ready_individually(self) -> list[PlaceholderJob]:
        submitted = []
        for level in range(self.level_index.num_levels):
            for task in self.context.open_tasks(level):
                if task.state == TaskState.READY:
                    submitted.append(await self._submit_individually(task))
        return submitted

    async def _submit_individually(self, task: Any) -> PlaceholderJob:
        level = self.level_index.level_of(task)
        clustered_job = ClusteredJob(tasks=(task,), num_nodes=1, start_level=level, end_level=level)
        return await self.manager.submit(clustered_job, self.context.estimator.for_task(task))

    # ── Status ──────────────────────────────────────────────────

    def status(self) -> ControllerStatus:
        if self.manager is None:
            return ControllerStatus(
                strategy=self.strategy.describe(), workflow_done=self.workflow.is_done()
            )
        return ControllerStatus(
            strategy=self.strategy.describe(),
            individual_mode=self.strategy.individual_mode,
            workflow_done=self.workflow.is_done(),
            next_open_level=self.context.first_open_level(),
            placeholders_by_status=self.manager.counts_by_status(),
            ongoing_levels=[
                level.summary()
                for _, level in sorted(self.manager.ongoing_levels().items())
            ],
        )
