"""Placeholder Job Lifecycle Manager.

Single owner of the placeholder-job state machine:

    PENDING ──granted──▶ RUNNING ──all tasks done──▶ COMPLETED
                            │
                            └──expired with work left──▶ EXPIRED (+ replacement PENDING)

PENDING and zero-progress RUNNING placeholders may be CANCELLED while
recovering from an expiration. Placeholders live in an arena keyed by id and
leave it for ``history`` once terminal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from clusterwms.adapters.base import JobManager, WorkflowProvider
from clusterwms.config import Settings
from clusterwms.errors import InvariantViolation
from clusterwms.models.enums import PlaceholderStatus, TaskState
from clusterwms.models.events import TaskJob
from clusterwms.models.reservation import Reservation
from clusterwms.models.status import OngoingLevelSummary, PlaceholderSummary

from .clustering import ClusteredJob
from .makespan import RuntimeEstimator

logger = logging.getLogger(__name__)


@dataclass
class PlaceholderJob:
    """Binds one clustered job to one reservation."""
    id: int
    clustered_job: ClusteredJob
    requested_runtime: float
    reservation: Optional[Reservation] = None
    status: PlaceholderStatus = PlaceholderStatus.PENDING
    completed_count: int = 0
    completed_task_ids: set[Any] = field(default_factory=set)
    submitted_task_ids: set[Any] = field(default_factory=set)
    superseded_by: Optional[int] = None

    @property
    def tasks(self) -> tuple[Any, ...]:
        return self.clustered_job.tasks

    @property
    def num_tasks(self) -> int:
        return self.clustered_job.num_tasks

    @property
    def start_level(self) -> int:
        return self.clustered_job.start_level

    @property
    def end_level(self) -> int:
        return self.clustered_job.end_level

    @property
    def label(self) -> str:
        name = self.reservation.name if self.reservation else "unsubmitted"
        return f"#{self.id} levels {self.start_level}-{self.end_level} ({name})"

    def incomplete_tasks(self) -> list[Any]:
        return [t for t in self.tasks if t.state != TaskState.COMPLETED]

    def has_started(self) -> bool:
        """True once any member has left the NOT_READY state."""
        return any(t.state != TaskState.NOT_READY for t in self.tasks)

    def summary(self) -> PlaceholderSummary:
        return PlaceholderSummary(
            id=self.id,
            status=self.status,
            start_level=self.start_level,
            end_level=self.end_level,
            num_tasks=self.num_tasks,
            completed_tasks=self.completed_count,
            num_nodes=self.clustered_job.num_nodes,
            requested_runtime=self.requested_runtime,
            reservation=self.reservation.name if self.reservation else None,
            superseded_by=self.superseded_by,
        )


@dataclass
class OngoingLevel:
    """Active placeholder jobs of one level window."""
    start_level: int
    end_level: int
    pending: list[PlaceholderJob] = field(default_factory=list)
    running: list[PlaceholderJob] = field(default_factory=list)
    completed: int = 0

    def summary(self) -> OngoingLevelSummary:
        return OngoingLevelSummary(
            start_level=self.start_level,
            end_level=self.end_level,
            pending=len(self.pending),
            running=len(self.running),
            completed=self.completed,
        )


class PlaceholderJobManager:
    def __init__(
        self,
        workflow: WorkflowProvider,
        job_manager: JobManager,
        estimator: RuntimeEstimator,
        settings: Settings,
    ):
        self.workflow = workflow
        self.jobs = job_manager
        self.estimator = estimator
        self.cores_per_node = settings.cores_per_node
        self.fudge_factor = settings.execution_time_fudge_factor

        self._arena: dict[int, PlaceholderJob] = {}
        self._next_id = 1
        self._by_reservation: dict[str, int] = {}
        self._owner: dict[Any, int] = {}  # task id -> placeholder id
        self._released: set[str] = set()  # reservations we completed or cancelled
        self.history: list[PlaceholderJob] = []

    # ── Queries ─────────────────────────────────────────────────

    def get(self, placeholder_id: int) -> Optional[PlaceholderJob]:
        return self._arena.get(placeholder_id)

    def pending(self) -> list[PlaceholderJob]:
        return [p for p in self._arena.values() if p.status == PlaceholderStatus.PENDING]

    def running(self) -> list[PlaceholderJob]:
        return [p for p in self._arena.values() if p.status == PlaceholderStatus.RUNNING]

    def active(self) -> list[PlaceholderJob]:
        return list(self._arena.values())

    def owns(self, task: Any) -> bool:
        return task.id in self._owner

    def owner_of(self, task: Any) -> Optional[PlaceholderJob]:
        placeholder_id = self._owner.get(task.id)
        return self._arena.get(placeholder_id) if placeholder_id is not None else None

    def ongoing_levels(self) -> dict[int, OngoingLevel]:
        """Level windows that still have PENDING or RUNNING placeholder jobs."""
        ongoing: dict[int, OngoingLevel] = {}
        for ph in self._arena.values():
            level = ongoing.setdefault(
                ph.start_level, OngoingLevel(ph.start_level, ph.end_level)
            )
            level.end_level = max(level.end_level, ph.end_level)
            if ph.status == PlaceholderStatus.PENDING:
                level.pending.append(ph)
            else:
                level.running.append(ph)
        for ph in self.history:
            if ph.status == PlaceholderStatus.COMPLETED and ph.start_level in ongoing:
                ongoing[ph.start_level].completed += 1
        return ongoing

    def counts_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {s.value: 0 for s in PlaceholderStatus}
        for ph in list(self._arena.values()) + self.history:
            counts[ph.status.value] += 1
        return counts

    # ── Submission ──────────────────────────────────────────────

    async def submit(self, clustered_job: ClusteredJob, runtime: float) -> PlaceholderJob:
        """Create a PENDING placeholder job and submit its reservation."""
        for task in clustered_job.tasks:
            if self.owns(task):
                raise InvariantViolation(
                    f"Task {task.id} is already owned by placeholder job "
                    f"{self.owner_of(task).label}"
                )

        ph = PlaceholderJob(
            id=self._next_id, clustered_job=clustered_job, requested_runtime=runtime
        )
        self._next_id += 1

        ph.reservation = await self.jobs.create_reservation(
            clustered_job.num_nodes, self.cores_per_node, 0.0, runtime * self.fudge_factor
        )
        service_args = ph.reservation.service_args()
        await self.jobs.submit_reservation(ph.reservation, service_args)

        self._arena[ph.id] = ph
        self._by_reservation[ph.reservation.name] = ph.id
        for task in clustered_job.tasks:
            self._owner[task.id] = ph.id

        logger.info(
            "Submitted a reservation (%s hosts, %s min) for levels %d-%d (%s) with tasks: %s",
            service_args["-N"], service_args["-t"], ph.start_level, ph.end_level,
            ph.reservation.name, ", ".join(str(t.id) for t in ph.tasks),
        )
        return ph

    async def _submit_task(self, ph: PlaceholderJob, task: Any) -> None:
        job = await self.jobs.create_task_job(task)
        await self.jobs.submit_task_job(job, ph.reservation.target)
        ph.submitted_task_ids.add(task.id)
        logger.info("Submitting task %s as part of placeholder job %s", task.id, ph.label)

    # ── Event Handlers ──────────────────────────────────────────

    async def on_reservation_granted(self, reservation: Reservation) -> Optional[PlaceholderJob]:
        if reservation.name in self._released:
            logger.warning("Reservation %s started after it was released; ignoring", reservation.name)
            return None

        ph = self._find(reservation, PlaceholderStatus.PENDING)
        if ph is None:
            raise InvariantViolation(
                f"Reservation {reservation.name} started but no pending placeholder job matches it"
            )

        ph.reservation = reservation
        self._transition(ph, PlaceholderStatus.RUNNING)
        for task in ph.tasks:
            if task.state == TaskState.READY:
                await self._submit_task(ph, task)
            else:
                logger.debug("Task %s is not ready", task.id)
        return ph

    async def on_task_completed(self, job: TaskJob) -> list[Any]:
        """Account for a finished task and start the children it made ready.

        Returns ready children owned by no active placeholder job.
        """
        task = job.task
        ph = self.owner_of(task)
        if ph is None or ph.status != PlaceholderStatus.RUNNING:
            raise InvariantViolation(
                f"Task {task.id} completed but no running placeholder job owns it"
            )
        if task.id in ph.completed_task_ids:
            raise InvariantViolation(
                f"Task {task.id} completed twice in placeholder job {ph.label}"
            )

        ph.completed_task_ids.add(task.id)
        ph.completed_count += 1
        logger.info(
            "Task %s completed (%d/%d in placeholder job %s)",
            task.id, ph.completed_count, ph.num_tasks, ph.label,
        )

        if ph.completed_count == ph.num_tasks:
            logger.info("All tasks of placeholder job %s are done; releasing it", ph.label)
            await self._release(ph)
            self._transition(ph, PlaceholderStatus.COMPLETED)
            self._retire(ph)

        # Grouping lets DAG edges cross placeholder boundaries, so look everywhere
        orphans = []
        for child in self.workflow.children_of(task):
            if child.state != TaskState.READY:
                continue
            owner = self.owner_of(child)
            if owner is None:
                orphans.append(child)
            elif owner.status == PlaceholderStatus.RUNNING and child.id not in owner.submitted_task_ids:
                await self._submit_task(owner, child)
        return orphans

    def on_task_failed(self, job: TaskJob) -> None:
        logger.info(
            "Task %s failed; leaving recovery to the reservation expiration", job.task.id
        )

    async def on_reservation_expired(self, reservation: Reservation) -> Optional[PlaceholderJob]:
        """Restart the unfinished part of an expired placeholder job.

        Returns the replacement placeholder job, if one was needed.
        """
        if reservation.name in self._released:
            logger.info("Released reservation %s expired; nothing to do", reservation.name)
            return None

        ph = self._find(reservation, PlaceholderStatus.RUNNING)
        if ph is None:
            raise InvariantViolation(
                f"Reservation {reservation.name} expired but no running placeholder job matches it"
            )

        remaining = ph.incomplete_tasks()
        if not remaining:
            logger.info("Placeholder job %s expired with no unprocessed tasks", ph.label)
            self._released.add(reservation.name)
            self._transition(ph, PlaceholderStatus.COMPLETED)
            self._retire(ph)
            return None

        logger.info(
            "Placeholder job %s expired with %d unprocessed tasks; restarting them",
            ph.label, len(remaining),
        )
        self._transition(ph, PlaceholderStatus.EXPIRED)
        self._retire(ph)

        for other in self.pending():
            logger.info("Canceling pending placeholder job %s", other.label)
            await self._cancel(other)
        for other in self.running():
            if not other.has_started():
                logger.info(
                    "Canceling running placeholder job %s because none of its tasks has started",
                    other.label,
                )
                await self._cancel(other)

        replacement_job = ClusteredJob(
            tasks=tuple(remaining),
            num_nodes=min(ph.clustered_job.num_nodes, len(remaining)),
            start_level=ph.start_level,
            end_level=ph.end_level,
        )
        replacement = await self.submit(replacement_job, self.estimator.for_job(replacement_job))
        ph.superseded_by = replacement.id
        return replacement

    # ── Internals ───────────────────────────────────────────────

    def _find(self, reservation: Reservation, status: PlaceholderStatus) -> Optional[PlaceholderJob]:
        ph = self._arena.get(self._by_reservation.get(reservation.name, -1))
        if ph is None or ph.status != status:
            return None
        return ph

    def _transition(self, ph: PlaceholderJob, new_status: PlaceholderStatus) -> None:
        logger.info("Placeholder job %s: %s -> %s", ph.label, ph.status.value, new_status.value)
        ph.status = new_status

    def _retire(self, ph: PlaceholderJob) -> None:
        del self._arena[ph.id]
        self._by_reservation.pop(ph.reservation.name, None)
        for task in ph.tasks:
            if self._owner.get(task.id) == ph.id:
                del self._owner[task.id]
        self.history.append(ph)

    async def _release(self, ph: PlaceholderJob) -> None:
        self._released.add(ph.reservation.name)
        released = await self.jobs.terminate(ph.reservation)
        if not released:
            # Raced with an independent expiration of the same reservation
            logger.warning("Reservation %s was already gone when released", ph.reservation.name)

    async def _cancel(self, ph: PlaceholderJob) -> None:
        await self._release(ph)
        self._transition(ph, PlaceholderStatus.CANCELLED)
        self._retire(ph)
