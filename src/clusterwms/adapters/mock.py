from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from clusterwms.models.enums import TaskState
from clusterwms.models.events import (
    Event,
    ReservationExpired,
    ReservationGranted,
    TaskCompleted,
    TaskJob,
)
from clusterwms.models.reservation import Reservation

from .base import BatchService, EventSource, JobManager, WorkflowProvider


@dataclass(eq=False)
class MockTask:
    id: str
    flops: float
    state: TaskState = TaskState.NOT_READY

    def __repr__(self) -> str:
        return f"MockTask({self.id!r}, {self.state.value})"


class MockWorkflowProvider(WorkflowProvider):
    """In-memory DAG. A task's level is its longest path from a root."""

    def __init__(self, tasks: list[MockTask], edges: Iterable[tuple[str, str]] = ()):
        self._tasks: dict[str, MockTask] = {t.id: t for t in tasks}
        self._children: dict[str, list[str]] = {t.id: [] for t in tasks}
        self._parents: dict[str, list[str]] = {t.id: [] for t in tasks}
        for parent, child in edges:
            self._children[parent].append(child)
            self._parents[child].append(parent)
        self._levels = self._compute_levels()
        for task in tasks:
            if task.state != TaskState.COMPLETED:
                task.state = (
                    TaskState.READY if self._parents_completed(task.id) else TaskState.NOT_READY
                )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MockWorkflowProvider:
        """Build from ``{"tasks": [{"id": ..., "flops": ..., "parents": [...]}, ...]}``."""
        tasks = []
        edges = []
        for entry in data.get("tasks", []):
            tasks.append(MockTask(id=str(entry["id"]), flops=float(entry.get("flops", 0.0))))
            for parent in entry.get("parents", []):
                edges.append((str(parent), str(entry["id"])))
        return cls(tasks, edges)

    @classmethod
    def layered(cls, widths: list[int], flops: float | list[float] = 1e9) -> MockWorkflowProvider:
        """Build a DAG of fully connected consecutive levels.

        ``flops`` may be a single cost or one cost per level.
        """
        tasks: list[MockTask] = []
        edges: list[tuple[str, str]] = []
        previous: list[str] = []
        for level, width in enumerate(widths):
            cost = flops[level] if isinstance(flops, list) else flops
            current = [f"task_{level}_{i}" for i in range(width)]
            tasks.extend(MockTask(id=tid, flops=cost) for tid in current)
            edges.extend((p, c) for p in previous for c in current)
            previous = current
        return cls(tasks, edges)

    def _compute_levels(self) -> dict[str, int]:
        levels: dict[str, int] = {}
        remaining = {tid: len(parents) for tid, parents in self._parents.items()}
        ready = deque(tid for tid, n in remaining.items() if n == 0)
        while ready:
            tid = ready.popleft()
            parents = self._parents[tid]
            levels[tid] = 1 + max(levels[p] for p in parents) if parents else 0
            for child in self._children[tid]:
                remaining[child] -= 1
                if remaining[child] == 0:
                    ready.append(child)
        if len(levels) != len(self._tasks):
            raise ValueError("Workflow graph contains a cycle")
        return levels

    def _parents_completed(self, task_id: str) -> bool:
        return all(
            self._tasks[p].state == TaskState.COMPLETED for p in self._parents[task_id]
        )

    def task(self, task_id: str) -> MockTask:
        return self._tasks[task_id]

    def level_of(self, task: MockTask) -> int:
        return self._levels[task.id]

    def tasks_in_level_range(self, lo: int, hi: int) -> list[MockTask]:
        return [t for t in self._tasks.values() if lo <= self._levels[t.id] <= hi]

    def num_levels(self) -> int:
        return 1 + max(self._levels.values()) if self._levels else 0

    def is_done(self) -> bool:
        return all(t.state == TaskState.COMPLETED for t in self._tasks.values())

    def children_of(self, task: MockTask) -> list[MockTask]:
        return [self._tasks[c] for c in self._children[task.id]]

    def complete(self, task: MockTask | str) -> None:
        """Mark a task completed and promote children whose parents are all done."""
        task = self._tasks[task] if isinstance(task, str) else task
        task.state = TaskState.COMPLETED
        for child_id in self._children[task.id]:
            child = self._tasks[child_id]
            if child.state == TaskState.NOT_READY and self._parents_completed(child_id):
                child.state = TaskState.READY


class MockJobManager(JobManager):
    def __init__(self):
        self.calls: list[tuple[str, tuple, dict]] = []
        self._next_reservation = 1
        self._next_job = 1
        self.submitted_reservations: list[Reservation] = []
        self.awaiting_grant: list[Reservation] = []
        self.running_jobs: list[tuple[TaskJob, str]] = []
        self.killed_jobs: list[TaskJob] = []
        self.defunct: set[str] = set()

    async def create_reservation(
        self, num_nodes: int, cores_per_node: int, start_delay: float, duration: float
    ) -> Reservation:
        self.calls.append(
            ("create_reservation", (num_nodes, cores_per_node, start_delay, duration), {})
        )
        reservation = Reservation(
            name=f"pilot_job_{self._next_reservation}",
            num_nodes=num_nodes,
            cores_per_node=cores_per_node,
            start_delay=start_delay,
            duration=duration,
        )
        self._next_reservation += 1
        return reservation

    async def submit_reservation(
        self, reservation: Reservation, service_args: dict[str, str]
    ) -> None:
        self.calls.append(("submit_reservation", (reservation.name, service_args), {}))
        self.submitted_reservations.append(reservation)
        self.awaiting_grant.append(reservation)

    async def create_task_job(self, task: Any) -> TaskJob:
        self.calls.append(("create_task_job", (task.id,), {}))
        job = TaskJob(name=f"standard_job_{self._next_job}", task=task)
        self._next_job += 1
        return job

    async def submit_task_job(self, job: TaskJob, target: str) -> None:
        self.calls.append(("submit_task_job", (job.task.id, target), {}))
        self.running_jobs.append((job, target))

    async def terminate(self, reservation: Reservation) -> bool:
        self.calls.append(("terminate", (reservation.name,), {}))
        if reservation.name in self.defunct:
            return False
        self.defunct.add(reservation.name)
        self.awaiting_grant = [r for r in self.awaiting_grant if r.name != reservation.name]
        return True

    # ── Test helpers ────────────────────────────────────────────

    def grant(self, reservation: Reservation) -> ReservationGranted:
        """Mark a submitted reservation as started and return the event."""
        reservation.target = f"{reservation.name}_compute"
        self.awaiting_grant = [r for r in self.awaiting_grant if r.name != reservation.name]
        return ReservationGranted(reservation)

    def expire(self, reservation: Reservation) -> ReservationExpired:
        """Lapse a reservation, killing the task jobs still running in it."""
        self.defunct.add(reservation.name)
        killed = [(j, t) for j, t in self.running_jobs if t == reservation.target]
        self.running_jobs = [(j, t) for j, t in self.running_jobs if t != reservation.target]
        self.killed_jobs.extend(j for j, _ in killed)
        return ReservationExpired(reservation)

    def submitted_task_ids(self) -> list[str]:
        return [c[1][0] for c in self.calls if c[0] == "submit_task_job"]


class MockBatchService(BatchService):
    def __init__(
        self,
        core_speed: float = 1e9,
        hosts: int = 4,
        wait: float | Callable[[int, float], float] = 0.0,
    ):
        self.core_speed = core_speed
        self.hosts = hosts
        self.wait = wait
        self.queries: list[tuple[str, int, int, float]] = []

    async def core_flop_rate(self) -> float:
        return self.core_speed

    async def num_hosts(self) -> int:
        return self.hosts

    async def estimate_start_times(
        self, jobs: Iterable[tuple[str, int, int, float]]
    ) -> dict[str, float]:
        estimates = {}
        for job_id, nodes, cores, walltime in jobs:
            self.queries.append((job_id, nodes, cores, walltime))
            wait = self.wait(nodes, walltime) if callable(self.wait) else self.wait
            estimates[job_id] = wait
        return estimates


class MockEventSource(EventSource):
    """Scripted event source.

    Injected events are delivered first. Otherwise the oldest running task job
    completes (updating the workflow), then the oldest submitted reservation
    is granted.
    """

    def __init__(self, job_manager: MockJobManager, workflow: MockWorkflowProvider):
        self.job_manager = job_manager
        self.workflow = workflow
        self._injected: deque[Event] = deque()
        self.delivered: list[Event] = []

    def inject(self, event: Event) -> None:
        self._injected.append(event)

    async def next_event(self) -> Event:
        event = self._produce()
        self.delivered.append(event)
        return event

    def _produce(self) -> Event:
        if self._injected:
            return self._injected.popleft()
        if self.job_manager.running_jobs:
            job, _ = self.job_manager.running_jobs.pop(0)
            self.workflow.complete(job.task)
            return TaskCompleted(job)
        if self.job_manager.awaiting_grant:
            return self.job_manager.grant(self.job_manager.awaiting_grant[0])
        raise RuntimeError("No more events: nothing running and nothing queued")
