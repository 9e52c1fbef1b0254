from abc import ABC, abstractmethod
from typing import Any, Iterable

from clusterwms.models.events import Event, TaskJob
from clusterwms.models.reservation import Reservation


class WorkflowProvider(ABC):
    """Read-only view of the workflow DAG.

    Tasks are opaque objects exposing ``id``, ``flops`` and ``state``
    (a :class:`~clusterwms.models.enums.TaskState`).
    """

    @abstractmethod
    def tasks_in_level_range(self, lo: int, hi: int) -> list[Any]:
        """Tasks whose top level lies in [lo, hi], in provider order."""

    @abstractmethod
    def num_levels(self) -> int:
        """Number of topological levels."""

    @abstractmethod
    def is_done(self) -> bool:
        """True once every task is completed."""

    @abstractmethod
    def children_of(self, task: Any) -> list[Any]:
        """Direct successors of a task."""


class JobManager(ABC):
    @abstractmethod
    async def create_reservation(
        self, num_nodes: int, cores_per_node: int, start_delay: float, duration: float
    ) -> Reservation:
        """Create (but do not submit) a reservation request."""

    @abstractmethod
    async def submit_reservation(
        self, reservation: Reservation, service_args: dict[str, str]
    ) -> None:
        """Submit a reservation to the batch service."""

    @abstractmethod
    async def create_task_job(self, task: Any) -> TaskJob:
        """Create a single-task job."""

    @abstractmethod
    async def submit_task_job(self, job: TaskJob, target: str) -> None:
        """Submit a task job to the compute target of a granted reservation."""

    @abstractmethod
    async def terminate(self, reservation: Reservation) -> bool:
        """Release a reservation. Returns False if it was already defunct; never raises for that."""


class BatchService(ABC):
    @abstractmethod
    async def core_flop_rate(self) -> float:
        """Per-core processing rate in flops/sec."""

    @abstractmethod
    async def num_hosts(self) -> int:
        """Number of compute hosts behind the queue."""

    @abstractmethod
    async def estimate_start_times(
        self, jobs: Iterable[tuple[str, int, int, float]]
    ) -> dict[str, float]:
        """Predict queue wait for (id, nodes, cores_per_host, walltime) tuples.

        A negative value means the prediction failed.
        """


class EventSource(ABC):
    @abstractmethod
    async def next_event(self) -> Event:
        """Wait for and return the next lifecycle event."""
