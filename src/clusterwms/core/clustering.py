"""Clustering strategies: the shared interface, decision types and spec parsing."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from clusterwms.adapters.base import WorkflowProvider
from clusterwms.config import Settings
from clusterwms.errors import ConfigurationError
from clusterwms.models.enums import StrategyKind, TaskState

from .makespan import RuntimeEstimator
from .wait_oracle import WaitTimeOracle

if TYPE_CHECKING:
    from .placeholder_manager import PlaceholderJobManager


@dataclass(frozen=True)
class ClusteredJob:
    """A set of tasks chosen to run together in one reservation."""
    tasks: tuple[Any, ...]
    num_nodes: int
    start_level: int
    end_level: int

    @property
    def num_tasks(self) -> int:
        return len(self.tasks)

    @property
    def task_ids(self) -> frozenset:
        return frozenset(t.id for t in self.tasks)


@dataclass
class Decision:
    """Outcome of one planning call: clustered jobs with their estimated runtimes."""
    jobs: list[tuple[ClusteredJob, float]] = field(default_factory=list)
    individual_mode: bool = False


@dataclass
class PlanningContext:
    """Everything a strategy may read while planning."""
    workflow: WorkflowProvider
    manager: PlaceholderJobManager
    estimator: RuntimeEstimator
    oracle: WaitTimeOracle
    num_hosts: int

    @property
    def last_level(self) -> int:
        return self.workflow.num_levels() - 1

    def open_tasks(self, level: int) -> list[Any]:
        """Incomplete tasks of a level not owned by an active placeholder job."""
        return [
            t for t in self.workflow.tasks_in_level_range(level, level)
            if t.state != TaskState.COMPLETED and not self.manager.owns(t)
        ]

    def first_open_level(self) -> Optional[int]:
        for level in range(self.workflow.num_levels()):
            if self.open_tasks(level):
                return level
        return None


class ClusteringStrategy(ABC):
    kind: StrategyKind
    levels_per_decision = 1

    def __init__(self, overlap: bool = False):
        self.overlap = overlap
        self.individual_mode = False

    @abstractmethod
    async def plan(self, ctx: PlanningContext, start_level: int) -> Decision:
        """Partition the open tasks from ``start_level`` onwards into clustered jobs."""

    def describe(self) -> str:
        return self.kind.value


def parse_clustering_spec(spec: str, settings: Settings) -> ClusteringStrategy:
    """Build a strategy from ``hc-<tasks>-<nodes>[:merge]`` or ``zhang[:overlap][:plimit]``."""
    from .ratio_search import DynamicRatioSearch
    from .static_clustering import StaticFixedSize, StaticPosteriorMerge

    head, *options = spec.strip().split(":")
    tokens = head.split("-")

    if tokens[0] == "hc":
        if len(tokens) != 3:
            raise ConfigurationError(
                f"Invalid clustering spec {spec!r}: expected hc-<tasksPerCluster>-<nodesPerCluster>"
            )
        try:
            tasks_per_cluster = int(tokens[1])
            nodes_per_cluster = int(tokens[2])
        except ValueError:
            raise ConfigurationError(
                f"Invalid clustering spec {spec!r}: cluster parameters must be integers"
            ) from None
        if tasks_per_cluster < 1 or nodes_per_cluster < 1:
            raise ConfigurationError(
                f"Invalid clustering spec {spec!r}: cluster parameters must be positive"
            )
        _check_options(spec, options, {"merge"})
        strategy = StaticFixedSize(tasks_per_cluster, nodes_per_cluster, overlap=settings.overlap)
        if "merge" in options:
            return StaticPosteriorMerge(strategy)
        return strategy

    if tokens[0] == "zhang":
        if len(tokens) != 1:
            raise ConfigurationError(f"Invalid clustering spec {spec!r}: zhang takes no parameters")
        _check_options(spec, options, {"overlap", "plimit"})
        return DynamicRatioSearch(
            overlap=settings.overlap or "overlap" in options,
            plimit=settings.plimit or "plimit" in options,
            max_leeway_requeries=settings.leeway_max_requeries,
        )

    raise ConfigurationError(f"Invalid clustering spec {spec!r}")


def _check_options(spec: str, options: list[str], allowed: set[str]) -> None:
    unknown = [o for o in options if o not in allowed]
    if unknown:
        raise ConfigurationError(
            f"Invalid clustering spec {spec!r}: unknown option(s) {', '.join(unknown)}"
        )
