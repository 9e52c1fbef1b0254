"""Makespan estimation: pure computation over task costs."""

from __future__ import annotations

import heapq
from typing import Any, Iterable

from clusterwms.adapters.base import WorkflowProvider


def estimate_makespan(tasks: Iterable[Any], num_workers: int, core_speed: float) -> float:
    """Estimate completion time of independent tasks on ``num_workers`` workers.

    Longest-processing-time list scheduling: tasks sorted by decreasing flops,
    each placed on the worker that becomes idle first.
    """
    if num_workers < 1:
        raise ValueError(f"num_workers must be >= 1, got {num_workers}")
    if core_speed <= 0:
        raise ValueError(f"core_speed must be > 0, got {core_speed}")

    durations = sorted((t.flops / core_speed for t in tasks), reverse=True)
    if not durations:
        return 0.0

    idle_at = [0.0] * min(num_workers, len(durations))
    for duration in durations:
        earliest = heapq.heappop(idle_at)
        heapq.heappush(idle_at, earliest + duration)
    return max(idle_at)


class LevelIndex:
    """Task id → top level, built once from the workflow provider."""

    def __init__(self, workflow: WorkflowProvider):
        self.num_levels = workflow.num_levels()
        self._level: dict[Any, int] = {}
        for level in range(self.num_levels):
            for task in workflow.tasks_in_level_range(level, level):
                self._level[task.id] = level

    def level_of(self, task: Any) -> int:
        return self._level[task.id]

    def group_by_level(self, tasks: Iterable[Any]) -> dict[int, list[Any]]:
        grouped: dict[int, list[Any]] = {}
        for task in tasks:
            grouped.setdefault(self.level_of(task), []).append(task)
        return grouped


class RuntimeEstimator:
    """Runtime of a multi-level task set, with a barrier between levels."""

    def __init__(self, level_index: LevelIndex, core_speed: float, cores_per_node: int = 1):
        self.level_index = level_index
        self.core_speed = core_speed
        self.cores_per_node = cores_per_node

    def for_levels(self, tasks_by_level: Iterable[list[Any]], num_nodes: int) -> float:
        workers = max(1, num_nodes) * self.cores_per_node
        return sum(
            estimate_makespan(tasks, workers, self.core_speed) for tasks in tasks_by_level
        )

    def for_job(self, clustered_job) -> float:
        grouped = self.level_index.group_by_level(clustered_job.tasks)
        return self.for_levels(
            [grouped[level] for level in sorted(grouped)], clustered_job.num_nodes
        )

    def for_task(self, task: Any) -> float:
        return task.flops / self.core_speed
