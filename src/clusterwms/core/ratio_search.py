"""Dynamic ratio-search grouping.

Grows a group of consecutive workflow levels one level at a time, asking the
wait-time oracle how long each candidate reservation would queue, and stops
once the wait/runtime ratio of a grown candidate gets worse than that of the
previous one. While even the grown group would wait longer than it runs (the
"giant" phase) growth is unconditional. If the search runs past the last level
without stopping, every remaining task is submitted on its own from then on
(individual mode).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

from clusterwms.errors import ConfigurationError
from clusterwms.models.enums import StrategyKind

from .clustering import ClusteredJob, ClusteringStrategy, Decision, PlanningContext

logger = logging.getLogger(__name__)


@dataclass
class SearchStep:
    """One candidate group [start_level, end_level] evaluated by the search."""
    end_level: int
    parallelism: int
    runtime: float
    wait: float
    giant: bool = False

    @property
    def ratio(self) -> float:
        if self.runtime <= 0:
            return math.inf
        return self.wait / self.runtime


class DynamicRatioSearch(ClusteringStrategy):
    kind = StrategyKind.DYNAMIC_RATIO_SEARCH

    def __init__(self, overlap: bool = False, plimit: bool = False, max_leeway_requeries: int = 1):
        super().__init__(overlap=overlap)
        self.plimit = plimit
        self.max_leeway_requeries = max_leeway_requeries
        self.parent_runtime = 0.0
        self.last_search: list[SearchStep] = []
        self.stopped_at: Optional[SearchStep] = None
        self.baseline: Optional[SearchStep] = None

    def describe(self) -> str:
        options = [o for o, on in (("overlap", self.overlap), ("plimit", self.plimit)) if on]
        return ":".join(["zhang", *options])

    async def plan(self, ctx: PlanningContext, start_level: int) -> Decision:
        last_level = ctx.last_level
        tasks_by_level = {
            level: ctx.open_tasks(level) for level in range(start_level, last_level + 1)
        }
        max_parallelism = self._max_parallelism(tasks_by_level, ctx.num_hosts)

        if not ctx.manager.running():
            self.parent_runtime = 0.0

        # Whole remaining DAG in one reservation; recorded for reference only
        baseline_runtime = ctx.estimator.for_levels(tasks_by_level.values(), max_parallelism)
        baseline_wait = await ctx.oracle.predict(max_parallelism, baseline_runtime)
        self.baseline = SearchStep(last_level, max_parallelism, baseline_runtime, baseline_wait)
        logger.info(
            "Remaining DAG (levels %d-%d): %d hosts, runtime %.2fs, predicted wait %.2fs",
            start_level, last_level, max_parallelism, baseline_runtime, baseline_wait,
        )

        self.last_search = []
        self.stopped_at = None
        accepted: Optional[SearchStep] = None
        giant = True

        for end_level in range(start_level, last_level + 1):
            step = await self._evaluate(ctx, tasks_by_level, start_level, end_level)
            self.last_search.append(step)

            if giant:
                giant = step.wait > step.runtime
                step.giant = giant
                accepted = step
                continue

            if step.ratio > accepted.ratio:
                logger.info(
                    "Stopping at levels %d-%d: ratio %.3f is worse than %.3f for levels %d-%d",
                    start_level, end_level, step.ratio, accepted.ratio,
                    start_level, accepted.end_level,
                )
                self.stopped_at = step
                break
            accepted = step

        if self.stopped_at is None:
            logger.info(
                "Search reached level %d without stopping (giant: %s); "
                "switching to individual mode",
                last_level, giant,
            )
            self.individual_mode = True
            return Decision(individual_mode=True)

        tasks: list[Any] = []
        for level in range(start_level, accepted.end_level + 1):
            tasks.extend(tasks_by_level[level])
        clustered_job = ClusteredJob(
            tasks=tuple(tasks),
            num_nodes=accepted.parallelism,
            start_level=start_level,
            end_level=accepted.end_level,
        )
        self.parent_runtime = accepted.runtime
        logger.info(
            "Grouping levels %d-%d: %d tasks on %d hosts, runtime %.2fs, predicted wait %.2fs",
            start_level, accepted.end_level, clustered_job.num_tasks,
            accepted.parallelism, accepted.runtime, accepted.wait,
        )
        return Decision(jobs=[(clustered_job, accepted.runtime)])

    def _max_parallelism(self, tasks_by_level: dict[int, list[Any]], num_hosts: int) -> int:
        parallelism = 1
        for level, tasks in tasks_by_level.items():
            if len(tasks) > num_hosts:
                if self.plimit:
                    raise ConfigurationError(
                        f"Workflow level {level} has {len(tasks)} tasks, more than the "
                        f"{num_hosts} hosts on the batch service"
                    )
                logger.warning(
                    "Workflow level %d has %d tasks, more than the %d hosts; clamping",
                    level, len(tasks), num_hosts,
                )
            parallelism = max(parallelism, min(len(tasks), num_hosts))
        return parallelism

    async def _evaluate(
        self,
        ctx: PlanningContext,
        tasks_by_level: dict[int, list[Any]],
        start_level: int,
        end_level: int,
    ) -> SearchStep:
        levels = [tasks_by_level[level] for level in range(start_level, end_level + 1)]
        parallelism = max(1, max(min(len(tasks), ctx.num_hosts) for tasks in levels))
        runtime = ctx.estimator.for_levels(levels, parallelism)
        wait = await ctx.oracle.predict(parallelism, runtime)

        # Leeway: stretch the reservation so it outlives the previous group's tail
        requeries = 0
        while self.parent_runtime > wait and requeries < self.max_leeway_requeries:
            runtime += self.parent_runtime - wait
            wait = await ctx.oracle.predict(parallelism, runtime)
            requeries += 1

        logger.debug(
            "Levels %d-%d: %d hosts, runtime %.2fs, wait %.2fs",
            start_level, end_level, parallelism, runtime, wait,
        )
        return SearchStep(end_level, parallelism, runtime, wait)
