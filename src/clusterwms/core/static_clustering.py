"""Static clustering: fixed-size horizontal clusters, optionally merged across levels."""

from __future__ import annotations

import logging
from typing import Any, Callable

from clusterwms.models.enums import StrategyKind

from .clustering import ClusteredJob, ClusteringStrategy, Decision, PlanningContext

logger = logging.getLogger(__name__)


class StaticFixedSize(ClusteringStrategy):
    """Chunk each level's open tasks into clusters of at most N tasks."""

    kind = StrategyKind.STATIC_FIXED_SIZE

    def __init__(self, tasks_per_cluster: int, nodes_per_cluster: int, overlap: bool = False):
        super().__init__(overlap=overlap)
        self.tasks_per_cluster = tasks_per_cluster
        self.nodes_per_cluster = nodes_per_cluster

    def describe(self) -> str:
        return f"hc-{self.tasks_per_cluster}-{self.nodes_per_cluster}"

    def cluster_level(self, tasks: list[Any], level: int) -> list[ClusteredJob]:
        """Partition one level's tasks in provider order."""
        n = self.tasks_per_cluster
        return [
            ClusteredJob(
                tasks=tuple(tasks[i:i + n]),
                num_nodes=self.nodes_per_cluster,
                start_level=level,
                end_level=level,
            )
            for i in range(0, len(tasks), n)
        ]

    def cluster_window(self, ctx: PlanningContext, start_level: int, end_level: int) -> list[ClusteredJob]:
        clusters = []
        for level in range(start_level, end_level + 1):
            clusters.extend(self.cluster_level(ctx.open_tasks(level), level))
        return clusters

    async def plan(self, ctx: PlanningContext, start_level: int) -> Decision:
        end_level = min(start_level + self.levels_per_decision - 1, ctx.last_level)
        clusters = self.cluster_window(ctx, start_level, end_level)
        logger.info(
            "%s: %d clustered jobs for levels %d-%d",
            self.describe(), len(clusters), start_level, end_level,
        )
        return Decision(jobs=[(cj, ctx.estimator.for_job(cj)) for cj in clusters])


def same_node_count(parent: ClusteredJob, child: ClusteredJob) -> bool:
    return parent.num_nodes == child.num_nodes


class StaticPosteriorMerge(ClusteringStrategy):
    """Static partition of a two-level window, then merge single-parent/single-child pairs.

    Only jobs starting at the decision's start level are submitted.
    """

    kind = StrategyKind.STATIC_POSTERIOR_MERGE
    levels_per_decision = 2

    def __init__(
        self,
        base: StaticFixedSize,
        mergeable: Callable[[ClusteredJob, ClusteredJob], bool] = same_node_count,
    ):
        super().__init__(overlap=base.overlap)
        self.base = base
        self._mergeable = mergeable

    def describe(self) -> str:
        return f"{self.base.describe()}:merge"

    def mergeable(self, parent: ClusteredJob, child: ClusteredJob) -> bool:
        return self._mergeable(parent, child)

    async def plan(self, ctx: PlanningContext, start_level: int) -> Decision:
        end_level = min(start_level + self.levels_per_decision - 1, ctx.last_level)
        merged = self.merge(ctx, self.base.cluster_window(ctx, start_level, end_level))
        # Unmerged child-level clusters stay open until the gate admits their level
        clusters = [cj for cj in merged if cj.start_level == start_level]
        logger.info(
            "%s: %d clustered jobs for levels %d-%d",
            self.describe(), len(clusters), start_level, end_level,
        )
        return Decision(jobs=[(cj, ctx.estimator.for_job(cj)) for cj in clusters])

    def merge(self, ctx: PlanningContext, clusters: list[ClusteredJob]) -> list[ClusteredJob]:
        """Merge pairs until no single-parent/single-child mergeable pair remains."""
        clusters = list(clusters)
        merged_any = True
        while merged_any:
            merged_any = False
            for parent in clusters:
                child = self._only_child(ctx, parent, clusters)
                if child is None or not self.mergeable(parent, child):
                    continue
                merged = ClusteredJob(
                    tasks=parent.tasks + child.tasks,
                    num_nodes=max(parent.num_nodes, child.num_nodes),
                    start_level=parent.start_level,
                    end_level=child.end_level,
                )
                logger.debug(
                    "Merging cluster of %d tasks (level %d) with its only child cluster of %d tasks",
                    parent.num_tasks, parent.start_level, child.num_tasks,
                )
                clusters = [c for c in clusters if c is not parent and c is not child]
                clusters.append(merged)
                merged_any = True
                break
        return clusters

    def is_single_parent_single_child_pair(
        self, ctx: PlanningContext, parent: ClusteredJob, child: ClusteredJob,
        clusters: list[ClusteredJob],
    ) -> bool:
        return self._only_child(ctx, parent, clusters) is child

    def _only_child(
        self, ctx: PlanningContext, parent: ClusteredJob, clusters: list[ClusteredJob]
    ) -> ClusteredJob | None:
        children = self._child_clusters(ctx, parent, clusters)
        if len(children) != 1:
            return None
        child = children[0]
        if child.start_level <= parent.end_level:
            return None
        parents = [c for c in clusters if child in self._child_clusters(ctx, c, clusters)]
        if parents != [parent]:
            return None
        return child

    @staticmethod
    def _child_clusters(
        ctx: PlanningContext, cluster: ClusteredJob, clusters: list[ClusteredJob]
    ) -> list[ClusteredJob]:
        child_ids = {c.id for t in cluster.tasks for c in ctx.workflow.children_of(t)}
        return [c for c in clusters if c is not cluster and child_ids & c.task_ids]
