import logging

from clusterwms.adapters.base import BatchService
from clusterwms.errors import OracleFailure

logger = logging.getLogger(__name__)


class WaitTimeOracle:
    """Asks the batch service how long a hypothetical job would wait in the queue."""

    def __init__(self, batch_service: BatchService, cores_per_node: int = 1):
        self.batch = batch_service
        self.cores_per_node = cores_per_node
        self._sequence = 0

    async def predict(self, num_nodes: int, runtime: float) -> float:
        """Predicted queue wait (seconds) for ``num_nodes`` nodes over ``runtime`` seconds."""
        job_id = f"wait_probe_{self._sequence}"
        self._sequence += 1

        estimates = await self.batch.estimate_start_times(
            [(job_id, num_nodes, self.cores_per_node, runtime)]
        )
        wait = estimates.get(job_id)
        if wait is None or wait < 0:
            raise OracleFailure(
                f"Could not obtain a queue wait estimate for {num_nodes} nodes, "
                f"{runtime:.2f}s (got {wait!r})"
            )
        logger.debug("Predicted wait for %d nodes, %.2fs: %.2fs", num_nodes, runtime, wait)
        return wait
