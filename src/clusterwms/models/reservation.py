from typing import Optional

from pydantic import BaseModel


class Reservation(BaseModel):
    """A time- and node-bounded lease requested from the batch queue."""

    name: str
    num_nodes: int
    cores_per_node: int = 1
    start_delay: float = 0.0
    duration: float
    target: Optional[str] = None  # compute target, known once granted

    def service_args(self) -> dict[str, str]:
        """Batch-queue arguments: nodes, cores per node, walltime in minutes."""
        return {
            "-N": str(self.num_nodes),
            "-c": str(self.cores_per_node),
            "-t": str(1 + int(self.duration) // 60),
        }
