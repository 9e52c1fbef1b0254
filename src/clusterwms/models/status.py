from typing import Optional

from pydantic import BaseModel

from .enums import PlaceholderStatus


class PlaceholderSummary(BaseModel):
    id: int
    status: PlaceholderStatus
    start_level: int
    end_level: int
    num_tasks: int
    completed_tasks: int
    num_nodes: int
    requested_runtime: float
    reservation: Optional[str] = None
    superseded_by: Optional[int] = None


class OngoingLevelSummary(BaseModel):
    start_level: int
    end_level: int
    pending: int = 0
    running: int = 0
    completed: int = 0


class ControllerStatus(BaseModel):
    strategy: str
    individual_mode: bool = False
    workflow_done: bool = False
    next_open_level: Optional[int] = None
    placeholders_by_status: dict[str, int] = {}
    ongoing_levels: list[OngoingLevelSummary] = []
