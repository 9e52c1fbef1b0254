from .enums import PlaceholderStatus, StrategyKind, TaskState
from .events import (
    Event,
    ReservationExpired,
    ReservationGranted,
    TaskCompleted,
    TaskFailed,
    TaskJob,
)
from .reservation import Reservation
from .status import ControllerStatus, OngoingLevelSummary, PlaceholderSummary

__all__ = [
    "ControllerStatus",
    "Event",
    "OngoingLevelSummary",
    "PlaceholderStatus",
    "PlaceholderSummary",
    "Reservation",
    "ReservationExpired",
    "ReservationGranted",
    "StrategyKind",
    "TaskCompleted",
    "TaskFailed",
    "TaskJob",
    "TaskState",
]
