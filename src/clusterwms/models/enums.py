from enum import Enum


class TaskState(str, Enum):
    NOT_READY = "not_ready"
    READY = "ready"
    COMPLETED = "completed"


class PlaceholderStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class StrategyKind(str, Enum):
    STATIC_FIXED_SIZE = "hc"
    STATIC_POSTERIOR_MERGE = "hc_merge"
    DYNAMIC_RATIO_SEARCH = "zhang"
