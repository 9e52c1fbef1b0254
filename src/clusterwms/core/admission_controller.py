import logging

from clusterwms.config import Settings

from .clustering import ClusteringStrategy
from .placeholder_manager import PlaceholderJobManager
from .ratio_search import DynamicRatioSearch

logger = logging.getLogger(__name__)


class LevelByLevelAdmission:
    """
    Gates level-window submissions for static strategies. At most
    ``max_ongoing_levels`` windows may be active at once, only one when
    overlap is disabled, and a window is never submitted while an earlier
    one still has placeholder jobs waiting in the queue.
    """

    def __init__(self, manager: PlaceholderJobManager, strategy: ClusteringStrategy, settings: Settings):
        self.manager = manager
        self.overlap = strategy.overlap
        self.max_ongoing_levels = settings.max_ongoing_levels

    def has_capacity(self, start_level: int) -> bool:
        ongoing = self.manager.ongoing_levels()
        if len(ongoing) >= self.max_ongoing_levels:
            logger.info("Too many ongoing levels (%d); will try later", len(ongoing))
            return False
        if not self.overlap and ongoing:
            return False
        for level in ongoing.values():
            if level.start_level < start_level and level.pending:
                logger.info(
                    "Cannot submit level %d: level %d still has placeholder jobs that haven't started",
                    start_level, level.start_level,
                )
                return False
        return True


class SingleGroupAdmission:
    """Gates ratio-search submissions: one queued group at a time."""

    def __init__(self, manager: PlaceholderJobManager, strategy: ClusteringStrategy):
        self.manager = manager
        self.strategy = strategy

    def has_capacity(self, start_level: int) -> bool:
        if self.strategy.individual_mode:
            return False
        if self.manager.pending():
            return False
        if not self.strategy.overlap and self.manager.running():
            return False
        return True


def build_admission(manager: PlaceholderJobManager, strategy: ClusteringStrategy, settings: Settings):
    if isinstance(strategy, DynamicRatioSearch):
        return SingleGroupAdmission(manager, strategy)
    return LevelByLevelAdmission(manager, strategy, settings)
